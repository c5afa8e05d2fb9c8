"""
Deployment artifact download for leakcheck.

Lambda returns a short-lived presigned URL for each function's package.
The package is streamed to a temp file that the caller owns and must
remove once scanned.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from leakcheck.errors import DownloadError, ScanCancelledError

logger = logging.getLogger(__name__)

TEMP_FILE_PREFIX = "leakcheck-lambda-code-"
CHUNK_SIZE = 64 * 1024


def download_to_temp_file(
    url: str,
    temp_dir: str | None = None,
    timeout: float = 60,
    cancel_event: threading.Event | None = None,
    entity: str | None = None,
) -> str:
    """
    Download a URL into a new temp file.

    Args:
        url: Presigned artifact URL
        temp_dir: Directory for the temp file (default: system temp dir)
        timeout: Socket timeout in seconds
        cancel_event: Checked between chunks; aborts the download when set
        entity: Function name, for error context

    Returns:
        Absolute path of the downloaded file

    Raises:
        DownloadError: If the request fails or returns a non-200 status
        ScanCancelledError: If cancelled mid-download
    """
    request = Request(url, method="GET")

    try:
        response = urlopen(request, timeout=timeout)
    except HTTPError as e:
        raise DownloadError(
            f"failed to download file: {e.code} {e.reason}", entity=entity
        ) from e
    except (URLError, OSError) as e:
        raise DownloadError(f"failed to make HTTP request: {e}", entity=entity) from e

    with response:
        status = getattr(response, "status", 200)
        if status != 200:
            raise DownloadError(
                f"failed to download file: {status} {getattr(response, 'reason', '')}",
                entity=entity,
            )

        try:
            out_file = tempfile.NamedTemporaryFile(
                prefix=TEMP_FILE_PREFIX, suffix=".zip", dir=temp_dir, delete=False
            )
        except OSError as e:
            raise DownloadError(f"unable to create file: {e}", entity=entity) from e

        path = os.path.abspath(out_file.name)
        try:
            with out_file:
                if cancel_event is None:
                    shutil.copyfileobj(response, out_file, CHUNK_SIZE)
                else:
                    _copy_with_cancel(response, out_file, cancel_event, entity)
        except ScanCancelledError:
            _remove_quietly(path)
            raise
        except OSError as e:
            _remove_quietly(path)
            raise DownloadError(
                f"unable to copy content to file: {e}", entity=entity
            ) from e

    logger.debug(f"Downloaded artifact for {entity} to {path}")
    return path


def _copy_with_cancel(
    source, target, cancel_event: threading.Event, entity: str | None
) -> None:
    """Copy in chunks, stopping as soon as the cancel event is set."""
    while True:
        if cancel_event.is_set():
            raise ScanCancelledError("artifact download cancelled", entity=entity)
        chunk = source.read(CHUNK_SIZE)
        if not chunk:
            break
        target.write(chunk)


def _remove_quietly(path: str) -> None:
    """Remove a partial download."""
    try:
        os.remove(path)
    except OSError as e:
        logger.warning(f"Could not remove partial download {path}: {e}")
