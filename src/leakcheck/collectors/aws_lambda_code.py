"""
AWS Lambda deployed code collector for leakcheck.

Lists a deliberately small page of Lambda functions and downloads each
function's deployment package to a temp file for scanning. Keeping the
page small bounds the download cost of a single request.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from leakcheck.collectors.artifacts import download_to_temp_file
from leakcheck.collectors.aws_lambda import BaseLambdaCollector
from leakcheck.collectors.base import AWS_ERRORS, DEFAULT_REGION, describe_aws_error
from leakcheck.errors import UpstreamGetError
from leakcheck.models import LambdaCode, SurfacePage, release_all

logger = logging.getLogger(__name__)

DEFAULT_CODE_PAGE_SIZE = 1
DEFAULT_DOWNLOAD_WORKERS = 4


class LambdaCodeCollector(BaseLambdaCollector):
    """
    Collects deployment packages of Lambda functions.

    Functions whose code has no download location (e.g. container image
    functions) are skipped. Downloads run on a small worker pool; if any
    of them fails, every file already downloaded for the page is removed
    before the error propagates. On success the returned entities own
    their temp files.
    """

    collector_name = "aws_lambda_code"

    def __init__(
        self,
        session: Any | None = None,
        region: str = DEFAULT_REGION,
        page_size: int = DEFAULT_CODE_PAGE_SIZE,
        download_workers: int = DEFAULT_DOWNLOAD_WORKERS,
        temp_dir: str | None = None,
        download_timeout: float = 60,
    ) -> None:
        """
        Initialize the collector.

        Args:
            session: Optional boto3 Session
            region: AWS region to collect from
            page_size: MaxItems per list_functions call
            download_workers: Maximum parallel artifact downloads
            temp_dir: Directory for downloaded archives
            download_timeout: Socket timeout for each download
        """
        super().__init__(session=session, region=region)
        self.page_size = page_size
        self.download_workers = max(1, download_workers)
        self.temp_dir = temp_dir
        self.download_timeout = download_timeout

    def fetch_page(
        self, token: str = "", cancel_event: threading.Event | None = None
    ) -> SurfacePage:
        """
        Fetch one page of function code archives.

        Args:
            token: Lambda Marker from the previous page
            cancel_event: Set when the inbound request is cancelled

        Returns:
            SurfacePage of LambdaCode entities and the next marker
        """
        functions, next_marker = self._list_functions(token)
        if not functions:
            return SurfacePage(entities=[], next_token=next_marker)

        workers = min(self.download_workers, len(functions))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [
                executor.submit(self._get_code_for_function, func, cancel_event)
                for func in functions
            ]

        entities: list[LambdaCode] = []
        first_error: BaseException | None = None
        for future in futures:
            error = future.exception()
            if error is not None:
                if first_error is None:
                    first_error = error
                continue
            code = future.result()
            if code is not None:
                entities.append(code)

        if first_error is not None:
            release_all(entities)
            raise first_error

        logger.debug(
            f"Downloaded code for {len(entities)} of {len(functions)} functions"
        )
        return SurfacePage(entities=entities, next_token=next_marker)

    def _get_code_for_function(
        self, func: dict[str, Any], cancel_event: threading.Event | None
    ) -> LambdaCode | None:
        """Download one function's package, or None if it has no location."""
        lambda_client = self._get_client("lambda")
        function_name = func["FunctionName"]

        self._check_cancelled(cancel_event, function_name)

        try:
            response = lambda_client.get_function(FunctionName=function_name)
        except AWS_ERRORS as e:
            raise UpstreamGetError(
                f"unable to get function details: {describe_aws_error(e)}",
                entity=function_name,
            ) from e

        location = (response.get("Code") or {}).get("Location")
        if not location:
            logger.debug(f"Skipping {function_name}: no code location")
            return None

        path = download_to_temp_file(
            location,
            temp_dir=self.temp_dir,
            timeout=self.download_timeout,
            cancel_event=cancel_event,
            entity=function_name,
        )
        return LambdaCode(
            name=function_name,
            arn=func.get("FunctionArn", ""),
            zip_file=path,
        )
