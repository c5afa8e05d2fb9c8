"""
Deployment archive scanning for leakcheck.

Walks every entry of a Lambda deployment package and streams out its
decompressed bytes. No entry is filtered by name or type: anything in the
package can carry a leaked value.
"""

from __future__ import annotations

import logging
import zipfile
import zlib
from typing import Iterator

from leakcheck.errors import ArchiveReadError

logger = logging.getLogger(__name__)


class ArchiveScanner:
    """
    Lazily extracts entries from a zip archive on disk.

    Any failure to open the archive or read an entry raises
    ArchiveReadError; corrupt archives are never skipped.
    """

    def __init__(self, archive_path: str):
        """
        Initialize the scanner.

        Args:
            archive_path: Path to a local zip file
        """
        self.archive_path = archive_path

    def extract(self) -> Iterator[tuple[str, bytes]]:
        """
        Yield (entry_name, content) for every file entry in the archive.

        Raises:
            ArchiveReadError: If the archive or one of its entries is unreadable
        """
        try:
            archive = zipfile.ZipFile(self.archive_path, "r")
        except (zipfile.BadZipFile, OSError) as e:
            raise ArchiveReadError(
                f"failed to open zip file: {e}", entity=self.archive_path
            ) from e

        with archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                yield info.filename, self._read_entry(archive, info)

    def list_entries(self) -> list[str]:
        """Get the names of all file entries without reading them."""
        try:
            with zipfile.ZipFile(self.archive_path, "r") as archive:
                return [i.filename for i in archive.infolist() if not i.is_dir()]
        except (zipfile.BadZipFile, OSError) as e:
            raise ArchiveReadError(
                f"failed to open zip file: {e}", entity=self.archive_path
            ) from e

    def _read_entry(self, archive: zipfile.ZipFile, info: zipfile.ZipInfo) -> bytes:
        """Read one entry, mapping every decompression failure to ArchiveReadError."""
        try:
            with archive.open(info, "r") as handle:
                return handle.read()
        except (
            zipfile.BadZipFile,
            zlib.error,
            OSError,
            EOFError,
            RuntimeError,
            NotImplementedError,
        ) as e:
            logger.debug(f"Failed to read {info.filename} from {self.archive_path}: {e}")
            raise ArchiveReadError(
                f"failed to read file from zip: {info.filename}: {e}",
                entity=self.archive_path,
            ) from e
