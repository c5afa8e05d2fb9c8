"""
Error taxonomy for leakcheck.

Every error raised while handling a scan aborts the whole request. Errors
carry the name of the offending secret or function when one is known, and
a flag telling the HTTP layer whether the caller or an upstream is at fault.
"""

from __future__ import annotations

from typing import Any


class LeakcheckError(Exception):
    """Base exception for scan failures."""

    client_error = False

    def __init__(self, message: str, entity: str | None = None):
        self.message = message
        self.entity = entity
        super().__init__(message)

    def __str__(self) -> str:
        if self.entity:
            return f"{self.message} ({self.entity})"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "entity": self.entity,
        }


class UpstreamListError(LeakcheckError):
    """Listing secrets or functions failed."""

    pass


class UpstreamGetError(LeakcheckError):
    """Fetching the details of one secret or function failed."""

    pass


class MalformedSecretValue(LeakcheckError):
    """A secret value is not a flat JSON object of strings."""

    pass


class DownloadError(LeakcheckError):
    """Downloading a deployment artifact failed."""

    pass


class ArchiveReadError(LeakcheckError):
    """A deployment archive or one of its entries could not be read."""

    pass


class TokenDecodeError(LeakcheckError):
    """The resumption token sent by the caller is malformed."""

    client_error = True


class ScanCancelledError(LeakcheckError):
    """The request was cancelled while upstream work was in flight."""

    pass
