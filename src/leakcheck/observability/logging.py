"""
Logging setup for leakcheck.

Two output formats are supported on the ``leakcheck`` logger hierarchy:
JSON lines for log shipping and a plain console format. Scan lifecycle
events go through LeakcheckLogger so they carry the same fields in both
formats. Secret values are never passed to the logger; only names and keys.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO, Any, MutableMapping

ROOT_LOGGER = "leakcheck"

# Attributes present on every LogRecord; anything else came in via extra=
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}


class StructuredFormatter(logging.Formatter):
    """
    Renders each record as one JSON object per line.

    Fields passed through ``extra=`` become top-level keys.
    """

    def __init__(
        self,
        static_fields: dict[str, Any] | None = None,
        include_location: bool = False,
    ):
        """
        Initialize the formatter.

        Args:
            static_fields: Fields added to every line (e.g. service name)
            include_location: Add source file, line and function
        """
        super().__init__()
        self.static_fields = dict(static_fields or {})
        self.include_location = include_location

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.include_location:
            payload["location"] = f"{record.pathname}:{record.lineno} in {record.funcName}"
        payload.update(_extra_fields(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        payload.update(self.static_fields)
        return json.dumps(payload, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Console format: timestamp, level, logger and message, followed by
    any extra fields as key=value pairs.
    """

    def __init__(self, show_fields: bool = True):
        super().__init__(
            fmt="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        self.show_fields = show_fields

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        if not self.show_fields:
            return line
        fields = _extra_fields(record)
        if not fields:
            return line
        head, sep, tail = line.partition("\n")
        suffix = " ".join(f"{k}={v}" for k, v in sorted(fields.items()))
        return f"{head} [{suffix}]{sep}{tail}"


class LeakcheckLogger(logging.LoggerAdapter):
    """
    Logger adapter carrying bound context fields and scan event helpers.

    Example:
        >>> log = get_logger(__name__).bind(surface="code")
        >>> log.info("Downloading archive", extra={"function": "api"})
    """

    def __init__(self, logger: logging.Logger, fields: dict[str, Any] | None = None):
        super().__init__(logger, dict(fields or {}))

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def bind(self, **fields: Any) -> LeakcheckLogger:
        """Get a logger with additional context fields."""
        return LeakcheckLogger(self.logger, {**self.extra, **fields})

    def scan_started(self, scan_id: str, surface: str, resumed: bool) -> None:
        self.info(
            "Scan started",
            extra={
                "event_type": "scan.started",
                "scan_id": scan_id,
                "surface": surface,
                "resumed": resumed,
            },
        )

    def scan_completed(
        self,
        scan_id: str,
        surface: str,
        secret_count: int,
        entity_count: int,
        finding_count: int,
        duration_seconds: float,
        has_more: bool,
    ) -> None:
        self.info(
            "Scan completed",
            extra={
                "event_type": "scan.completed",
                "scan_id": scan_id,
                "surface": surface,
                "secret_count": secret_count,
                "entity_count": entity_count,
                "finding_count": finding_count,
                "duration_seconds": round(duration_seconds, 3),
                "has_more": has_more,
            },
        )

    def scan_failed(self, scan_id: str, surface: str, error: BaseException | str) -> None:
        error_type = type(error).__name__ if isinstance(error, BaseException) else "error"
        self.error(
            "Scan failed",
            extra={
                "event_type": "scan.failed",
                "scan_id": scan_id,
                "surface": surface,
                "error_type": error_type,
                "error": str(error),
            },
        )


def configure_logging(
    level: str = "INFO",
    format: str = "human",
    stream: IO[str] | None = None,
    static_fields: dict[str, Any] | None = None,
) -> logging.Handler:
    """
    Install a single handler on the leakcheck logger.

    Calling this again replaces the previous handler.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: "human" or "json"
        stream: Output stream (default: sys.stderr)
        static_fields: Fields added to every JSON line

    Returns:
        The installed handler
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"unknown log level: {level}")

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    if format == "json":
        handler.setFormatter(StructuredFormatter(static_fields=static_fields))
    else:
        handler.setFormatter(HumanReadableFormatter())

    root = logging.getLogger(ROOT_LOGGER)
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(numeric_level)
    return handler


def get_logger(name: str, **fields: Any) -> LeakcheckLogger:
    """
    Get an event logger under the leakcheck hierarchy.

    Args:
        name: Logger name, usually __name__
        **fields: Context fields bound to every record

    Returns:
        LeakcheckLogger instance
    """
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return LeakcheckLogger(logging.getLogger(name), fields)
