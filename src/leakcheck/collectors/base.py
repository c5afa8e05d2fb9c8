"""
Base collector framework for leakcheck.

Collectors fetch exactly one page from an upstream AWS API per call and
hand back the upstream cursor for the following page. They keep no state
between calls beyond their cached service clients.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from leakcheck.errors import ScanCancelledError

logger = logging.getLogger(__name__)

DEFAULT_REGION = "eu-north-1"

# Errors raised by boto3 clients for failed API calls
AWS_ERRORS = (ClientError, BotoCoreError)


class BaseCollector(ABC):
    """
    Abstract base class for paginated upstream sources.

    Attributes:
        collector_name: Unique name for this collector
    """

    collector_name: str = "base"

    def __init__(self, session: Any | None = None, region: str = DEFAULT_REGION) -> None:
        """
        Initialize the collector.

        Args:
            session: Optional boto3 Session. If None, uses default credentials.
            region: AWS region to collect from (default: eu-north-1)
        """
        self._session = session or boto3.Session()
        self._region = region
        self._clients: dict[str, Any] = {}
        self._clients_lock = threading.Lock()

    @property
    def region(self) -> str:
        """Get the AWS region."""
        return self._region

    def _get_client(self, service: str) -> Any:
        """
        Get a boto3 client for the specified service.

        Clients are cached for reuse. Creation is serialized because
        boto3 sessions are not thread-safe; the clients themselves are.

        Args:
            service: AWS service name (e.g., 'lambda', 'secretsmanager')

        Returns:
            boto3 client for the service
        """
        cache_key = f"{service}:{self._region}"
        with self._clients_lock:
            if cache_key not in self._clients:
                self._clients[cache_key] = self._session.client(
                    service, region_name=self._region
                )
            return self._clients[cache_key]

    def _check_cancelled(
        self, cancel_event: threading.Event | None, entity: str | None = None
    ) -> None:
        """Raise ScanCancelledError if the request has been cancelled."""
        if cancel_event is not None and cancel_event.is_set():
            raise ScanCancelledError(
                f"{self.collector_name}: scan cancelled", entity=entity
            )

    @abstractmethod
    def fetch_page(
        self, token: str = "", cancel_event: threading.Event | None = None
    ) -> Any:
        """
        Fetch one page from the upstream source.

        Must be implemented by all collector subclasses.

        Args:
            token: Upstream cursor from the previous page ("" for the first)
            cancel_event: Set when the inbound request is cancelled

        Returns:
            A page object exposing next_token
        """
        pass


def describe_aws_error(error: Exception) -> str:
    """
    Render a boto3 error as "Code - Message".

    Args:
        error: Exception raised by a boto3 client

    Returns:
        Short description suitable for error messages
    """
    if isinstance(error, ClientError):
        error_code = error.response.get("Error", {}).get("Code", "Unknown")
        error_msg = error.response.get("Error", {}).get("Message", str(error))
        return f"{error_code} - {error_msg}"
    return f"{type(error).__name__} - {error}"
