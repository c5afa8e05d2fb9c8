"""
Secret exposure correlator for leakcheck.

Handles one scan request: fetches one page of secrets and one page of
surface entities, matches every entity against the secrets of that page,
and packs both upstream cursors into the next resumption token.

Matching is scoped to the current pages. A secret listed on a later
vault page is never checked against a function listed on an earlier
registry page, since both cursors advance together.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator
from uuid import uuid4

from leakcheck.collectors.aws_lambda import LambdaEnvCollector
from leakcheck.collectors.aws_lambda_code import LambdaCodeCollector
from leakcheck.collectors.aws_secretsmanager import SecretsManagerCollector
from leakcheck.collectors.base import BaseCollector
from leakcheck.config.settings import ServerConfig
from leakcheck.cursor import NextToken, create_next_token, decode_next_token
from leakcheck.detection.matcher import SecretMatcher
from leakcheck.errors import LeakcheckError, ScanCancelledError
from leakcheck.models import (
    FoundSecretInLambda,
    SecretPage,
    SecretsInLambda,
    SurfacePage,
)
from leakcheck.observability.logging import get_logger
from leakcheck.observability.metrics import LeakcheckMetrics, get_metrics

logger = logging.getLogger(__name__)
event_logger = get_logger(__name__)


class ScanSurface(Enum):
    """Leak surfaces that can be scanned."""

    ENV = "env"
    CODE = "code"


class ScanState(Enum):
    """Lifecycle of one scan request."""

    START = "start"
    SECRETS_FETCHED = "secrets_fetched"
    SURFACE_FETCHED = "surface_fetched"
    MATCHED = "matched"
    RESPONDED = "responded"
    FAILED = "failed"


@dataclass
class ScanRun:
    """
    Bookkeeping for one scan request.

    Attributes:
        surface: Surface being scanned
        token: Decoded incoming cursors
        scan_id: Unique identifier used in logs
        state: Current lifecycle state
        history: States visited, in order
    """

    surface: ScanSurface
    token: NextToken
    scan_id: str = field(default_factory=lambda: str(uuid4()))
    state: ScanState = ScanState.START
    secret_count: int = 0
    entity_count: int = 0
    history: list[ScanState] = field(default_factory=lambda: [ScanState.START])
    started: float = field(default_factory=time.perf_counter)

    def advance(self, state: ScanState) -> None:
        """Move to the next state."""
        logger.debug(f"Scan {self.scan_id}: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    @property
    def elapsed(self) -> float:
        """Seconds since the request started."""
        return time.perf_counter() - self.started


class ExposureCorrelator:
    """
    Correlates vault secrets with Lambda leak surfaces, one page at a time.

    The correlator holds no per-request state and can serve concurrent
    requests; every call re-fetches its pages from upstream.
    """

    def __init__(
        self,
        secret_collector: BaseCollector,
        env_collector: BaseCollector,
        code_collector: BaseCollector,
        matcher: SecretMatcher | None = None,
        metrics: LeakcheckMetrics | None = None,
    ):
        """
        Initialize the correlator.

        Args:
            secret_collector: Source of secret pages
            env_collector: Source of function environment pages
            code_collector: Source of function code archive pages
            matcher: Secret matcher (default: SecretMatcher)
            metrics: Metrics sink (default: process metrics)
        """
        self._secret_collector = secret_collector
        self._surface_collectors = {
            ScanSurface.ENV: env_collector,
            ScanSurface.CODE: code_collector,
        }
        self._matcher = matcher or SecretMatcher()
        self._metrics = metrics

    @property
    def metrics(self) -> LeakcheckMetrics:
        """Get the metrics sink."""
        return self._metrics or get_metrics()

    def scan_environments(
        self, token: str | None = None, cancel_event: threading.Event | None = None
    ) -> SecretsInLambda:
        """Scan one page of function environment variables."""
        return self.scan(ScanSurface.ENV, token, cancel_event)

    def scan_deployed_code(
        self, token: str | None = None, cancel_event: threading.Event | None = None
    ) -> SecretsInLambda:
        """Scan one page of deployed function code."""
        return self.scan(ScanSurface.CODE, token, cancel_event)

    def scan(
        self,
        surface: ScanSurface,
        token: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> SecretsInLambda:
        """
        Scan one page of a surface.

        Args:
            surface: Surface to scan
            token: Resumption token from a previous page, or None/""
            cancel_event: Set when the inbound request is cancelled

        Returns:
            Findings for this page and the next resumption token

        Raises:
            TokenDecodeError: If the token is malformed
            LeakcheckError: If any upstream fetch, download or scan fails
        """
        cursors = decode_next_token(token)
        run = ScanRun(surface=surface, token=cursors)
        event_logger.scan_started(run.scan_id, surface.value, resumed=not cursors.is_empty)

        try:
            result = self._run(run, cancel_event)
        except Exception as e:
            run.advance(ScanState.FAILED)
            error_type = type(e).__name__
            event_logger.scan_failed(run.scan_id, surface.value, e)
            self.metrics.scan_failed(surface.value, error_type=error_type)
            raise

        run.advance(ScanState.RESPONDED)
        duration = run.elapsed
        event_logger.scan_completed(
            run.scan_id,
            surface.value,
            secret_count=run.secret_count,
            entity_count=run.entity_count,
            finding_count=len(result.found_secrets),
            duration_seconds=duration,
            has_more=bool(result.next_token),
        )
        self.metrics.scan_completed(
            surface.value, duration, run.entity_count, len(result.found_secrets)
        )
        self.metrics.secrets_exposed(surface.value, result.secret_count)
        return result

    def scan_all(
        self,
        surface: ScanSurface,
        token: str | None = None,
        max_pages: int | None = None,
        cancel_event: threading.Event | None = None,
    ) -> Iterator[SecretsInLambda]:
        """
        Follow resumption tokens until both sources are exhausted.

        Args:
            surface: Surface to scan
            token: Token to resume from
            max_pages: Stop after this many pages (None = no limit)
            cancel_event: Set when the caller cancels

        Yields:
            One SecretsInLambda per page
        """
        pages = 0
        while True:
            page = self.scan(surface, token, cancel_event)
            pages += 1
            yield page
            token = page.next_token
            if not token:
                return
            if max_pages is not None and pages >= max_pages:
                logger.info(f"Stopping {surface.value} scan after {pages} pages")
                return

    def _run(
        self, run: ScanRun, cancel_event: threading.Event | None
    ) -> SecretsInLambda:
        secret_page, surface_page = self._fetch_pages(run, cancel_event)
        run.secret_count = len(secret_page)
        run.entity_count = len(surface_page)

        found_secrets: list[FoundSecretInLambda] = []
        try:
            for entity in surface_page:
                if cancel_event is not None and cancel_event.is_set():
                    raise ScanCancelledError("scan cancelled", entity=entity.name)
                try:
                    found = self._matcher.match_entity(secret_page.secrets, entity)
                finally:
                    entity.release()
                if not found:
                    continue
                found_secrets.append(
                    FoundSecretInLambda(
                        secrets=found,
                        lambda_name=entity.name,
                        lambda_arn=entity.arn,
                    )
                )
        finally:
            surface_page.release()
        run.advance(ScanState.MATCHED)

        next_token = create_next_token(secret_page.next_token, surface_page.next_token)
        return SecretsInLambda(found_secrets=found_secrets, next_token=next_token)

    def _fetch_pages(
        self, run: ScanRun, cancel_event: threading.Event | None
    ) -> tuple[SecretPage, SurfacePage]:
        """
        Fetch the secret page and the surface page concurrently.

        The first fetch to fail aborts the other one, and its error is the
        one raised. A surface page that did arrive is released first.
        """
        surface_collector = self._surface_collectors[run.surface]
        abort = _FetchAbort(cancel_event)
        errors: list[BaseException] = []
        errors_lock = threading.Lock()

        def fetch(collector: BaseCollector, token: str) -> Any:
            try:
                return collector.fetch_page(token, abort)
            except Exception as e:
                with errors_lock:
                    errors.append(e)
                abort.set()
                raise

        with ThreadPoolExecutor(max_workers=2) as executor:
            secret_future: Future = executor.submit(
                fetch, self._secret_collector, run.token.secret_token
            )
            surface_future: Future = executor.submit(
                fetch, surface_collector, run.token.lambda_token
            )

        if errors:
            if surface_future.exception() is None:
                surface_future.result().release()
            raise errors[0]

        run.advance(ScanState.SECRETS_FETCHED)
        run.advance(ScanState.SURFACE_FETCHED)
        return secret_future.result(), surface_future.result()


class _FetchAbort(threading.Event):
    """Set when a sibling fetch fails; also reports the caller's cancellation."""

    def __init__(self, parent: threading.Event | None = None):
        super().__init__()
        self._parent = parent

    def is_set(self) -> bool:
        return super().is_set() or (self._parent is not None and self._parent.is_set())


def is_client_error(error: BaseException) -> bool:
    """Check if an error was caused by the caller rather than upstream."""
    return isinstance(error, LeakcheckError) and error.client_error


def build_correlator(
    config: ServerConfig | None = None,
    session: Any | None = None,
    metrics: LeakcheckMetrics | None = None,
) -> ExposureCorrelator:
    """
    Build a correlator wired to the AWS collectors.

    Args:
        config: Service configuration (default: ServerConfig())
        session: Optional boto3 Session shared by all collectors
        metrics: Metrics sink (default: process metrics)

    Returns:
        ExposureCorrelator instance
    """
    config = config or ServerConfig()
    return ExposureCorrelator(
        secret_collector=SecretsManagerCollector(session=session, region=config.region),
        env_collector=LambdaEnvCollector(session=session, region=config.region),
        code_collector=LambdaCodeCollector(
            session=session,
            region=config.region,
            page_size=config.code_page_size,
            download_workers=config.download_workers,
            temp_dir=config.temp_dir,
            download_timeout=config.download_timeout_seconds,
        ),
        metrics=metrics,
    )
