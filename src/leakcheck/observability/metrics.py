"""
Metrics for leakcheck.

Scan and request measurements are recorded through LeakcheckMetrics into
a pluggable backend: an in-process store that backs the server's
/metrics route, or CloudWatch for deployed services.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

# CloudWatch caps dimensions per datum and data per request
_MAX_DIMENSIONS = 10
_MAX_BATCH = 20

_CLOUDWATCH_UNITS = {
    "count": "Count",
    "seconds": "Seconds",
    "bytes": "Bytes",
}


class MetricType(Enum):
    """Kinds of measurement."""

    COUNTER = "counter"
    GAUGE = "gauge"
    TIMER = "timer"


@dataclass(frozen=True)
class MetricValue:
    """One recorded measurement."""

    name: str
    value: float
    metric_type: MetricType
    tags: dict[str, str] = field(default_factory=dict)
    unit: str = ""
    timestamp: float = field(default_factory=time.time)

    @property
    def series_key(self) -> tuple[str, tuple[tuple[str, str], ...]]:
        """Identity of the series this value belongs to."""
        return self.name, tuple(sorted(self.tags.items()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.metric_type.value,
            "value": self.value,
            "unit": self.unit,
            "tags": dict(self.tags),
            "timestamp": self.timestamp,
        }


class MetricsBackend(ABC):
    """Destination for recorded metric values."""

    @abstractmethod
    def record(self, metric: MetricValue) -> None:
        pass

    @abstractmethod
    def flush(self) -> None:
        pass


class InMemoryMetricsBackend(MetricsBackend):
    """
    Process-local backend.

    Keeps running aggregates per series for summary() and a bounded
    window of raw values for inspection. Safe to share between request
    threads.
    """

    def __init__(self, max_size: int = 10000):
        """
        Initialize the backend.

        Args:
            max_size: Raw values retained for get_metrics()
        """
        self._recent: deque[MetricValue] = deque(maxlen=max_size)
        self._series: dict[tuple[str, tuple[tuple[str, str], ...]], dict[str, Any]] = {}
        self._lock = threading.Lock()

    def record(self, metric: MetricValue) -> None:
        with self._lock:
            self._recent.append(metric)
            agg = self._series.get(metric.series_key)
            if agg is None:
                agg = {"type": metric.metric_type.value, "tags": dict(metric.tags)}
                self._series[metric.series_key] = agg
            if metric.metric_type is MetricType.COUNTER:
                agg["value"] = agg.get("value", 0) + metric.value
            elif metric.metric_type is MetricType.TIMER:
                agg["count"] = agg.get("count", 0) + 1
                agg["sum"] = agg.get("sum", 0.0) + metric.value
            else:
                agg["value"] = metric.value

    def flush(self) -> None:
        """Nothing to flush; values are aggregated as they arrive."""

    def get_metrics(self, name: str | None = None) -> list[MetricValue]:
        """
        Get retained raw values, oldest first.

        Args:
            name: Only return values of this metric
        """
        with self._lock:
            values = list(self._recent)
        if name is None:
            return values
        return [v for v in values if v.name == name]

    def summary(self) -> dict[str, list[dict[str, Any]]]:
        """
        Aggregated view of every series, grouped by metric name.

        Counters report their total as ``value``, timers report ``count``
        and ``sum``, gauges report their latest ``value``.
        """
        with self._lock:
            items = sorted(self._series.items(), key=lambda item: item[0])
            grouped: dict[str, list[dict[str, Any]]] = {}
            for (name, _), agg in items:
                grouped.setdefault(name, []).append(dict(agg, tags=dict(agg["tags"])))
        return grouped

    def clear(self) -> None:
        with self._lock:
            self._recent.clear()
            self._series.clear()


class CloudWatchMetricsBackend(MetricsBackend):
    """
    Buffers values and publishes them with put_metric_data.

    Publishing failures are logged and the batch is dropped; metrics
    never fail a scan.
    """

    def __init__(
        self,
        namespace: str = "Leakcheck",
        region: str = "eu-north-1",
        buffer_size: int = 20,
        session: Any | None = None,
    ):
        """
        Initialize the backend.

        Args:
            namespace: CloudWatch namespace
            region: AWS region to publish to
            buffer_size: Values buffered before an automatic flush
            session: Optional boto3 Session
        """
        self.namespace = namespace
        self.region = region
        self.buffer_size = max(1, buffer_size)
        self._session = session
        self._client: Any = None
        self._pending: list[MetricValue] = []
        self._lock = threading.Lock()

    def _get_client(self) -> Any:
        if self._client is None:
            session = self._session or boto3.Session()
            self._client = session.client("cloudwatch", region_name=self.region)
        return self._client

    def record(self, metric: MetricValue) -> None:
        with self._lock:
            self._pending.append(metric)
            should_flush = len(self._pending) >= self.buffer_size
        if should_flush:
            self.flush()

    def flush(self) -> None:
        with self._lock:
            pending, self._pending = self._pending, []
        if not pending:
            return

        data = [self._to_datum(m) for m in pending]
        try:
            client = self._get_client()
            for start in range(0, len(data), _MAX_BATCH):
                client.put_metric_data(
                    Namespace=self.namespace,
                    MetricData=data[start : start + _MAX_BATCH],
                )
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Dropped {len(data)} metric values, CloudWatch publish failed: {e}")

    @staticmethod
    def _to_datum(metric: MetricValue) -> dict[str, Any]:
        dimensions = [{"Name": k, "Value": v} for k, v in sorted(metric.tags.items())]
        return {
            "MetricName": metric.name,
            "Value": metric.value,
            "Timestamp": metric.timestamp,
            "Unit": _CLOUDWATCH_UNITS.get(metric.unit, "None"),
            "Dimensions": dimensions[:_MAX_DIMENSIONS],
        }


class LeakcheckMetrics:
    """Records leakcheck measurements into a backend."""

    def __init__(self, backend: MetricsBackend | None = None):
        self.backend = backend or InMemoryMetricsBackend()
        self._default_tags: dict[str, str] = {}

    def set_default_tags(self, **tags: str) -> None:
        """Add tags applied to every value recorded from now on."""
        self._default_tags.update(tags)

    def _emit(self, name: str, value: float, metric_type: MetricType, unit: str, tags: dict[str, str]) -> None:
        self.backend.record(
            MetricValue(
                name=name,
                value=value,
                metric_type=metric_type,
                tags={**self._default_tags, **tags},
                unit=unit,
            )
        )

    def counter(self, name: str, value: float = 1, **tags: str) -> None:
        self._emit(name, value, MetricType.COUNTER, "count", tags)

    def gauge(self, name: str, value: float, unit: str = "", **tags: str) -> None:
        self._emit(name, value, MetricType.GAUGE, unit, tags)

    def timing(self, name: str, duration_seconds: float, **tags: str) -> None:
        self._emit(name, duration_seconds, MetricType.TIMER, "seconds", tags)

    @contextmanager
    def timer(self, name: str, **tags: str) -> Iterator[None]:
        """Time the enclosed block, recording even if it raises."""
        started = time.perf_counter()
        try:
            yield
        finally:
            self.timing(name, time.perf_counter() - started, **tags)

    def scan_completed(
        self,
        surface: str,
        duration_seconds: float,
        entity_count: int,
        finding_count: int,
    ) -> None:
        """Record a successful scan page."""
        self.counter("scans.completed", surface=surface)
        self.timing("scans.duration", duration_seconds, surface=surface)
        self.gauge("scans.entity_count", entity_count, surface=surface)
        self.gauge("scans.finding_count", finding_count, surface=surface)

    def scan_failed(self, surface: str, error_type: str = "unknown") -> None:
        self.counter("scans.failed", surface=surface, error_type=error_type)

    def secrets_exposed(self, surface: str, count: int) -> None:
        """Count matched secret entries; pages without matches record nothing."""
        if count > 0:
            self.counter("secrets.exposed", count, surface=surface)

    def api_request(
        self,
        endpoint: str,
        method: str,
        status_code: int,
        duration_seconds: float,
    ) -> None:
        """Record one handled HTTP request."""
        self.counter("api.requests", endpoint=endpoint, method=method, status=str(status_code))
        self.timing("api.duration", duration_seconds, endpoint=endpoint, method=method)

    def flush(self) -> None:
        self.backend.flush()


_metrics: LeakcheckMetrics | None = None
_metrics_lock = threading.Lock()


def get_metrics() -> LeakcheckMetrics:
    """Get the process metrics, created with an in-memory backend on first use."""
    global _metrics
    with _metrics_lock:
        if _metrics is None:
            _metrics = LeakcheckMetrics(InMemoryMetricsBackend())
        return _metrics


def configure_metrics(backend: MetricsBackend) -> LeakcheckMetrics:
    """
    Replace the process metrics with one recording into ``backend``.

    Returns:
        The new LeakcheckMetrics instance
    """
    global _metrics
    with _metrics_lock:
        _metrics = LeakcheckMetrics(backend)
        return _metrics
