"""
Observability for leakcheck.

Provides logging and metrics for monitoring scan
requests and upstream health.
"""

from leakcheck.observability.logging import (
    HumanReadableFormatter,
    LeakcheckLogger,
    StructuredFormatter,
    configure_logging,
    get_logger,
)
from leakcheck.observability.metrics import (
    CloudWatchMetricsBackend,
    InMemoryMetricsBackend,
    LeakcheckMetrics,
    MetricsBackend,
    MetricType,
    MetricValue,
    configure_metrics,
    get_metrics,
)

__all__ = [
    # Logging
    "HumanReadableFormatter",
    "LeakcheckLogger",
    "StructuredFormatter",
    "configure_logging",
    "get_logger",
    # Metrics
    "CloudWatchMetricsBackend",
    "InMemoryMetricsBackend",
    "LeakcheckMetrics",
    "MetricsBackend",
    "MetricType",
    "MetricValue",
    "configure_metrics",
    "get_metrics",
]
