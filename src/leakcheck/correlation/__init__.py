"""
Correlation module for leakcheck.

Correlates secrets from the vault with the places they leak to:
function environment variables and deployed function code.
"""

from leakcheck.correlation.correlator import (
    ExposureCorrelator,
    ScanRun,
    ScanState,
    ScanSurface,
    build_correlator,
    is_client_error,
)

__all__ = [
    "ExposureCorrelator",
    "ScanRun",
    "ScanState",
    "ScanSurface",
    "build_correlator",
    "is_client_error",
]
