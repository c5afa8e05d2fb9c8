"""
Web interface for leakcheck.

Provides the HTTP API serving the environment and deployed
code scans.
"""

from leakcheck.web.ratelimit import RateLimiter
from leakcheck.web.server import (
    InFlightScans,
    LeakcheckRequestHandler,
    LeakcheckServer,
    serve,
)

__all__ = [
    "InFlightScans",
    "LeakcheckRequestHandler",
    "LeakcheckServer",
    "RateLimiter",
    "serve",
]
