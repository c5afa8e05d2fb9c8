"""
leakcheck - find AWS Secrets Manager values exposed in Lambda functions

Answers one question: "Which of my secrets can be read from a Lambda
function's environment or deployed code?"

Key Features:
- Read-only: only lists, describes and downloads, never modifies
- Paginated: every scan page returns a token to resume from
- Two leak surfaces: environment variables and deployed code archives

Quick Start:
    >>> from leakcheck.correlation import build_correlator
    >>>
    >>> correlator = build_correlator()
    >>> page = correlator.scan_environments()
    >>> for found in page.found_secrets:
    ...     print(found.lambda_name, [s.key for s in found.secrets])
"""

from __future__ import annotations

__version__ = "0.1.0"

from leakcheck.cursor import NextToken, create_next_token, decode_next_token, encode_next_token
from leakcheck.errors import LeakcheckError, TokenDecodeError
from leakcheck.models import (
    FoundSecretInLambda,
    Secret,
    SecretsInLambda,
)
from leakcheck.correlation import (
    ExposureCorrelator,
    ScanSurface,
    build_correlator,
)

__all__ = [
    "__version__",
    # Tokens
    "NextToken",
    "create_next_token",
    "decode_next_token",
    "encode_next_token",
    # Errors
    "LeakcheckError",
    "TokenDecodeError",
    # Models
    "FoundSecretInLambda",
    "Secret",
    "SecretsInLambda",
    # Scanning
    "ExposureCorrelator",
    "ScanSurface",
    "build_correlator",
]
