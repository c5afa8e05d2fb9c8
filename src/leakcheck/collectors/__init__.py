"""
Collectors for leakcheck.

Collectors fetch one page at a time from the secret vault and from the
two Lambda leak surfaces (environment variables and deployed code).
"""

from __future__ import annotations

from leakcheck.collectors.artifacts import download_to_temp_file
from leakcheck.collectors.aws_lambda import BaseLambdaCollector, LambdaEnvCollector
from leakcheck.collectors.aws_lambda_code import LambdaCodeCollector
from leakcheck.collectors.aws_secretsmanager import (
    SecretsManagerCollector,
    parse_secret_string,
)
from leakcheck.collectors.base import DEFAULT_REGION, BaseCollector

__all__ = [
    "DEFAULT_REGION",
    "BaseCollector",
    "BaseLambdaCollector",
    "LambdaCodeCollector",
    "LambdaEnvCollector",
    "SecretsManagerCollector",
    "download_to_temp_file",
    "parse_secret_string",
]
