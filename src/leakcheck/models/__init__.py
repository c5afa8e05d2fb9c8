"""
Data models for leakcheck.

This package contains the secrets, leak surfaces and findings
exchanged between collectors, the matcher and the correlator.
"""

from leakcheck.models.finding import FoundSecretInLambda, SecretsInLambda
from leakcheck.models.secret import Secret, SecretPage
from leakcheck.models.surface import (
    LambdaCode,
    LambdaEnv,
    SurfaceEntity,
    SurfacePage,
    release_all,
)

__all__ = [
    "FoundSecretInLambda",
    "LambdaCode",
    "LambdaEnv",
    "Secret",
    "SecretPage",
    "SecretsInLambda",
    "SurfaceEntity",
    "SurfacePage",
    "release_all",
]
