"""
Finding data models for leakcheck.

Findings associate one function with the secrets whose values were
found in it. They are built per request and never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from leakcheck.models.secret import Secret


@dataclass
class FoundSecretInLambda:
    """
    Secrets found in one function.

    Attributes:
        secrets: Matched secrets, one entry per match (duplicates kept)
        lambda_name: Function name
        lambda_arn: Function ARN
    """

    secrets: list[Secret]
    lambda_name: str
    lambda_arn: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "secrets": [s.to_dict() for s in self.secrets],
            "lambda_name": self.lambda_name,
            "lambda_arn": self.lambda_arn,
        }


@dataclass
class SecretsInLambda:
    """
    Response for one scan page.

    Attributes:
        found_secrets: Findings for functions with at least one match
        next_token: Resumption token, empty once both sources are exhausted
    """

    found_secrets: list[FoundSecretInLambda] = field(default_factory=list)
    next_token: str = ""

    @property
    def secret_count(self) -> int:
        """Total number of matched secret entries on this page."""
        return sum(len(f.secrets) for f in self.found_secrets)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "found_secrets": [f.to_dict() for f in self.found_secrets],
            "next_token": self.next_token,
        }
