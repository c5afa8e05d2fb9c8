"""
Secret data model for leakcheck.

A vault secret whose value holds N keys is flattened into N Secret
records that share the secret's name and ARN.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator


@dataclass(frozen=True)
class Secret:
    """
    One resolved key/value pair of a vault secret.

    Attributes:
        name: Secret name in the vault
        arn: Secret ARN
        key: Key inside the secret's JSON value
        value: Plain text value stored under the key
    """

    name: str
    arn: str
    key: str
    value: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to the response representation."""
        return {
            "Name": self.name,
            "ARN": self.arn,
            "key": self.key,
            "value": self.value,
        }

    def __repr__(self) -> str:
        return f"Secret(name={self.name!r}, key={self.key!r}, value=****)"


@dataclass
class SecretPage:
    """One page of secrets plus the vault cursor for the next page."""

    secrets: list[Secret] = field(default_factory=list)
    next_token: str = ""

    def __iter__(self) -> Iterator[Secret]:
        return iter(self.secrets)

    def __len__(self) -> int:
        return len(self.secrets)
