"""
Resumption token handling for leakcheck.

A scan walks two independently paginated sources at once: the secret
vault and the function registry. Both cursors are packed into one opaque
token, the base64 encoding of ``{"secret_token": ..., "lambda_token": ...}``,
so the server can resume a scan without keeping session state.

A token with both cursors empty always encodes to the empty string, which
makes an exhausted scan and a fresh one look the same to the caller.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any

from leakcheck.errors import TokenDecodeError


@dataclass(frozen=True)
class NextToken:
    """
    Pair of upstream pagination cursors.

    Attributes:
        secret_token: Vault cursor for the next page of secrets
        lambda_token: Registry marker for the next page of functions
    """

    secret_token: str = ""
    lambda_token: str = ""

    @property
    def is_empty(self) -> bool:
        """Check if both cursors are exhausted."""
        return not self.secret_token and not self.lambda_token

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary."""
        return {
            "secret_token": self.secret_token,
            "lambda_token": self.lambda_token,
        }

    def encode(self) -> str:
        """Encode to an opaque token string."""
        return encode_next_token(self)


def encode_next_token(token: NextToken) -> str:
    """
    Encode a token pair.

    Args:
        token: Cursor pair to encode

    Returns:
        Base64 token, or "" when both cursors are empty
    """
    if token.is_empty:
        return ""
    payload = json.dumps(token.to_dict(), separators=(",", ":"))
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def decode_next_token(token: str | None) -> NextToken:
    """
    Decode a token string into its cursor pair.

    Args:
        token: Token previously returned as next_token, or None/""

    Returns:
        Decoded NextToken; an absent token decodes to both cursors empty

    Raises:
        TokenDecodeError: If the token is not base64 JSON of the expected shape
    """
    if not token:
        return NextToken()

    try:
        raw = base64.b64decode(token.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise TokenDecodeError(f"failed to decode token: {e}") from e

    try:
        data: Any = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise TokenDecodeError(f"failed to unmarshal token: {e}") from e

    if not isinstance(data, dict):
        raise TokenDecodeError("failed to unmarshal token: expected a JSON object")

    secret_token = data.get("secret_token", "")
    lambda_token = data.get("lambda_token", "")
    # null leaves a cursor empty; any other non-string is malformed
    secret_token = "" if secret_token is None else secret_token
    lambda_token = "" if lambda_token is None else lambda_token
    if not isinstance(secret_token, str) or not isinstance(lambda_token, str):
        raise TokenDecodeError("failed to unmarshal token: cursors must be strings")

    return NextToken(secret_token=secret_token, lambda_token=lambda_token)


def create_next_token(secret_token: str | None, lambda_token: str | None) -> str:
    """Build and encode the token for the next page from two upstream cursors."""
    return encode_next_token(
        NextToken(secret_token=secret_token or "", lambda_token=lambda_token or "")
    )
