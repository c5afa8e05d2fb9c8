"""
AWS Secrets Manager collector for leakcheck.

Fetches one page of secrets and resolves every secret's JSON value into
flat key/value records. The page size is whatever Secrets Manager returns
by default.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any

from leakcheck.collectors.base import AWS_ERRORS, BaseCollector, describe_aws_error
from leakcheck.errors import MalformedSecretValue, UpstreamGetError, UpstreamListError
from leakcheck.models import Secret, SecretPage

logger = logging.getLogger(__name__)


class SecretsManagerCollector(BaseCollector):
    """
    Collects secret values from AWS Secrets Manager.

    Secrets without a string value (binary-only secrets) are skipped.
    A string value that is not a flat JSON object of strings fails the
    whole page, since dropping it would hide real leaks.
    """

    collector_name = "aws_secretsmanager"

    def fetch_page(
        self, token: str = "", cancel_event: threading.Event | None = None
    ) -> SecretPage:
        """
        Fetch one page of secrets.

        Args:
            token: Secrets Manager NextToken from the previous page
            cancel_event: Set when the inbound request is cancelled

        Returns:
            SecretPage with flattened secrets and the vault's NextToken

        Raises:
            UpstreamListError: If listing secrets fails
            UpstreamGetError: If fetching a secret value fails
            MalformedSecretValue: If a secret value is not a flat string map
        """
        client = self._get_client("secretsmanager")

        params: dict[str, Any] = {}
        if token:
            params["NextToken"] = token

        try:
            response = client.list_secrets(**params)
        except AWS_ERRORS as e:
            raise UpstreamListError(
                f"unable to list secrets: {describe_aws_error(e)}"
            ) from e

        secrets: list[Secret] = []
        for entry in response.get("SecretList", []):
            self._check_cancelled(cancel_event, entry.get("Name"))
            secrets.extend(self._get_secret_values(client, entry))

        next_token = response.get("NextToken") or ""
        logger.debug(
            f"Fetched {len(secrets)} secret values, more pages: {bool(next_token)}"
        )
        return SecretPage(secrets=secrets, next_token=next_token)

    def _get_secret_values(self, client: Any, entry: dict[str, Any]) -> list[Secret]:
        """Resolve one listed secret into its key/value records."""
        name = entry.get("Name", "")
        arn = entry.get("ARN", "")

        try:
            response = client.get_secret_value(SecretId=arn or name)
        except AWS_ERRORS as e:
            raise UpstreamGetError(
                f"unable to get secret value: {describe_aws_error(e)}", entity=name
            ) from e

        secret_string = response.get("SecretString")
        if secret_string is None:
            logger.debug(f"Skipping secret {name} without a string value")
            return []

        values = parse_secret_string(secret_string, name)
        return [
            Secret(name=name, arn=arn, key=key, value=value)
            for key, value in values.items()
        ]


def parse_secret_string(secret_string: str, name: str = "") -> dict[str, str]:
    """
    Parse a secret value as a flat JSON object of strings.

    Args:
        secret_string: Raw SecretString
        name: Secret name, for error context

    Returns:
        Mapping of key to value

    Raises:
        MalformedSecretValue: If the value has any other shape
    """
    try:
        data = json.loads(secret_string)
    except json.JSONDecodeError as e:
        raise MalformedSecretValue(
            f"error unmarshalling secret json: {e.msg}", entity=name
        ) from e

    if not isinstance(data, dict):
        raise MalformedSecretValue(
            "secret value is not a JSON object", entity=name
        )

    values: dict[str, str] = {}
    for key, value in data.items():
        if not isinstance(value, str):
            raise MalformedSecretValue(
                f"secret key {key!r} does not hold a string value", entity=name
            )
        values[key] = _replace_lone_surrogates(value)

    return values


def _replace_lone_surrogates(value: str) -> str:
    # JSON \u escapes can decode to unpaired surrogates; store U+FFFD instead
    return value.encode("utf-16", "surrogatepass").decode("utf-16", "replace")
