"""
Pytest configuration and fixtures for leakcheck tests.

This module provides fake AWS clients, archive builders and in-memory
collectors shared across the unit tests.
"""

from __future__ import annotations

import io
import json
import os
import threading
import zipfile
from typing import Any, Callable
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from leakcheck.models import (
    LambdaCode,
    LambdaEnv,
    Secret,
    SecretPage,
    SurfaceEntity,
    SurfacePage,
)
from leakcheck.observability import InMemoryMetricsBackend, LeakcheckMetrics


def make_client_error(code: str = "AccessDeniedException", operation: str = "Call") -> ClientError:
    """Build a botocore ClientError like the ones boto3 clients raise."""
    return ClientError(
        {"Error": {"Code": code, "Message": f"{code} message"}},
        operation,
    )


# Sample data fixtures


@pytest.fixture
def db_secret() -> Secret:
    """Return the single-key database secret."""
    return Secret(
        name="db",
        arn="arn:aws:secretsmanager:eu-north-1:123456789012:secret:db-AbCdEf",
        key="pw",
        value="pw123",
    )


@pytest.fixture
def creds_secrets() -> list[Secret]:
    """Return a multi-key secret flattened into records."""
    arn = "arn:aws:secretsmanager:eu-north-1:123456789012:secret:creds-XyZ123"
    return [
        Secret(name="creds", arn=arn, key="user", value="admin"),
        Secret(name="creds", arn=arn, key="token", value="tok-9f8e7d"),
    ]


# Archive fixtures


@pytest.fixture
def make_zip(tmp_path) -> Callable[..., str]:
    """Return a factory writing a zip archive under tmp_path."""
    counter = {"n": 0}

    def _make(entries: dict[str, bytes | str], name: str | None = None) -> str:
        counter["n"] += 1
        path = tmp_path / (name or f"archive-{counter['n']}.zip")
        with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for entry_name, content in entries.items():
                archive.writestr(entry_name, content)
        return str(path)

    return _make


@pytest.fixture
def zip_bytes() -> Callable[[dict[str, bytes | str]], bytes]:
    """Return a factory producing zip archive bytes in memory."""

    def _make(entries: dict[str, bytes | str]) -> bytes:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for entry_name, content in entries.items():
                archive.writestr(entry_name, content)
        return buffer.getvalue()

    return _make


# Mock AWS clients


@pytest.fixture
def mock_secretsmanager_client() -> MagicMock:
    """Return a mock Secrets Manager client with one JSON secret."""
    client = MagicMock()
    client.list_secrets.return_value = {
        "SecretList": [
            {
                "Name": "db",
                "ARN": "arn:aws:secretsmanager:eu-north-1:123456789012:secret:db-AbCdEf",
            }
        ]
    }
    client.get_secret_value.return_value = {
        "Name": "db",
        "SecretString": json.dumps({"pw": "pw123"}),
    }
    return client


@pytest.fixture
def mock_lambda_client() -> MagicMock:
    """Return a mock Lambda client with one function."""
    client = MagicMock()
    client.list_functions.return_value = {
        "Functions": [
            {
                "FunctionName": "api",
                "FunctionArn": "arn:aws:lambda:eu-north-1:123456789012:function:api",
            }
        ]
    }
    client.get_function_configuration.return_value = {
        "FunctionName": "api",
        "Environment": {"Variables": {"DB_PASS": "pw123"}},
    }
    client.get_function.return_value = {
        "Configuration": {"FunctionName": "api"},
        "Code": {"RepositoryType": "S3", "Location": "https://example.com/api.zip"},
    }
    return client


@pytest.fixture
def mock_boto_session(mock_secretsmanager_client, mock_lambda_client) -> MagicMock:
    """Return a mock boto3 Session handing out the mock clients."""
    session = MagicMock()
    clients = {
        "secretsmanager": mock_secretsmanager_client,
        "lambda": mock_lambda_client,
    }
    session.client.side_effect = lambda service, **kwargs: clients[service]
    return session


# Fake collectors


class FakeSecretCollector:
    """Serves fixed secret pages keyed by vault cursor."""

    collector_name = "fake_secrets"

    def __init__(self, pages: dict[str, SecretPage] | None = None, error: Exception | None = None):
        self.pages = pages or {"": SecretPage()}
        self.error = error
        self.calls: list[str] = []

    def fetch_page(self, token: str = "", cancel_event: threading.Event | None = None) -> SecretPage:
        self.calls.append(token)
        if self.error is not None:
            raise self.error
        return self.pages[token]


class FakeSurfaceCollector:
    """Serves fixed surface pages keyed by registry cursor."""

    collector_name = "fake_surface"

    def __init__(
        self,
        pages: dict[str, Callable[[], SurfacePage] | SurfacePage] | None = None,
        error: Exception | None = None,
    ):
        self.pages = pages or {"": SurfacePage()}
        self.error = error
        self.calls: list[str] = []
        self.returned: list[SurfacePage] = []

    def fetch_page(self, token: str = "", cancel_event: threading.Event | None = None) -> SurfacePage:
        self.calls.append(token)
        if self.error is not None:
            raise self.error
        page = self.pages[token]
        if callable(page):
            page = page()
        self.returned.append(page)
        return page


class TrackingEntity(SurfaceEntity):
    """Surface entity recording whether it was released."""

    def __init__(self, name: str, candidates: list[str | bytes], error: Exception | None = None):
        self.name = name
        self.arn = f"arn:aws:lambda:eu-north-1:123456789012:function:{name}"
        self.candidates = candidates
        self.error = error
        self.released = 0

    def iter_candidates(self):
        for candidate in self.candidates:
            yield candidate
        if self.error is not None:
            raise self.error

    def release(self) -> None:
        self.released += 1


@pytest.fixture
def metrics() -> LeakcheckMetrics:
    """Return metrics backed by an in-memory store."""
    return LeakcheckMetrics(backend=InMemoryMetricsBackend())


@pytest.fixture
def env_entity() -> LambdaEnv:
    """Return a function environment leaking the database password."""
    return LambdaEnv(
        name="api",
        arn="arn:aws:lambda:eu-north-1:123456789012:function:api",
        env={"DB_PASS": "pw123", "STAGE": "prod"},
    )


@pytest.fixture
def code_entity(make_zip) -> LambdaCode:
    """Return a code archive leaking a token in a config file."""
    path = make_zip({"handler.py": "print('hi')\n", "config.json": '{"t":"tok-9f8e7d"}'})
    return LambdaCode(
        name="worker",
        arn="arn:aws:lambda:eu-north-1:123456789012:function:worker",
        zip_file=path,
    )


def file_exists(path: str) -> bool:
    """Check whether a temp archive is still on disk."""
    return os.path.exists(path)
