"""
Service configuration for leakcheck.

Provides the settings for the HTTP service and the scan collectors,
loadable from JSON/YAML files or LEAKCHECK_* environment variables.
AWS credentials are resolved by boto3's default chain, not here.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

DEFAULT_REGION = "eu-north-1"


@dataclass
class ServerConfig:
    """
    Complete service configuration.

    Attributes:
        region: AWS region to scan
        host: Address the HTTP server binds to
        port: Port the HTTP server listens on
        rate_limit_per_second: Global request rate limit (0 disables)
        rate_limit_burst: Requests allowed in a burst above the rate
        code_page_size: Functions listed per deployed-code scan page
        download_workers: Maximum parallel artifact downloads per page
        download_timeout_seconds: Socket timeout for artifact downloads
        temp_dir: Directory for downloaded archives (None = system temp)
        log_level: Log level name
        log_format: Log format (human, json)
        metrics_backend: Metrics backend (memory, cloudwatch)
        metrics_namespace: CloudWatch namespace when metrics_backend is cloudwatch
    """

    region: str = DEFAULT_REGION
    host: str = "0.0.0.0"
    port: int = 1323
    rate_limit_per_second: float = 5.0
    rate_limit_burst: int = 5
    code_page_size: int = 1
    download_workers: int = 4
    download_timeout_seconds: float = 60.0
    temp_dir: str | None = None
    log_level: str = "INFO"
    log_format: str = "human"
    metrics_backend: str = "memory"
    metrics_namespace: str = "Leakcheck"
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """
        Check value ranges.

        Raises:
            ValueError: If a setting is out of range
        """
        if not 0 < self.port < 65536:
            raise ValueError(f"port must be between 1 and 65535, got {self.port}")
        if self.rate_limit_per_second < 0:
            raise ValueError("rate_limit_per_second must not be negative")
        if self.code_page_size < 1:
            raise ValueError("code_page_size must be at least 1")
        if self.download_workers < 1:
            raise ValueError("download_workers must be at least 1")
        if self.log_format not in ("human", "json"):
            raise ValueError(f"log_format must be 'human' or 'json', got {self.log_format!r}")
        if self.metrics_backend not in ("memory", "cloudwatch"):
            raise ValueError(
                f"metrics_backend must be 'memory' or 'cloudwatch', got {self.metrics_backend!r}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "region": self.region,
            "host": self.host,
            "port": self.port,
            "rate_limit_per_second": self.rate_limit_per_second,
            "rate_limit_burst": self.rate_limit_burst,
            "code_page_size": self.code_page_size,
            "download_workers": self.download_workers,
            "download_timeout_seconds": self.download_timeout_seconds,
            "temp_dir": self.temp_dir,
            "log_level": self.log_level,
            "log_format": self.log_format,
            "metrics_backend": self.metrics_backend,
            "metrics_namespace": self.metrics_namespace,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServerConfig:
        """Create from dictionary. Unknown keys are kept in extra."""
        known = {f.name for f in fields(cls)} - {"extra"}
        kwargs = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        return cls(**kwargs, extra=extra)

    @classmethod
    def from_file(cls, path: str) -> ServerConfig:
        """
        Load configuration from a JSON or YAML file.

        Raises:
            OSError: If the file cannot be read
            ValueError: If the file is not a mapping of valid settings
        """
        path = os.path.expanduser(path)
        with open(path, "r", encoding="utf-8") as f:
            if path.endswith(".json"):
                data = json.load(f)
            else:
                try:
                    data = yaml.safe_load(f)
                except yaml.YAMLError as e:
                    raise ValueError(f"invalid YAML in {path}: {e}") from e

        data = data or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a mapping of settings")
        return cls.from_dict(data)

    def save(self, path: str) -> None:
        """Save configuration to a JSON or YAML file."""
        path = os.path.expanduser(path)
        Path(path).parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            if path.endswith(".json"):
                json.dump(self.to_dict(), f, indent=2)
            else:
                yaml.safe_dump(self.to_dict(), f, default_flow_style=False)


# Environment variable name -> (setting, converter)
_ENV_SETTINGS = {
    "LEAKCHECK_REGION": ("region", str),
    "LEAKCHECK_HOST": ("host", str),
    "LEAKCHECK_PORT": ("port", int),
    "LEAKCHECK_RATE_LIMIT": ("rate_limit_per_second", float),
    "LEAKCHECK_RATE_LIMIT_BURST": ("rate_limit_burst", int),
    "LEAKCHECK_CODE_PAGE_SIZE": ("code_page_size", int),
    "LEAKCHECK_DOWNLOAD_WORKERS": ("download_workers", int),
    "LEAKCHECK_DOWNLOAD_TIMEOUT": ("download_timeout_seconds", float),
    "LEAKCHECK_TEMP_DIR": ("temp_dir", str),
    "LEAKCHECK_LOG_LEVEL": ("log_level", str),
    "LEAKCHECK_LOG_FORMAT": ("log_format", str),
    "LEAKCHECK_METRICS_BACKEND": ("metrics_backend", str),
    "LEAKCHECK_METRICS_NAMESPACE": ("metrics_namespace", str),
}


def load_config_from_env(environ: dict[str, str] | None = None) -> ServerConfig:
    """
    Load configuration from environment variables.

    Environment variables:
        LEAKCHECK_CONFIG_FILE: Path to configuration file (takes precedence)
        LEAKCHECK_REGION, LEAKCHECK_HOST, LEAKCHECK_PORT, LEAKCHECK_RATE_LIMIT,
        LEAKCHECK_RATE_LIMIT_BURST, LEAKCHECK_CODE_PAGE_SIZE,
        LEAKCHECK_DOWNLOAD_WORKERS, LEAKCHECK_DOWNLOAD_TIMEOUT,
        LEAKCHECK_TEMP_DIR, LEAKCHECK_LOG_LEVEL, LEAKCHECK_LOG_FORMAT,
        LEAKCHECK_METRICS_BACKEND, LEAKCHECK_METRICS_NAMESPACE

    Args:
        environ: Environment mapping (default: os.environ)

    Returns:
        ServerConfig instance

    Raises:
        ValueError: If a variable cannot be converted
    """
    environ = os.environ if environ is None else environ

    config_file = environ.get("LEAKCHECK_CONFIG_FILE")
    if config_file and os.path.exists(os.path.expanduser(config_file)):
        return ServerConfig.from_file(config_file)

    data: dict[str, Any] = {}
    for var, (setting, convert) in _ENV_SETTINGS.items():
        raw = environ.get(var)
        if raw is None or raw == "":
            continue
        try:
            data[setting] = convert(raw)
        except ValueError as e:
            raise ValueError(f"invalid value for {var}: {raw!r}") from e

    return ServerConfig.from_dict(data)


def load_config(path: str | None = None) -> ServerConfig:
    """
    Load configuration from a file if given, else from the environment.

    Args:
        path: Optional configuration file path

    Returns:
        ServerConfig instance
    """
    if path:
        return ServerConfig.from_file(path)
    return load_config_from_env()
