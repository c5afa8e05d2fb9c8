"""
Configuration management for leakcheck.

Provides the service configuration and helpers to load it
from files or the environment.
"""

from leakcheck.config.settings import (
    DEFAULT_REGION,
    ServerConfig,
    load_config,
    load_config_from_env,
)

__all__ = [
    "DEFAULT_REGION",
    "ServerConfig",
    "load_config",
    "load_config_from_env",
]
