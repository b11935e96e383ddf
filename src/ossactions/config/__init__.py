"""ossactions configuration.

This module provides the public API for configuration management, including
loading, validation, and typed access to configuration values.

Example:
    >>> from ossactions.config import ActionsConfig
    >>> config = ActionsConfig.load()
    >>> config.retry.max_attempts
    3
"""

from ossactions.exceptions import ConfigError, ConfigLoadError

from ._defaults import DEFAULT_CONFIG
from ._loader import ENV_PREFIX, coerce_env_value, env_overrides, load_toml, merge_layers
from ._models import (
    ActionsConfig,
    GitConfig,
    LogFormat,
    LoggingConfig,
    LogLevel,
    RetryConfig,
)

__all__ = [
    "DEFAULT_CONFIG",
    "ENV_PREFIX",
    "ActionsConfig",
    "ConfigError",
    "ConfigLoadError",
    "GitConfig",
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "RetryConfig",
    "coerce_env_value",
    "env_overrides",
    "load_toml",
    "merge_layers",
]
