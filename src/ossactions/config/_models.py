# pyright: reportExplicitAny=false, reportAny=false
"""Configuration models.

This module provides the Pydantic models for ossactions configuration and the
ActionsConfig container with its factory methods.
"""

from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar, Self

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from ossactions.config._defaults import DEFAULT_CONFIG
from ossactions.config._loader import env_overrides, load_toml, merge_layers
from ossactions.exceptions import ConfigLoadError
from ossactions.utils._logging import create_logger

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger


class LogLevel(StrEnum):
    """Log level threshold values.

    Values are ordered from most verbose (debug) to least verbose (error).
    """

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class LogFormat(StrEnum):
    """Log output format values."""

    JSON = "json"
    TEXT = "text"


class RetryConfig(BaseModel):
    """Retry policy for network-facing operations.

    Attributes:
        max_attempts: Total attempts including the first one.
        base_delay: Delay in seconds before the first retry.
        max_delay: Upper bound for a single delay in seconds.
        multiplier: Factor applied to the delay after each attempt.
        jitter: Upper bound of the random delay added to each wait, as a
            fraction of ``base_delay`` (0.0-1.0).
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=0.5, ge=0.0)
    max_delay: float = Field(default=30.0, ge=0.0)
    multiplier: float = Field(default=2.0, ge=1.0)
    jitter: float = Field(default=0.1, ge=0.0, le=1.0)


class LoggingConfig(BaseModel):
    """Logging configuration section.

    Attributes:
        level: Log level threshold.
        format: Log output format.
        file: Path to log file (empty logs to stderr).
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    level: LogLevel = LogLevel.WARNING
    format: LogFormat = LogFormat.JSON
    file: str = ""

    def create_logger(self) -> "FilteringBoundLogger":  # noqa: UP037
        """Create a structlog logger configured from this section."""
        return create_logger(
            self.level.value,
            log_format="json" if self.format == LogFormat.JSON else "text",
            log_file=self.file or None,
        )


class GitConfig(BaseModel):
    """Git backend configuration section.

    Attributes:
        remote_name: Name of the remote configured in each working copy.
        default_branch: Branch name used when initialising a working copy.
        command_timeout: Seconds after which a git network command is
            killed and reported as a transient failure (None disables).
        default_author: Committer name used for commits and tags.
        default_author_email: Committer email used for commits and tags.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    remote_name: str = Field(default="origin", min_length=1)
    default_branch: str = Field(default="main", min_length=1)
    command_timeout: float | None = Field(default=None, gt=0)
    default_author: str = "ossactions"
    default_author_email: str = "ossactions@localhost"


class ActionsConfig(BaseModel):
    """Configuration container with typed access.

    Use the factory methods rather than the constructor when reading
    configuration from files or the environment.

    Example:
        >>> config = ActionsConfig.from_dict({"retry": {"max_attempts": 5}})
        >>> config.retry.max_attempts
        5
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    retry: RetryConfig = Field(default_factory=RetryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    git: GitConfig = Field(default_factory=GitConfig)

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        *,
        source: Path | None = None,
    ) -> Self:
        """Create configuration from a dictionary merged over the defaults.

        Args:
            data: Dictionary of configuration values.
            source: File the values came from, for error reporting.

        Returns:
            Validated configuration object.

        Raises:
            ConfigLoadError: If the merged values fail validation.
        """
        merged = merge_layers(DEFAULT_CONFIG, data)
        try:
            return cls.model_validate(merged)
        except pydantic.ValidationError as e:
            msg = f"Invalid configuration: {e}"
            raise ConfigLoadError(msg, path=source) from e

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Load configuration from a specific TOML file.

        Args:
            path: Path to the TOML config file.

        Returns:
            Configuration object from the defaults and the file.

        Raises:
            FileNotFoundError: If the file does not exist.
            ConfigLoadError: If the file cannot be parsed or validated.
        """
        return cls.from_dict(load_toml(path), source=path)

    @classmethod
    def load(
        cls,
        path: Path | None = None,
        *,
        include_env: bool = True,
        environ: dict[str, str] | None = None,
    ) -> Self:
        """Load merged configuration.

        Sources are merged in precedence order defaults -> file -> env.

        Args:
            path: Optional TOML file. A missing file is an error.
            include_env: Include OSSACTIONS_* environment variables.
            environ: Mapping to read instead of os.environ.

        Returns:
            Merged configuration object.

        Raises:
            FileNotFoundError: If path is given but does not exist.
            ConfigLoadError: If the file cannot be parsed or the merged
                configuration fails validation.
        """
        data: dict[str, Any] = {}
        if path is not None:
            data = load_toml(path)
        if include_env:
            data = merge_layers(data, env_overrides(environ))
        return cls.from_dict(data, source=path)
