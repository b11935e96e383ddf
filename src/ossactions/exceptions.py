"""ossactions exceptions."""

from pathlib import Path


class OssActionsError(Exception):
    """Base exception for ossactions errors."""


# =============================================================================
# Configuration Exceptions
# =============================================================================


class ConfigError(OssActionsError):
    """Base exception for configuration errors."""


class ConfigLoadError(ConfigError):
    """Raised when configuration cannot be loaded, parsed or validated."""

    def __init__(
        self,
        message: str,
        *,
        path: Path | None = None,
        line: int | None = None,
        column: int | None = None,
    ) -> None:
        """Initialize with error message and optional location context."""
        super().__init__(message)
        self.path: Path | None = path
        self.line: int | None = line
        self.column: int | None = column


# =============================================================================
# Source Control Exceptions
# =============================================================================


class SourceControlError(OssActionsError):
    """Base exception for source control action errors."""


class ValidationError(SourceControlError, ValueError):
    """Raised when an operation receives malformed input.

    Attributes:
        path: The offending file path, if the input was a path.
        name: The offending branch, tag or version name, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        path: Path | str | None = None,
        name: str | None = None,
    ) -> None:
        """Initialize with error message and input context.

        Args:
            message: Human-readable error message.
            path: The offending file path.
            name: The offending branch, tag or version name.
        """
        super().__init__(message)
        self.path: Path | str | None = path
        self.name: str | None = name


class NotFoundError(SourceControlError, KeyError):
    """Raised when a referenced branch, tag, commit or version does not exist.

    Attributes:
        ref: The reference that could not be found.
    """

    def __init__(self, message: str, *, ref: str | None = None) -> None:
        """Initialize with error message and reference context.

        Args:
            message: Human-readable error message.
            ref: The reference that could not be found.
        """
        super().__init__(message)
        self.ref: str | None = ref


class AlreadyExistsError(SourceControlError, ValueError):
    """Raised when creating a branch or tag whose name is taken.

    Attributes:
        ref: The reference that already exists.
    """

    def __init__(self, message: str, *, ref: str | None = None) -> None:
        """Initialize with error message and reference context.

        Args:
            message: Human-readable error message.
            ref: The reference that already exists.
        """
        super().__init__(message)
        self.ref: str | None = ref


class ConflictError(SourceControlError):
    """Raised when local and remote (or expected and actual) state diverged.

    Attributes:
        ref: The reference where the conflict occurred.
        details: Additional details about the conflict.
    """

    def __init__(
        self,
        message: str,
        *,
        ref: str | None = None,
        details: str | None = None,
    ) -> None:
        """Initialize with error message and conflict context.

        Args:
            message: Human-readable error message.
            ref: The reference where the conflict occurred.
            details: Additional details about the conflict.
        """
        super().__init__(message)
        self.ref: str | None = ref
        self.details: str | None = details


class TransientNetworkError(SourceControlError):
    """Raised for I/O failures that are expected to succeed when retried.

    Attributes:
        remote_uri: The remote that could not be reached.
        cause: The underlying exception.
    """

    def __init__(
        self,
        message: str,
        *,
        remote_uri: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        """Initialize with error message and remote context.

        Args:
            message: Human-readable error message.
            remote_uri: The remote that could not be reached.
            cause: The underlying exception.
        """
        super().__init__(message)
        self.remote_uri: str | None = remote_uri
        self.cause: Exception | None = cause


class AuthError(SourceControlError):
    """Raised when the remote rejects credentials or permissions.

    Attributes:
        remote_uri: The remote that rejected the request.
    """

    def __init__(self, message: str, *, remote_uri: str | None = None) -> None:
        """Initialize with error message and remote context."""
        super().__init__(message)
        self.remote_uri: str | None = remote_uri


class ConfigurationError(SourceControlError):
    """Raised when a local directory or remote reference is unusable.

    Attributes:
        path: The directory or remote that is unusable.
    """

    def __init__(self, message: str, *, path: Path | str | None = None) -> None:
        """Initialize with error message and location context."""
        super().__init__(message)
        self.path: Path | str | None = path


class OperationCancelledError(SourceControlError):
    """Raised when a caller-supplied cancellation token aborts an operation."""
