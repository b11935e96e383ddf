"""Tests for the exception hierarchy."""

from pathlib import Path

import pytest

from ossactions.exceptions import (
    AlreadyExistsError,
    AuthError,
    ConfigError,
    ConfigLoadError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    OperationCancelledError,
    OssActionsError,
    SourceControlError,
    TransientNetworkError,
    ValidationError,
)


class TestHierarchy:
    @pytest.mark.parametrize(
        "error_type",
        [
            ValidationError,
            NotFoundError,
            AlreadyExistsError,
            ConflictError,
            TransientNetworkError,
            AuthError,
            ConfigurationError,
            OperationCancelledError,
        ],
    )
    def test_source_control_errors_share_base(self, error_type: type[Exception]) -> None:
        assert issubclass(error_type, SourceControlError)
        assert issubclass(error_type, OssActionsError)

    def test_config_errors_share_base(self) -> None:
        assert issubclass(ConfigLoadError, ConfigError)
        assert issubclass(ConfigError, OssActionsError)

    def test_builtin_mixins(self) -> None:
        assert issubclass(ValidationError, ValueError)
        assert issubclass(AlreadyExistsError, ValueError)
        assert issubclass(NotFoundError, KeyError)


class TestContext:
    def test_validation_error_carries_input(self) -> None:
        error = ValidationError("bad", path="a/../b", name="x")
        assert error.path == "a/../b"
        assert error.name == "x"

    def test_conflict_error_carries_ref_and_details(self) -> None:
        error = ConflictError("diverged", ref="refs/heads/main", details="remote=abc")
        assert error.ref == "refs/heads/main"
        assert error.details == "remote=abc"

    def test_transient_error_keeps_cause(self) -> None:
        cause = OSError("reset")
        error = TransientNetworkError("down", remote_uri="https://example.com/r.git", cause=cause)
        assert error.cause is cause
        assert error.remote_uri == "https://example.com/r.git"

    def test_config_load_error_location(self) -> None:
        error = ConfigLoadError("broken", path=Path("x.toml"), line=3, column=7)
        assert (error.path, error.line, error.column) == (Path("x.toml"), 3, 7)

    def test_context_defaults_to_none(self) -> None:
        assert NotFoundError("missing").ref is None
        assert AuthError("denied").remote_uri is None
        assert ConfigurationError("unusable").path is None
