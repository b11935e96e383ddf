"""Retry orchestration for network-facing source control operations.

RetryingSourceControlActions wraps a SourceControlActions and re-runs fetch
and push through tenacity when they fail with TransientNetworkError, waiting
between attempts with jittered exponential backoff. Every other operation is
delegated unchanged.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeVar

from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from ossactions.config._models import RetryConfig
from ossactions.exceptions import OperationCancelledError, TransientNetworkError
from ossactions.source_control._cancellation import CancellationToken
from ossactions.utils._logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence
    from pathlib import Path

    from structlog.typing import FilteringBoundLogger
    from tenacity import RetryCallState
    from tenacity.wait import wait_base

    from ossactions.source_control._actions import FetchTarget, PushTarget, SourceControlActions
    from ossactions.source_control._models import (
        Branch,
        CommitArgument,
        CommitResult,
        FetchResult,
        FileDescriptor,
        PushResult,
        Repository,
        SourceControlVersion,
        SourceVersion,
        Tag,
        TagArgument,
    )
    from ossactions.source_control._protocol import SourceControlBackend
    from ossactions.source_control._versions import VersionResolver

_T = TypeVar("_T")


def retry_wait(policy: RetryConfig) -> wait_base:
    """Build the tenacity wait strategy for a retry policy.

    The n-th retry waits ``base_delay * multiplier ** (n - 1)`` seconds plus
    up to ``base_delay * jitter`` seconds of random delay, capped at
    ``max_delay``.
    """
    return wait_exponential_jitter(
        initial=policy.base_delay,
        max=policy.max_delay,
        exp_base=policy.multiplier,
        jitter=policy.base_delay * policy.jitter,
    )


class RetryingSourceControlActions:
    """SourceControlActions decorator retrying transient network failures.

    Only ``fetch`` and ``push`` are retried, and only for
    TransientNetworkError. Validation, not-found, conflict and auth errors
    propagate after the first attempt. The wait between attempts observes
    the caller's cancellation token.

    Example:
        >>> retrying = RetryingSourceControlActions(actions, RetryConfig(max_attempts=5))
        >>> retrying.fetch()
    """

    def __init__(
        self,
        inner: SourceControlActions,
        policy: RetryConfig | None = None,
        *,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        self._inner = inner
        self._policy = policy or RetryConfig()
        self._wait = retry_wait(self._policy)
        self._logger = (logger or get_logger()).bind(
            remote=inner.repository.remote_uri,
            directory=str(inner.repository.local_directory),
        )

    @property
    def inner(self) -> SourceControlActions:
        """The wrapped actions."""
        return self._inner

    @property
    def policy(self) -> RetryConfig:
        """The retry policy in effect."""
        return self._policy

    @property
    def repository(self) -> Repository:
        """The bound repository."""
        return self._inner.repository

    @property
    def backend(self) -> SourceControlBackend:
        """The backend of the wrapped actions."""
        return self._inner.backend

    @property
    def resolver(self) -> VersionResolver:
        """The resolver of the wrapped actions."""
        return self._inner.resolver

    # =========================================================================
    # Retried operations
    # =========================================================================

    def fetch(
        self,
        target: FetchTarget = None,
        *,
        cancellation: CancellationToken | None = None,
    ) -> FetchResult:
        """Fetch, retrying transient network failures."""
        return self._retry(
            "fetch",
            lambda: self._inner.fetch(target, cancellation=cancellation),
            cancellation,
        )

    def push(
        self,
        target: PushTarget | Sequence[SourceControlVersion] = None,
        *,
        cancellation: CancellationToken | None = None,
    ) -> PushResult:
        """Push, retrying transient network failures."""
        return self._retry(
            "push",
            lambda: self._inner.push(target, cancellation=cancellation),
            cancellation,
        )

    def _retry(
        self,
        operation: str,
        call: Callable[[], _T],
        cancellation: CancellationToken | None,
    ) -> _T:
        token = cancellation or CancellationToken()
        attempts = self._policy.max_attempts
        failures: list[BaseException] = []

        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            if error is not None:
                failures.append(error)
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            self._logger.info(
                "retry_scheduled",
                operation=operation,
                attempt=retry_state.attempt_number,
                max_attempts=attempts,
                delay=round(delay, 3),
                error=str(error),
            )

        def sleep(seconds: float) -> None:
            if token.wait(seconds):
                msg = f"{operation} cancelled while waiting to retry"
                raise OperationCancelledError(msg) from (failures[-1] if failures else None)

        retrying = Retrying(
            stop=stop_after_attempt(attempts),
            wait=self._wait,
            retry=retry_if_exception_type(TransientNetworkError),
            sleep=sleep,
            before_sleep=before_sleep,
            reraise=True,
        )
        try:
            return retrying(call)
        except TransientNetworkError as e:
            self._logger.warning("retry_exhausted", operation=operation, attempts=attempts, error=str(e))
            raise

    # =========================================================================
    # Delegated operations
    # =========================================================================

    def close(self) -> None:
        """Close the wrapped actions."""
        self._inner.close()

    def commit(
        self,
        argument: CommitArgument,
        paths: Iterable[Path | str],
        *,
        cancellation: CancellationToken | None = None,
    ) -> CommitResult:
        return self._inner.commit(argument, paths, cancellation=cancellation)

    def commit_files(
        self,
        argument: CommitArgument,
        files: Iterable[FileDescriptor],
        tag_name: str | None = None,
        *,
        cancellation: CancellationToken | None = None,
    ) -> CommitResult:
        return self._inner.commit_files(argument, files, tag_name, cancellation=cancellation)

    def create_branch(
        self,
        name: str,
        commit_id: str | None = None,
        *,
        cancellation: CancellationToken | None = None,
    ) -> Branch:
        return self._inner.create_branch(name, commit_id, cancellation=cancellation)

    def rename_branch(
        self,
        old_name: str,
        new_name: str,
        *,
        cancellation: CancellationToken | None = None,
    ) -> Branch:
        return self._inner.rename_branch(old_name, new_name, cancellation=cancellation)

    def delete_branch(self, name: str, *, cancellation: CancellationToken | None = None) -> None:
        self._inner.delete_branch(name, cancellation=cancellation)

    def get_branches(
        self,
        from_remote: bool = False,  # noqa: FBT001, FBT002
        *,
        cancellation: CancellationToken | None = None,
    ) -> list[Branch]:
        return self._inner.get_branches(from_remote, cancellation=cancellation)

    def create_tag(
        self,
        name: str,
        argument: TagArgument,
        *,
        cancellation: CancellationToken | None = None,
    ) -> Tag:
        return self._inner.create_tag(name, argument, cancellation=cancellation)

    def delete_tag(self, name: str, *, cancellation: CancellationToken | None = None) -> None:
        self._inner.delete_tag(name, cancellation=cancellation)

    def get_tags(
        self,
        from_remote: bool = False,  # noqa: FBT001, FBT002
        *,
        cancellation: CancellationToken | None = None,
    ) -> list[Tag]:
        return self._inner.get_tags(from_remote, cancellation=cancellation)

    def get_versions(
        self,
        from_remote: bool = False,  # noqa: FBT001, FBT002
        *,
        cancellation: CancellationToken | None = None,
    ) -> list[str]:
        return self._inner.get_versions(from_remote, cancellation=cancellation)

    def resolve(
        self,
        version: SourceVersion | SourceControlVersion | str,
        *,
        cancellation: CancellationToken | None = None,
    ) -> SourceControlVersion:
        return self._inner.resolve(version, cancellation=cancellation)

    def head(self, *, cancellation: CancellationToken | None = None) -> Branch | None:
        return self._inner.head(cancellation=cancellation)

    def checkout(self, name: str, *, cancellation: CancellationToken | None = None) -> Branch | None:
        return self._inner.checkout(name, cancellation=cancellation)

    def fast_forward(self, name: str, *, cancellation: CancellationToken | None = None) -> Branch:
        return self._inner.fast_forward(name, cancellation=cancellation)

    def read_files(
        self,
        version: SourceControlVersion | None = None,
        *,
        cancellation: CancellationToken | None = None,
    ) -> list[FileDescriptor]:
        return self._inner.read_files(version, cancellation=cancellation)
