"""Repository handle registry.

This module provides RepositoryHandleRegistry, the entry point that binds a
(remote location, local working copy) pair to a SourceControlActions handle.
The registry guarantees a single handle per working copy, picks the backend
from the remote URI scheme and holds the working copy lock artifact for as
long as the handle is bound.

Example:
    >>> with RepositoryHandleRegistry() as registry:
    ...     actions = registry.acquire("https://example.com/repo.git", "/srv/work/repo")
    ...     actions.fetch()
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar, Protocol, Self
from urllib.parse import urlsplit

from ossactions.config._models import ActionsConfig, GitConfig
from ossactions.exceptions import ConfigurationError
from ossactions.source_control._actions import SourceControlActions
from ossactions.source_control._fake import FAKE_SCHEME, FakeBackendFactory
from ossactions.source_control._git import GitBackend
from ossactions.source_control._locking import DirectoryLock
from ossactions.source_control._models import Repository
from ossactions.source_control._retry import RetryingSourceControlActions
from ossactions.source_control._versions import VersionResolver

if TYPE_CHECKING:
    from types import TracebackType

    from structlog.typing import FilteringBoundLogger

    from ossactions.content._actions import (
        SourceContentRepositoryActions,
        TargetContentRepositoryActions,
    )
    from ossactions.source_control._protocol import SourceControlBackend


GIT_SCHEMES = frozenset({"", "file", "http", "https", "ssh", "git", "git+ssh", "ssh+git"})

Handle = SourceControlActions | RetryingSourceControlActions


class BackendFactory(Protocol):
    """Callable building a backend for a repository binding."""

    def __call__(
        self,
        repository: Repository,
        config: GitConfig,
        logger: FilteringBoundLogger,
    ) -> SourceControlBackend: ...


def _git_backend(repository: Repository, config: GitConfig, logger: FilteringBoundLogger) -> GitBackend:
    return GitBackend(repository.local_directory, repository.remote_uri, config=config, logger=logger)


def uri_scheme(remote_uri: str) -> str:
    """Return the lowercase scheme of a remote URI.

    Plain paths, scp-like ``user@host:path`` locations and Windows drive
    paths have the empty scheme.

    Example:
        >>> uri_scheme("https://example.com/repo.git")
        'https'
        >>> uri_scheme("git@example.com:org/repo.git")
        ''
    """
    if "://" not in remote_uri:
        return ""
    scheme = urlsplit(remote_uri).scheme.lower()
    # Single letters are drive names
    return "" if len(scheme) == 1 else scheme


@dataclass(slots=True)
class _Binding:
    repository: Repository
    actions: SourceControlActions
    lock: DirectoryLock
    retrying: RetryingSourceControlActions | None = None


class RepositoryHandleRegistry:
    """Thread-safe registry of repository handles, one per working copy.

    Acquiring the same (remote, directory) pair returns the same handle.
    Acquiring a directory already bound to a different remote raises
    ConfigurationError. Binding performs no network I/O.

    Backends are selected by URI scheme: ``memory`` uses an in-memory
    backend, git URIs (plain paths, ``file``, ``http(s)``, ``ssh``, ``git``
    and scp-like locations) use GitBackend. Additional schemes can be
    registered with ``register_backend``.

    Attributes:
        _instance: Class-level default instance.
        _instance_lock: Class-level lock for thread-safe initialization.
    """

    _instance: ClassVar[RepositoryHandleRegistry | None] = None
    _instance_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(
        self,
        config: ActionsConfig | None = None,
        *,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        self._config = config or ActionsConfig()
        self._logger = logger or self._config.logging.create_logger()
        self._resolver = VersionResolver()
        self._lock = threading.Lock()
        self._bindings: dict[Path, _Binding] = {}
        self._factories: dict[str, BackendFactory] = dict.fromkeys(GIT_SCHEMES, _git_backend)
        self._factories[FAKE_SCHEME] = FakeBackendFactory()

    @classmethod
    def get_instance(cls) -> RepositoryHandleRegistry:
        """Get the process-wide default registry.

        Thread-safe using double-checked locking. The default registry uses
        configuration loaded from the environment.
        """
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls(ActionsConfig.load())
        result = cls._instance
        assert result is not None  # noqa: S101
        return result

    @classmethod
    def _reset_instance(cls) -> None:
        """Release and forget the default registry (for tests)."""
        with cls._instance_lock:
            if cls._instance is not None:
                cls._instance.close()
            cls._instance = None

    @property
    def config(self) -> ActionsConfig:
        """Configuration used for new handles."""
        return self._config

    # =========================================================================
    # Backends
    # =========================================================================

    def register_backend(self, scheme: str, factory: BackendFactory) -> None:
        """Use ``factory`` for remote URIs with ``scheme``.

        Example:
            >>> registry.register_backend("memory", FakeBackendFactory())
        """
        with self._lock:
            self._factories[scheme.lower()] = factory

    def backend_factory(self, scheme: str) -> BackendFactory:
        """Return the factory registered for ``scheme``.

        Raises:
            ConfigurationError: If no backend handles the scheme.
        """
        with self._lock:
            return self._lookup_factory(scheme)

    def _lookup_factory(self, scheme: str) -> BackendFactory:
        # Caller holds self._lock
        factory = self._factories.get(scheme.lower())
        if factory is None:
            msg = f"Unsupported remote scheme: {scheme!r}"
            raise ConfigurationError(msg, path=scheme)
        return factory

    # =========================================================================
    # Handles
    # =========================================================================

    def acquire(
        self,
        remote_uri: str,
        local_directory: Path | str,
        retry_enabled: bool = False,  # noqa: FBT001, FBT002
    ) -> Handle:
        """Bind a working copy and return its handle.

        Args:
            remote_uri: Location of the remote repository.
            local_directory: Working copy directory; created if missing.
            retry_enabled: Wrap network operations with retries.

        Returns:
            The cached handle for the pair, or a new one. With
            ``retry_enabled`` the cached retrying wrapper is returned.

        Raises:
            ConfigurationError: If the directory is bound to another remote,
                is locked by another process, cannot be created or is not
                writable, or the remote scheme is unsupported.
        """
        if not remote_uri:
            msg = "Remote URI must not be empty"
            raise ConfigurationError(msg)
        repository = Repository(remote_uri, Path(local_directory), retry_enabled)

        with self._lock:
            binding = self._bindings.get(repository.local_directory)
            if binding is None:
                binding = self._bind(repository)
                self._bindings[repository.local_directory] = binding
            elif binding.repository != repository:
                msg = (
                    f"Directory {repository.local_directory} is already bound to "
                    f"{binding.repository.remote_uri}"
                )
                raise ConfigurationError(msg, path=repository.local_directory)

            if not retry_enabled:
                return binding.actions
            if binding.retrying is None:
                binding.retrying = RetryingSourceControlActions(
                    binding.actions,
                    self._config.retry,
                    logger=self._logger,
                )
            return binding.retrying

    def _bind(self, repository: Repository) -> _Binding:
        factory = self._lookup_factory(uri_scheme(repository.remote_uri))
        directory = repository.local_directory
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            msg = f"Cannot create working copy directory {directory}: {e}"
            raise ConfigurationError(msg, path=directory) from e
        if not directory.is_dir() or not os.access(directory, os.W_OK):
            msg = f"Working copy directory is not writable: {directory}"
            raise ConfigurationError(msg, path=directory)

        lock = DirectoryLock(directory, logger=self._logger)
        lock.acquire()
        try:
            backend = factory(repository, self._config.git, self._logger)
        except Exception:
            lock.release()
            raise
        actions = SourceControlActions(
            repository,
            backend,
            resolver=self._resolver,
            config=self._config.git,
            logger=self._logger,
        )
        self._logger.info(
            "handle_acquired",
            remote=repository.remote_uri,
            directory=str(directory),
            backend=type(backend).__name__,
        )
        return _Binding(repository, actions, lock)

    def get(self, local_directory: Path | str) -> SourceControlActions | None:
        """Return the handle bound to ``local_directory``, if any."""
        key = Path(local_directory).expanduser().resolve()
        with self._lock:
            binding = self._bindings.get(key)
        return binding.actions if binding else None

    def release(self, target: Handle | Repository) -> None:
        """Close a handle's backend and remove its lock artifact.

        Releasing an unknown or already released handle is a no-op.
        """
        repository = target if isinstance(target, Repository) else target.repository
        with self._lock:
            binding = self._bindings.get(repository.local_directory)
            if binding is None or binding.repository != repository:
                return
            del self._bindings[repository.local_directory]
        try:
            binding.actions.close()
        finally:
            binding.lock.release()
        self._logger.info(
            "handle_released",
            remote=repository.remote_uri,
            directory=str(repository.local_directory),
        )

    def close(self) -> None:
        """Release every bound handle."""
        with self._lock:
            repositories = [binding.repository for binding in self._bindings.values()]
        for repository in repositories:
            self.release(repository)

    def __len__(self) -> int:
        with self._lock:
            return len(self._bindings)

    # =========================================================================
    # Content actions
    # =========================================================================

    def source_content_actions(self, repository: Repository) -> SourceContentRepositoryActions:
        """Build content actions reading from ``repository``."""
        from ossactions.content._actions import SourceContentRepositoryActions  # noqa: PLC0415

        handle = self.acquire(repository.remote_uri, repository.local_directory, repository.retry_enabled)
        return SourceContentRepositoryActions(handle, resolver=self._resolver, logger=self._logger)

    def target_content_actions(self, repository: Repository) -> TargetContentRepositoryActions:
        """Build content actions publishing into ``repository``."""
        from ossactions.content._actions import TargetContentRepositoryActions  # noqa: PLC0415

        handle = self.acquire(repository.remote_uri, repository.local_directory, repository.retry_enabled)
        return TargetContentRepositoryActions(
            handle,
            resolver=self._resolver,
            default_branch=self._config.git.default_branch,
            logger=self._logger,
        )

    # =========================================================================
    # Context Manager Protocol
    # =========================================================================

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
