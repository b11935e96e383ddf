"""Source control actions.

This package provides the backend-agnostic operation surface for source
control: value types, version resolution, the handle registry, the actions
themselves, retry orchestration and the git and in-memory backends.

Example:
    >>> from ossactions.source_control import RepositoryHandleRegistry
    >>> with RepositoryHandleRegistry() as registry:
    ...     actions = registry.acquire("https://example.com/repo.git", "/srv/work/repo")
    ...     actions.fetch()
    ...     actions.get_versions()
    ['b:main', 't:v1.0']
"""

from ossactions.source_control._actions import FetchTarget, PushTarget, SourceControlActions
from ossactions.source_control._cancellation import CancellationToken, check_cancelled
from ossactions.source_control._fake import (
    FAKE_SCHEME,
    FailureInjector,
    FakeBackend,
    FakeBackendFactory,
    FakeRemote,
)
from ossactions.source_control._git import GitBackend, classify_git_error
from ossactions.source_control._locking import DirectoryLock, lock_path_for
from ossactions.source_control._models import (
    MODE_EXECUTABLE,
    MODE_FILE,
    MODE_SYMLINK,
    Branch,
    CommitArgument,
    CommitResult,
    FetchResult,
    FileDescriptor,
    PushResult,
    RefChange,
    RefUpdate,
    RemoteRefs,
    Repository,
    SourceControlVersion,
    SourceControlVersionType,
    SourceVersion,
    SourceVersionType,
    Tag,
    TagAnnotation,
    TagArgument,
    TreeEntry,
)
from ossactions.source_control._protocol import SourceControlBackend
from ossactions.source_control._registry import (
    BackendFactory,
    Handle,
    RepositoryHandleRegistry,
    uri_scheme,
)
from ossactions.source_control._retry import RetryingSourceControlActions, retry_wait
from ossactions.source_control._versions import VersionResolver

__all__ = [
    "FAKE_SCHEME",
    "MODE_EXECUTABLE",
    "MODE_FILE",
    "MODE_SYMLINK",
    "BackendFactory",
    "Branch",
    "CancellationToken",
    "CommitArgument",
    "CommitResult",
    "DirectoryLock",
    "FailureInjector",
    "FakeBackend",
    "FakeBackendFactory",
    "FakeRemote",
    "FetchResult",
    "FetchTarget",
    "FileDescriptor",
    "GitBackend",
    "Handle",
    "PushResult",
    "PushTarget",
    "RefChange",
    "RefUpdate",
    "RemoteRefs",
    "Repository",
    "RepositoryHandleRegistry",
    "RetryingSourceControlActions",
    "SourceControlActions",
    "SourceControlBackend",
    "SourceControlVersion",
    "SourceControlVersionType",
    "SourceVersion",
    "SourceVersionType",
    "Tag",
    "TagAnnotation",
    "TagArgument",
    "TreeEntry",
    "VersionResolver",
    "check_cancelled",
    "classify_git_error",
    "lock_path_for",
    "retry_wait",
    "uri_scheme",
]
