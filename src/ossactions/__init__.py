"""Backend-agnostic source control actions.

Bind a (remote, working copy) pair with ``RepositoryHandleRegistry`` and run
commit, fetch, push, branch, tag and version operations against it; mirror
content between repositories with ``ossactions.content``.
"""

from ossactions.content import (
    ContentSnapshot,
    SourceContentRepositoryActions,
    SyncResult,
    TargetContentRepositoryActions,
    synchronize,
)
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
from ossactions.source_control import (
    Branch,
    CancellationToken,
    CommitArgument,
    CommitResult,
    FetchResult,
    FileDescriptor,
    PushResult,
    RefChange,
    Repository,
    RepositoryHandleRegistry,
    RetryingSourceControlActions,
    SourceControlActions,
    SourceControlVersion,
    SourceControlVersionType,
    SourceVersion,
    SourceVersionType,
    Tag,
    TagAnnotation,
    TagArgument,
    VersionResolver,
)

__all__ = [
    "AlreadyExistsError",
    "AuthError",
    "Branch",
    "CancellationToken",
    "CommitArgument",
    "CommitResult",
    "ConfigError",
    "ConfigLoadError",
    "ConfigurationError",
    "ConflictError",
    "ContentSnapshot",
    "FetchResult",
    "FileDescriptor",
    "NotFoundError",
    "OperationCancelledError",
    "OssActionsError",
    "PushResult",
    "RefChange",
    "Repository",
    "RepositoryHandleRegistry",
    "RetryingSourceControlActions",
    "SourceContentRepositoryActions",
    "SourceControlActions",
    "SourceControlError",
    "SourceControlVersion",
    "SourceControlVersionType",
    "SourceVersion",
    "SourceVersionType",
    "SyncResult",
    "Tag",
    "TagAnnotation",
    "TagArgument",
    "TargetContentRepositoryActions",
    "TransientNetworkError",
    "ValidationError",
    "VersionResolver",
    "synchronize",
]
