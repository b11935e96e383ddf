"""Content repository synchronization.

This package mirrors versions of a source repository into a target
repository: ``SourceContentRepositoryActions`` captures pinned snapshots,
``TargetContentRepositoryActions`` publishes them as commits and tags, and
``synchronize`` composes both.
"""

from ossactions.content._actions import (
    SourceContentRepositoryActions,
    TargetContentRepositoryActions,
    synchronize,
)
from ossactions.content._models import (
    ContentSnapshot,
    FileSelector,
    FileTransform,
    SyncResult,
)

__all__ = [
    "ContentSnapshot",
    "FileSelector",
    "FileTransform",
    "SourceContentRepositoryActions",
    "SyncResult",
    "TargetContentRepositoryActions",
    "synchronize",
]
