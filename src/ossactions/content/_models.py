"""Content synchronization value types."""

from collections.abc import Callable
from dataclasses import dataclass

from ossactions.source_control._models import FileDescriptor, SourceVersion

# Keep a file when the predicate returns True for its relative path
FileSelector = Callable[[str], bool]

# Rewrite a file; returning None drops it from the snapshot
FileTransform = Callable[[FileDescriptor], FileDescriptor | None]


@dataclass(frozen=True, slots=True)
class ContentSnapshot:
    """Files of a source version pinned to one commit.

    Attributes:
        version: The symbolic version the snapshot was taken from.
        commit_id: Commit the version pointed at.
        files: File descriptors with bytes content, sorted by path.
    """

    version: SourceVersion
    commit_id: str
    files: tuple[FileDescriptor, ...] = ()

    @property
    def paths(self) -> frozenset[str]:
        """Relative paths in the snapshot."""
        return frozenset(descriptor.relative_path for descriptor in self.files)


@dataclass(frozen=True, slots=True)
class SyncResult:
    """Outcome of publishing a snapshot into a target repository.

    Attributes:
        source_commit_id: Commit the snapshot was taken from.
        target_commit_id: Target branch head after publishing, None when
            the target is still empty.
        tag: Tag pointing at the target commit, if one was requested.
        committed: True if a new target commit was created.
        pushed: True if the push changed the target remote.
    """

    source_commit_id: str
    target_commit_id: str | None
    tag: str | None = None
    committed: bool = False
    pushed: bool = False
