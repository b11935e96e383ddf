# ruff: noqa: TC003  # Path and Mapping needed at runtime for dataclass fields
"""Source control value types.

This module defines the immutable values exchanged with SourceControlActions:
repository bindings, commit and tag arguments, in-memory file descriptors,
version identifiers and operation results.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum, StrEnum
from pathlib import Path
from typing import BinaryIO

from ossactions.utils._git import BRANCH_PREFIX, TAG_PREFIX, strip_prefix

# File modes accepted for committed content
MODE_FILE = 0o100644
MODE_EXECUTABLE = 0o100755
MODE_SYMLINK = 0o120000
VALID_FILE_MODES = frozenset({MODE_FILE, MODE_EXECUTABLE, MODE_SYMLINK})


@dataclass(frozen=True, slots=True)
class Repository:
    """A bound (remote location, local working copy) pair.

    Identity is the (remote_uri, local_directory) pair; ``retry_enabled`` is
    a caller preference and does not take part in equality or hashing.

    Attributes:
        remote_uri: Location of the remote repository.
        local_directory: Absolute path of the local working copy.
        retry_enabled: Whether network operations are wrapped with retries.
    """

    remote_uri: str
    local_directory: Path
    retry_enabled: bool = field(default=False, compare=False)

    def __post_init__(self) -> None:
        """Normalize the local directory to an absolute path."""
        object.__setattr__(self, "local_directory", Path(self.local_directory).expanduser().resolve())

    @property
    def key(self) -> tuple[str, Path]:
        """Identity of the repository binding."""
        return (self.remote_uri, self.local_directory)


@dataclass(frozen=True, slots=True)
class CommitArgument:
    """Metadata for a new commit.

    Attributes:
        author: Author name.
        author_email: Author email address.
        description: Commit message.
        commit_id: Commit the caller expects the branch head to be. When set,
            the commit fails with ConflictError if the head has moved.
    """

    author: str
    author_email: str
    description: str
    commit_id: str | None = None


@dataclass(frozen=True, slots=True)
class FileDescriptor:
    """In-memory content to commit.

    Attributes:
        relative_path: Path relative to the working copy root, using ``/``.
        content: File content as bytes or a readable binary stream. Streams
            are read once, when the commit materializes the descriptor.
        mode: Git file mode (regular, executable or symlink).
        deleted: Remove the path instead of writing it.
    """

    relative_path: str
    content: bytes | BinaryIO = b""
    mode: int = MODE_FILE
    deleted: bool = False

    def read_content(self) -> bytes:
        """Return the descriptor content as bytes."""
        if isinstance(self.content, bytes | bytearray | memoryview):
            return bytes(self.content)
        return self.content.read()


@dataclass(frozen=True, slots=True)
class Branch:
    """A local or remote branch.

    Attributes:
        name: Short branch name (without ``refs/heads/``).
        head_commit_id: Commit the branch points at.
        is_remote: True if the branch was listed from the remote.
    """

    name: str
    head_commit_id: str
    is_remote: bool = False


@dataclass(frozen=True, slots=True)
class TagAnnotation:
    """Annotation of an annotated tag.

    Attributes:
        author: Tagger name.
        author_email: Tagger email address.
        description: Tag message.
    """

    author: str
    author_email: str
    description: str


@dataclass(frozen=True, slots=True)
class Tag:
    """A tag.

    Attributes:
        name: Short tag name (without ``refs/tags/``).
        commit_id: Commit the tag (peeled) points at.
        annotation: Tagger metadata, None for lightweight tags.
    """

    name: str
    commit_id: str
    annotation: TagAnnotation | None = None


@dataclass(frozen=True, slots=True)
class TagArgument:
    """Metadata for a new annotated tag.

    Attributes:
        commit_id: Commit to tag. Empty means the current head commit.
        author: Tagger name.
        author_email: Tagger email address.
        description: Tag message.
    """

    commit_id: str
    author: str
    author_email: str
    description: str


class SourceVersionType(StrEnum):
    """Kind of a symbolic version; the value is its string prefix."""

    BRANCH = "b"
    TAG = "t"


@dataclass(frozen=True, slots=True)
class SourceVersion:
    """Symbolic, type-prefixed identifier for a branch or tag.

    Attributes:
        type: Whether the version names a branch or a tag.
        name: Short branch or tag name.
    """

    type: SourceVersionType
    name: str

    def __str__(self) -> str:
        return f"{self.type.value}:{self.name}"


@dataclass(frozen=True, slots=True)
class SourceControlVersion:
    """A concrete reference, optionally pinned to an exact commit.

    Attributes:
        ref: Full reference name such as ``refs/heads/main``.
        commit_id: Exact commit the operation must use, if pinned.
    """

    ref: str
    commit_id: str | None = None

    @property
    def is_branch(self) -> bool:
        """True if the reference is a branch."""
        return self.ref.startswith(BRANCH_PREFIX)

    @property
    def is_tag(self) -> bool:
        """True if the reference is a tag."""
        return self.ref.startswith(TAG_PREFIX)

    @property
    def short_name(self) -> str:
        """Reference name without its namespace prefix."""
        return strip_prefix(self.ref, BRANCH_PREFIX) or strip_prefix(self.ref, TAG_PREFIX) or self.ref

    @property
    def source_version(self) -> SourceVersion:
        """The symbolic version this reference corresponds to.

        Raises:
            ValueError: If the reference is neither a branch nor a tag.
        """
        if self.is_branch:
            return SourceVersion(SourceVersionType.BRANCH, self.short_name)
        if self.is_tag:
            return SourceVersion(SourceVersionType.TAG, self.short_name)
        msg = f"Reference is neither a branch nor a tag: {self.ref}"
        raise ValueError(msg)


class SourceControlVersionType(Enum):
    """Filter selecting which references an operation targets."""

    HEAD = "head"
    ALL_BRANCHES = "all_branches"
    ALL_TAGS = "all_tags"
    ALL = "all"


@dataclass(frozen=True, slots=True)
class CommitResult:
    """Result of a commit operation.

    Attributes:
        sha: Commit SHA hex string, None if no_changes.
        files: Relative paths included in the commit.
        tag: Tag created on the commit, if one was requested.
        no_changes: True if the tree was unchanged and nothing was committed.
    """

    sha: str | None
    files: frozenset[str]
    tag: str | None = None
    no_changes: bool = False


@dataclass(frozen=True, slots=True)
class RefChange:
    """Old and new value of an updated reference (None means absent)."""

    old: str | None
    new: str | None


@dataclass(frozen=True, slots=True)
class FetchResult:
    """Result of a fetch.

    Attributes:
        updated: Local references changed by the fetch.
    """

    updated: Mapping[str, RefChange] = field(default_factory=dict)

    @property
    def up_to_date(self) -> bool:
        """True if the fetch changed nothing."""
        return not self.updated


@dataclass(frozen=True, slots=True)
class PushResult:
    """Result of a push.

    Attributes:
        updated: Remote references changed by the push.
    """

    updated: Mapping[str, RefChange] = field(default_factory=dict)

    @property
    def up_to_date(self) -> bool:
        """True if the push changed nothing."""
        return not self.updated


# =============================================================================
# Backend values
# =============================================================================


@dataclass(frozen=True, slots=True)
class TreeEntry:
    """A file in a commit tree or working copy.

    Attributes:
        mode: Git file mode.
        data: File content (the link target for symlinks).
    """

    mode: int
    data: bytes


@dataclass(frozen=True, slots=True)
class RefUpdate:
    """One reference change within an atomic transaction.

    Attributes:
        ref: Full reference name.
        new: New object id, None deletes the reference.
        old: Expected current object id, None requires the reference to be
            absent.
    """

    ref: str
    new: str | None
    old: str | None = None


@dataclass(frozen=True, slots=True)
class RemoteRefs:
    """Reference listing of a remote.

    Attributes:
        refs: Full reference name to advertised object id.
        peeled: Commit ids of annotated tags, keyed by tag reference.
        head: Branch reference the remote HEAD points at, if known.
    """

    refs: Mapping[str, str]
    peeled: Mapping[str, str] = field(default_factory=dict)
    head: str | None = None

    def commit_of(self, ref: str) -> str | None:
        """Return the commit a reference points at, peeling tags."""
        return self.peeled.get(ref, self.refs.get(ref))
