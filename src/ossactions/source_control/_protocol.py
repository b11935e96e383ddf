# ruff: noqa: TC003  # Path needed at runtime for Protocol method bodies
"""Backend protocol for source control actions.

This module defines the runtime-checkable Protocol every version-control
backend implements. SourceControlActions owns the operation semantics
(validation, atomicity, conflict detection) and drives a backend through
these primitives only.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ossactions.source_control._cancellation import CancellationToken
    from ossactions.source_control._models import (
        CommitArgument,
        RefUpdate,
        RemoteRefs,
        TagAnnotation,
        TagArgument,
        TreeEntry,
    )


@runtime_checkable
class SourceControlBackend(Protocol):
    """Primitive operations of a version-control backend.

    A backend is bound to one local working copy and one remote. It must not
    perform network I/O outside ``list_remote_refs``, ``fetch`` and ``push``.
    Object ids are lowercase hex strings; references are full names such as
    ``refs/heads/main``.

    Example:
        >>> backend = FakeBackend(Path("/tmp/work"), FakeRemote("memory://x"))
        >>> backend.open()
        >>> backend.head_ref()
        'refs/heads/main'
    """

    @property
    def root(self) -> Path:
        """Absolute path of the working copy."""
        ...

    @property
    def remote_uri(self) -> str:
        """Location of the remote."""
        ...

    def open(self) -> None:
        """Initialise the working copy if needed. Idempotent, no network I/O.

        Raises:
            ConfigurationError: If the directory holds an incompatible
                repository.
        """
        ...

    def close(self) -> None:
        """Release resources held by the backend."""
        ...

    # -------------------------------------------------------------------------
    # References
    # -------------------------------------------------------------------------

    def head_ref(self) -> str | None:
        """Return the branch reference HEAD points at (possibly unborn).

        Returns:
            The reference, or None if HEAD is detached.
        """
        ...

    def set_head(self, ref: str) -> None:
        """Point HEAD at a branch reference without touching the worktree."""
        ...

    def resolve(self, rev: str) -> str | None:
        """Resolve a reference or object id to a commit id.

        Tags are peeled to the commit they point at.

        Returns:
            The commit id, or None if ``rev`` does not name a commit.
        """
        ...

    def list_refs(self, prefix: str) -> dict[str, str]:
        """List local references under ``prefix`` with their object ids."""
        ...

    def update_refs(self, updates: Sequence[RefUpdate]) -> None:
        """Apply reference updates as one atomic transaction.

        Raises:
            AlreadyExistsError: If a reference expected absent exists.
            ConflictError: If a reference is not at its expected value.
        """
        ...

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """Check whether ``ancestor`` is reachable from ``descendant``.

        Unknown object ids are never ancestors.
        """
        ...

    # -------------------------------------------------------------------------
    # Objects
    # -------------------------------------------------------------------------

    def tree_id(self, commit: str | None) -> str:
        """Return the tree id of a commit (the empty tree for None)."""
        ...

    def read_tree(
        self,
        commit: str,
        paths: Sequence[str] | None = None,
    ) -> dict[str, TreeEntry]:
        """Read files of a commit.

        Args:
            commit: Commit id.
            paths: Relative paths to read; None reads the whole tree.
                Missing paths are omitted from the result.

        Returns:
            Relative path to entry.
        """
        ...

    def write_tree(
        self,
        parent: str | None,
        changes: Mapping[str, TreeEntry | None],
    ) -> str:
        """Store a tree derived from a parent commit's tree.

        Args:
            parent: Commit whose tree is the base, None for the empty tree.
            changes: Relative path to new entry, None removes the path.

        Returns:
            The new tree id.
        """
        ...

    def write_commit(
        self,
        tree: str,
        parent: str | None,
        argument: CommitArgument,
    ) -> str:
        """Store a commit object without updating any reference."""
        ...

    def write_tag(self, name: str, commit: str, argument: TagArgument) -> str:
        """Store an annotated tag object without creating its reference."""
        ...

    def read_annotation(self, object_id: str) -> TagAnnotation | None:
        """Return the annotation of a tag object, None for a commit."""
        ...

    # -------------------------------------------------------------------------
    # Working copy
    # -------------------------------------------------------------------------

    def reset_index(self, commit: str) -> None:
        """Make the index match ``commit`` without touching the worktree."""
        ...

    def update_worktree(self, old: str | None, new: str) -> None:
        """Move the worktree and index from ``old`` to ``new``.

        Raises:
            ConflictError: If local modifications would be overwritten.
        """
        ...

    # -------------------------------------------------------------------------
    # Network
    # -------------------------------------------------------------------------

    def list_remote_refs(
        self,
        cancellation: CancellationToken | None = None,
    ) -> RemoteRefs:
        """List references advertised by the remote."""
        ...

    def fetch(
        self,
        refspecs: Sequence[str],
        cancellation: CancellationToken | None = None,
    ) -> None:
        """Fetch ``refspecs`` from the remote, applying all updates atomically.

        Raises:
            TransientNetworkError: If the remote is temporarily unreachable.
            AuthError: If the remote rejects credentials.
            NotFoundError: If a requested remote reference does not exist.
            ConflictError: If an update is rejected.
            OperationCancelledError: If ``cancellation`` fires.
        """
        ...

    def push(
        self,
        refspecs: Sequence[str],
        cancellation: CancellationToken | None = None,
    ) -> None:
        """Push ``refspecs`` to the remote, all or nothing.

        Raises:
            TransientNetworkError: If the remote is temporarily unreachable.
            AuthError: If the remote rejects credentials.
            ConflictError: If the remote rejects an update.
            OperationCancelledError: If ``cancellation`` fires.
        """
        ...
