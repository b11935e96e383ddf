"""In-memory backend for testing.

This module provides FakeBackend, a SourceControlBackend that keeps history
in memory while using a real on-disk working copy, and FakeRemote, the
in-memory remote it talks to. Both support failure injection so tests can
simulate network errors and failures between steps of an operation.
"""

from __future__ import annotations

import hashlib
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final

from ossactions.exceptions import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
)
from ossactions.source_control._models import (
    MODE_FILE,
    RemoteRefs,
    TagAnnotation,
    TreeEntry,
)
from ossactions.source_control._worktree import diff_trees, read_worktree, write_worktree
from ossactions.utils._git import BRANCH_PREFIX, TAG_PREFIX

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    from structlog.typing import FilteringBoundLogger

    from ossactions.config._models import GitConfig
    from ossactions.source_control._cancellation import CancellationToken
    from ossactions.source_control._models import (
        CommitArgument,
        RefUpdate,
        Repository,
        TagArgument,
    )

FAKE_SCHEME: Final = "memory"
EMPTY_TREE_ID: Final = hashlib.sha1(b"tree\0").hexdigest()  # noqa: S324


# =============================================================================
# Object store
# =============================================================================


@dataclass(frozen=True, slots=True)
class FakeCommit:
    """Commit object held by the in-memory store."""

    tree: str
    parent: str | None
    author: str
    author_email: str
    message: str


@dataclass(frozen=True, slots=True)
class FakeTag:
    """Annotated tag object held by the in-memory store."""

    name: str
    commit: str
    annotation: TagAnnotation


def _object_id(kind: str, payload: object) -> str:
    return hashlib.sha1(f"{kind}\0{payload!r}".encode()).hexdigest()  # noqa: S324


class FakeObjectStore:
    """Content-addressed store of trees, commits and tags."""

    def __init__(self) -> None:
        self.trees: dict[str, dict[str, TreeEntry]] = {EMPTY_TREE_ID: {}}
        self.commits: dict[str, FakeCommit] = {}
        self.tags: dict[str, FakeTag] = {}

    def add_tree(self, entries: Mapping[str, TreeEntry]) -> str:
        """Store a flat tree and return its id."""
        if not entries:
            return EMPTY_TREE_ID
        tree_id = _object_id("tree", sorted((path, e.mode, e.data) for path, e in entries.items()))
        self.trees.setdefault(tree_id, dict(entries))
        return tree_id

    def add_commit(self, commit: FakeCommit) -> str:
        """Store a commit and return its id."""
        commit_id = _object_id("commit", commit)
        self.commits.setdefault(commit_id, commit)
        return commit_id

    def add_tag(self, tag: FakeTag) -> str:
        """Store an annotated tag and return its id."""
        tag_id = _object_id("tag", tag)
        self.tags.setdefault(tag_id, tag)
        return tag_id

    def contains(self, object_id: str) -> bool:
        """True if the store knows ``object_id``."""
        return object_id in self.commits or object_id in self.tags or object_id in self.trees

    def expand(self, prefix: str) -> str | None:
        """Expand an abbreviated id when it is unambiguous."""
        if self.contains(prefix):
            return prefix
        matches = [oid for oid in (*self.commits, *self.tags) if oid.startswith(prefix)]
        return matches[0] if len(matches) == 1 else None

    def peel(self, object_id: str) -> str | None:
        """Return the commit an object id ultimately points at."""
        if object_id in self.tags:
            return self.tags[object_id].commit
        if object_id in self.commits:
            return object_id
        return None

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """Walk first parents from ``descendant`` looking for ``ancestor``."""
        current: str | None = descendant
        while current is not None:
            if current == ancestor:
                return True
            commit = self.commits.get(current)
            current = commit.parent if commit else None
        return False

    def merge_from(self, other: FakeObjectStore) -> None:
        """Copy every object of ``other`` into this store."""
        self.trees.update(other.trees)
        self.commits.update(other.commits)
        self.tags.update(other.tags)


# =============================================================================
# Failure injection
# =============================================================================


@dataclass(slots=True)
class FailureInjector:
    """Queue of errors raised by named operations, plus call counts.

    Example:
        >>> injector = FailureInjector()
        >>> injector.inject("fetch", RuntimeError("boom"), times=2)
        >>> injector.pending("fetch")
        2
    """

    failures: dict[str, list[Exception]] = field(default_factory=dict)
    calls: Counter[str] = field(default_factory=Counter)

    def inject(self, operation: str, error: Exception, *, times: int = 1) -> None:
        """Raise ``error`` on the next ``times`` calls of ``operation``."""
        self.failures.setdefault(operation, []).extend([error] * times)

    def pending(self, operation: str) -> int:
        """Number of queued failures for ``operation``."""
        return len(self.failures.get(operation, []))

    def check(self, operation: str) -> None:
        """Count a call and raise the next queued failure, if any."""
        self.calls[operation] += 1
        queue = self.failures.get(operation)
        if queue:
            raise queue.pop(0)


# =============================================================================
# Remote
# =============================================================================


class FakeRemote:
    """In-memory remote repository shared by FakeBackends.

    Tests seed remotes directly with ``commit_files`` and ``create_tag``
    and inject failures for ``list_remote_refs``, ``fetch`` and ``push``.

    Example:
        >>> remote = FakeRemote("memory://upstream")
        >>> sha = remote.commit_files("main", {"README.md": b"hi"}, "initial")
        >>> remote.refs["refs/heads/main"] == sha
        True
    """

    def __init__(self, uri: str, *, default_branch: str = "main") -> None:
        self.uri = uri
        self.objects = FakeObjectStore()
        self.refs: dict[str, str] = {}
        self.head: str | None = f"{BRANCH_PREFIX}{default_branch}"
        self.injector = FailureInjector()
        self.lock = threading.RLock()

    def inject_failure(self, operation: str, error: Exception, *, times: int = 1) -> None:
        """Raise ``error`` on the next ``times`` calls of ``operation``."""
        self.injector.inject(operation, error, times=times)

    @property
    def calls(self) -> Counter[str]:
        """Number of calls per network operation."""
        return self.injector.calls

    def commit_files(
        self,
        branch: str,
        files: Mapping[str, bytes | None],
        message: str,
        *,
        author: str = "Upstream",
        author_email: str = "upstream@example.com",
    ) -> str:
        """Commit files directly on a remote branch and return the commit id.

        A None value removes the file.
        """
        with self.lock:
            ref = f"{BRANCH_PREFIX}{branch}"
            parent = self.refs.get(ref)
            entries = dict(self.objects.trees[self.objects.commits[parent].tree]) if parent else {}
            for path, data in files.items():
                if data is None:
                    _ = entries.pop(path, None)
                else:
                    entries[path] = TreeEntry(MODE_FILE, data)
            tree = self.objects.add_tree(entries)
            commit = self.objects.add_commit(FakeCommit(tree, parent, author, author_email, message))
            self.refs[ref] = commit
            return commit

    def create_tag(
        self,
        name: str,
        commit: str,
        *,
        annotation: TagAnnotation | None = None,
    ) -> str:
        """Create a tag directly on the remote and return its object id."""
        with self.lock:
            object_id = commit
            if annotation is not None:
                object_id = self.objects.add_tag(FakeTag(name, commit, annotation))
            self.refs[f"{TAG_PREFIX}{name}"] = object_id
            return object_id

    def advertise(self) -> RemoteRefs:
        """Return the reference listing clients see."""
        with self.lock:
            peeled = {
                ref: self.objects.tags[oid].commit for ref, oid in self.refs.items() if oid in self.objects.tags
            }
            head = self.head if self.head in self.refs else None
            return RemoteRefs(refs=dict(self.refs), peeled=peeled, head=head)


class FakeBackendFactory:
    """Creates FakeBackends and owns the FakeRemotes they share.

    Registered for the ``memory`` scheme by RepositoryHandleRegistry.
    """

    def __init__(self) -> None:
        self._remotes: dict[str, FakeRemote] = {}
        self._lock = threading.Lock()

    def remote(self, uri: str) -> FakeRemote:
        """Return the remote for ``uri``, creating it on first use."""
        with self._lock:
            if uri not in self._remotes:
                self._remotes[uri] = FakeRemote(uri)
            return self._remotes[uri]

    def __call__(
        self,
        repository: Repository,
        config: GitConfig,
        logger: FilteringBoundLogger,  # noqa: ARG002
    ) -> FakeBackend:
        """Build a backend for ``repository``."""
        return FakeBackend(
            repository.local_directory,
            self.remote(repository.remote_uri),
            default_branch=config.default_branch,
        )


# =============================================================================
# Backend
# =============================================================================


def _split_refspec(refspec: str) -> tuple[bool, str, str]:
    force = refspec.startswith("+")
    src, _, dst = refspec.removeprefix("+").partition(":")
    return force, src, dst


def _expand_refspec(refspec: str, available: Mapping[str, str]) -> list[tuple[bool, str, str]]:
    """Expand a refspec against ``available`` into (force, src, dst) triples.

    Raises:
        NotFoundError: If a non-wildcard source does not exist.
    """
    force, src, dst = _split_refspec(refspec)
    if "*" not in src:
        if src and src not in available:
            msg = f"couldn't find remote ref {src}"
            raise NotFoundError(msg, ref=src)
        return [(force, src, dst)]
    src_prefix = src.removesuffix("*")
    dst_prefix = dst.removesuffix("*")
    return [
        (force, ref, f"{dst_prefix}{ref[len(src_prefix) :]}")
        for ref in sorted(available)
        if ref.startswith(src_prefix)
    ]


class FakeBackend:
    """SourceControlBackend with in-memory history and an on-disk worktree.

    Local failure points (``write_tree``, ``write_commit``, ``write_tag``,
    ``update_refs``, ``update_worktree``, ``reset_index``) can be made to fail
    with ``inject_failure``.

    Example:
        >>> backend = FakeBackend(Path("/tmp/work"), FakeRemote("memory://x"))
        >>> backend.open()
        >>> backend.resolve("HEAD") is None
        True
    """

    def __init__(self, root: Path, remote: FakeRemote, *, default_branch: str = "main") -> None:
        self._root = root
        self._remote = remote
        self._default_branch = default_branch
        self.objects = FakeObjectStore()
        self.refs: dict[str, str] = {}
        self.head: str | None = None
        self.index_commit: str | None = None
        self.injector = FailureInjector()
        self.opened = False
        self.closed = False
        self._lock = threading.RLock()

    @property
    def root(self) -> Path:
        """Absolute path of the working copy."""
        return self._root

    @property
    def remote_uri(self) -> str:
        """Location of the remote."""
        return self._remote.uri

    @property
    def remote(self) -> FakeRemote:
        """The remote this backend talks to."""
        return self._remote

    def inject_failure(self, operation: str, error: Exception, *, times: int = 1) -> None:
        """Raise ``error`` on the next ``times`` calls of ``operation``."""
        self.injector.inject(operation, error, times=times)

    def open(self) -> None:
        """Create the working copy directory."""
        with self._lock:
            if self.opened:
                return
            self._root.mkdir(parents=True, exist_ok=True)
            self.head = f"{BRANCH_PREFIX}{self._default_branch}"
            self.opened = True

    def close(self) -> None:
        """Mark the backend closed."""
        self.closed = True

    # =========================================================================
    # References
    # =========================================================================

    def head_ref(self) -> str | None:
        """Return the branch HEAD points at."""
        return self.head

    def set_head(self, ref: str) -> None:
        """Point HEAD at ``ref``."""
        self.head = ref

    def resolve(self, rev: str) -> str | None:
        """Resolve a ref, ``HEAD`` or (abbreviated) object id to a commit."""
        with self._lock:
            if rev == "HEAD":
                if self.head is None:
                    return None
                rev = self.head
            if rev in self.refs:
                return self.objects.peel(self.refs[rev])
            object_id = self.objects.expand(rev)
            return self.objects.peel(object_id) if object_id else None

    def list_refs(self, prefix: str) -> dict[str, str]:
        """List local references under ``prefix``."""
        with self._lock:
            return {ref: oid for ref, oid in sorted(self.refs.items()) if ref.startswith(prefix)}

    def update_refs(self, updates: Sequence[RefUpdate]) -> None:
        """Check every update, then apply all of them.

        Raises:
            AlreadyExistsError: If a reference expected absent exists.
            ConflictError: If a reference is not at its expected value.
        """
        with self._lock:
            self.injector.check("update_refs")
            for update in updates:
                current = self.refs.get(update.ref)
                if update.new is not None and update.old is None and current is not None:
                    msg = f"Reference already exists: {update.ref}"
                    raise AlreadyExistsError(msg, ref=update.ref)
                if update.old is not None and current != update.old:
                    msg = f"Reference {update.ref} is at {current}, expected {update.old}"
                    raise ConflictError(msg, ref=update.ref)
            for update in updates:
                if update.new is None:
                    _ = self.refs.pop(update.ref, None)
                else:
                    self.refs[update.ref] = update.new

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """Check reachability through first parents."""
        return self.objects.is_ancestor(ancestor, descendant)

    # =========================================================================
    # Objects
    # =========================================================================

    def tree_id(self, commit: str | None) -> str:
        """Return the tree of ``commit``, the empty tree for None."""
        if commit is None:
            return EMPTY_TREE_ID
        return self.objects.commits[commit].tree

    def read_tree(
        self,
        commit: str,
        paths: Sequence[str] | None = None,
    ) -> dict[str, TreeEntry]:
        """Read entries of ``commit``; missing paths are skipped."""
        entries = self.objects.trees[self.tree_id(commit)]
        if paths is None:
            return dict(entries)
        return {path: entries[path] for path in paths if path in entries}

    def write_tree(
        self,
        parent: str | None,
        changes: Mapping[str, TreeEntry | None],
    ) -> str:
        """Store the parent tree with ``changes`` applied."""
        self.injector.check("write_tree")
        entries = dict(self.objects.trees[self.tree_id(parent)])
        for path, entry in changes.items():
            for existing in [p for p in entries if p.startswith(f"{path}/") or path.startswith(f"{p}/")]:
                del entries[existing]
            if entry is None:
                _ = entries.pop(path, None)
            else:
                entries[path] = entry
        return self.objects.add_tree(entries)

    def write_commit(self, tree: str, parent: str | None, argument: CommitArgument) -> str:
        """Store a commit object."""
        self.injector.check("write_commit")
        return self.objects.add_commit(
            FakeCommit(tree, parent, argument.author, argument.author_email, argument.description)
        )

    def write_tag(self, name: str, commit: str, argument: TagArgument) -> str:
        """Store an annotated tag object."""
        self.injector.check("write_tag")
        annotation = TagAnnotation(argument.author, argument.author_email, argument.description)
        return self.objects.add_tag(FakeTag(name, commit, annotation))

    def read_annotation(self, object_id: str) -> TagAnnotation | None:
        """Return the annotation of a tag object."""
        tag = self.objects.tags.get(object_id)
        return tag.annotation if tag else None

    # =========================================================================
    # Working copy
    # =========================================================================

    def reset_index(self, commit: str) -> None:
        """Record the commit the (virtual) index matches."""
        self.injector.check("reset_index")
        self.index_commit = commit

    def update_worktree(self, old: str | None, new: str) -> None:
        """Rewrite worktree files that differ between ``old`` and ``new``.

        Raises:
            ConflictError: If a file to be changed has local modifications.
        """
        self.injector.check("update_worktree")
        old_entries = self.read_tree(old) if old else {}
        changes = diff_trees(old_entries, self.read_tree(new))
        current = read_worktree(self._root, changes)
        for path, entry in changes.items():
            if current[path] not in (old_entries.get(path), entry):
                msg = f"Local changes to {path} would be overwritten"
                raise ConflictError(msg, ref=path)
        write_worktree(self._root, changes)
        self.index_commit = new

    # =========================================================================
    # Network
    # =========================================================================

    def list_remote_refs(
        self,
        cancellation: CancellationToken | None = None,
    ) -> RemoteRefs:
        """Return the remote's reference listing."""
        if cancellation is not None:
            cancellation.raise_if_cancelled()
        with self._remote.lock:
            self._remote.injector.check("list_remote_refs")
            return self._remote.advertise()

    def fetch(
        self,
        refspecs: Sequence[str],
        cancellation: CancellationToken | None = None,
    ) -> None:
        """Copy remote objects and apply refspecs all or nothing.

        Raises:
            NotFoundError: If a requested remote reference does not exist.
            ConflictError: If an update is not a fast-forward and not forced,
                or would move an existing tag.
        """
        if cancellation is not None:
            cancellation.raise_if_cancelled()
        with self._remote.lock, self._lock:
            self._remote.injector.check("fetch")
            remote_refs = dict(self._remote.refs)
            self.objects.merge_from(self._remote.objects)
            planned: dict[str, str] = {}
            for refspec in refspecs:
                for force, src, dst in _expand_refspec(refspec, remote_refs):
                    new = remote_refs[src]
                    self._check_update(self.refs.get(dst), new, dst, force=force, store=self.objects)
                    planned[dst] = new
            self.refs.update(planned)

    def push(
        self,
        refspecs: Sequence[str],
        cancellation: CancellationToken | None = None,
    ) -> None:
        """Copy local objects and update remote refs all or nothing.

        Raises:
            ConflictError: If an update is not a fast-forward and not forced,
                or would move an existing tag.
        """
        if cancellation is not None:
            cancellation.raise_if_cancelled()
        with self._remote.lock, self._lock:
            self._remote.injector.check("push")
            planned: dict[str, str | None] = {}
            for refspec in refspecs:
                force, src, dst = _split_refspec(refspec)
                if not src:
                    planned[dst] = None
                    continue
                new = self.refs.get(src) or self.objects.expand(src)
                if new is None:
                    msg = f"src refspec {src} does not match any"
                    raise NotFoundError(msg, ref=src)
                merged = FakeObjectStore()
                merged.merge_from(self._remote.objects)
                merged.merge_from(self.objects)
                self._check_update(self._remote.refs.get(dst), new, dst, force=force, store=merged)
                planned[dst] = new
            self._remote.objects.merge_from(self.objects)
            for ref, new in planned.items():
                if new is None:
                    _ = self._remote.refs.pop(ref, None)
                else:
                    self._remote.refs[ref] = new

    @staticmethod
    def _check_update(
        old: str | None,
        new: str,
        ref: str,
        *,
        force: bool,
        store: FakeObjectStore,
    ) -> None:
        if old is None or old == new or force:
            return
        if ref.startswith(TAG_PREFIX):
            msg = f"[rejected] {ref} (would clobber existing tag)"
            raise ConflictError(msg, ref=ref)
        old_commit = store.peel(old)
        new_commit = store.peel(new)
        if old_commit is None or new_commit is None or not store.is_ancestor(old_commit, new_commit):
            msg = f"[rejected] {ref} (non-fast-forward)"
            raise ConflictError(msg, ref=ref)
