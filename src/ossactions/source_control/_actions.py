"""Source control actions bound to one repository.

SourceControlActions is the operation surface callers use: commit, fetch,
push, branch and tag management and version enumeration. It owns the
semantics (validation, atomicity, conflict detection, rollback) and drives a
SourceControlBackend through its primitives. Every operation holds the
handle's lock, so operations on one working copy never interleave.
"""

from __future__ import annotations

import contextlib
import threading
from typing import TYPE_CHECKING

from ossactions.config._models import GitConfig
from ossactions.exceptions import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    OperationCancelledError,
    ValidationError,
)
from ossactions.source_control._cancellation import check_cancelled
from ossactions.source_control._models import (
    Branch,
    CommitArgument,
    CommitResult,
    FetchResult,
    FileDescriptor,
    PushResult,
    RefChange,
    RefUpdate,
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
from ossactions.source_control._versions import VersionResolver
from ossactions.source_control._worktree import (
    ensure_within_worktree,
    normalize_relative_path,
    read_worktree,
    to_relative_path,
    validate_mode,
    write_worktree,
)
from ossactions.utils._git import (
    BRANCH_PREFIX,
    REMOTES_PREFIX,
    TAG_PREFIX,
    branch_ref,
    is_valid_ref_name,
    remote_branch_ref,
    strip_prefix,
    tag_ref,
)
from ossactions.utils._logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping, Sequence
    from pathlib import Path

    from structlog.typing import FilteringBoundLogger

    from ossactions.source_control._cancellation import CancellationToken
    from ossactions.source_control._protocol import SourceControlBackend

FetchTarget = SourceControlVersion | SourceControlVersionType | None
PushTarget = SourceControlVersion | SourceControlVersionType | None


class SourceControlActions:
    """Primitive source control operations against one bound repository.

    Instances are normally obtained from RepositoryHandleRegistry, which
    guarantees one instance per working copy. Every public operation accepts
    an optional ``cancellation`` token; a cancelled operation leaves no
    partial reference update behind.

    Example:
        >>> actions = registry.acquire("https://example.com/repo.git", work_dir)
        >>> actions.fetch()
        >>> actions.get_versions()
        ['b:main', 't:v1.0']
    """

    def __init__(
        self,
        repository: Repository,
        backend: SourceControlBackend,
        *,
        resolver: VersionResolver | None = None,
        config: GitConfig | None = None,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        self._repository = repository
        self._backend = backend
        self._resolver = resolver or VersionResolver()
        self._config = config or GitConfig()
        self._logger = (logger or get_logger()).bind(
            remote=repository.remote_uri,
            directory=str(repository.local_directory),
        )
        self._lock = threading.RLock()
        self._opened = False

    @property
    def repository(self) -> Repository:
        """The bound repository."""
        return self._repository

    @property
    def backend(self) -> SourceControlBackend:
        """The backend executing primitive operations."""
        return self._backend

    @property
    def resolver(self) -> VersionResolver:
        """The resolver used to format and parse versions."""
        return self._resolver

    @property
    def _tracking_prefix(self) -> str:
        return f"{REMOTES_PREFIX}{self._config.remote_name}/"

    @contextlib.contextmanager
    def _operation(self, cancellation: CancellationToken | None) -> Iterator[SourceControlBackend]:
        """Hold the working copy lock and open the backend on first use."""
        with self._lock:
            check_cancelled(cancellation)
            if not self._opened:
                self._backend.open()
                self._opened = True
            yield self._backend

    def close(self) -> None:
        """Close the backend. The handle reopens it on next use."""
        with self._lock:
            self._backend.close()
            self._opened = False

    # =========================================================================
    # Commit
    # =========================================================================

    def commit(
        self,
        argument: CommitArgument,
        paths: Iterable[Path | str],
        *,
        cancellation: CancellationToken | None = None,
    ) -> CommitResult:
        """Commit files already present in the working copy.

        Args:
            argument: Commit metadata.
            paths: Absolute paths, or paths relative to the working copy.
            cancellation: Optional cancellation token.

        Returns:
            CommitResult with the new commit, or ``no_changes`` when the
            files match the current head.

        Raises:
            ValidationError: If a path is outside the working copy or does
                not exist. Nothing is written in that case.
            ConflictError: If ``argument.commit_id`` is not the head.
        """
        with self._operation(cancellation) as backend:
            relative = sorted({to_relative_path(backend.root, path) for path in paths})
            if not relative:
                msg = "No paths to commit"
                raise ValidationError(msg)

            current = read_worktree(backend.root, relative)
            missing = [path for path, entry in current.items() if entry is None]
            if missing:
                msg = f"Paths do not exist in the working copy: {', '.join(missing)}"
                raise ValidationError(msg, path=missing[0])

            return self._commit_changes(
                argument,
                dict(current),
                tag_name=None,
                materialize=False,
                cancellation=cancellation,
            )

    def commit_files(
        self,
        argument: CommitArgument,
        files: Iterable[FileDescriptor],
        tag_name: str | None = None,
        *,
        cancellation: CancellationToken | None = None,
    ) -> CommitResult:
        """Materialize in-memory files into the working copy and commit them.

        When ``tag_name`` is non-empty the tag is created on the new commit
        in the same reference transaction as the branch update: both exist
        afterwards or neither does.

        Args:
            argument: Commit metadata.
            files: Descriptors to write (or delete).
            tag_name: Optional annotated tag to create on the new commit.
            cancellation: Optional cancellation token.

        Returns:
            CommitResult with the new commit and tag, or ``no_changes`` when
            the files match the current head (no tag is created then).

        Raises:
            ValidationError: If a path or mode is invalid, or the tag name
                is malformed.
            AlreadyExistsError: If the tag already exists.
            ConflictError: If ``argument.commit_id`` is not the head.
        """
        if tag_name:
            self._validate_name(tag_name, "tag")

        changes: dict[str, TreeEntry | None] = {}
        for descriptor in files:
            relative = normalize_relative_path(descriptor.relative_path)
            if descriptor.deleted:
                changes[relative] = None
                continue
            validate_mode(descriptor.mode, relative)
            changes[relative] = TreeEntry(descriptor.mode, descriptor.read_content())
        if not changes:
            msg = "No files to commit"
            raise ValidationError(msg)

        with self._operation(cancellation):
            for relative in changes:
                _ = ensure_within_worktree(self._backend.root, relative)
            return self._commit_changes(
                argument,
                changes,
                tag_name=tag_name or None,
                materialize=True,
                cancellation=cancellation,
            )

    def _commit_changes(
        self,
        argument: CommitArgument,
        changes: Mapping[str, TreeEntry | None],
        *,
        tag_name: str | None,
        materialize: bool,
        cancellation: CancellationToken | None,
    ) -> CommitResult:
        backend = self._backend
        head = backend.head_ref()
        if head is None:
            msg = "Cannot commit on a detached HEAD"
            raise ConflictError(msg, ref="HEAD")
        parent = backend.resolve(head)

        if argument.commit_id:
            expected = backend.resolve(argument.commit_id)
            if expected is None:
                msg = f"Commit not found: {argument.commit_id}"
                raise NotFoundError(msg, ref=argument.commit_id)
            if expected != parent:
                msg = f"Branch {head} moved: expected {expected}, found {parent}"
                raise ConflictError(msg, ref=head, details=f"head={parent}")

        new_tag_ref = tag_ref(tag_name) if tag_name else None
        if new_tag_ref is not None and new_tag_ref in backend.list_refs(new_tag_ref):
            msg = f"Tag already exists: {tag_name}"
            raise AlreadyExistsError(msg, ref=new_tag_ref)

        tree = backend.write_tree(parent, changes)
        if tree == backend.tree_id(parent):
            self._logger.info("commit_skipped_no_changes", branch=head, files=len(changes))
            return CommitResult(sha=None, files=frozenset(changes), no_changes=True)

        sha = backend.write_commit(tree, parent, argument)
        updates = [RefUpdate(head, sha, parent)]
        tag_object: str | None = None
        if tag_name and new_tag_ref:
            tag_argument = TagArgument(sha, argument.author, argument.author_email, argument.description)
            tag_object = backend.write_tag(tag_name, sha, tag_argument)
            updates.append(RefUpdate(new_tag_ref, tag_object, None))

        # Last point where the commit can be abandoned without side effects
        check_cancelled(cancellation)
        try:
            backend.update_refs(updates)
        except AlreadyExistsError as e:
            if e.ref == new_tag_ref:
                raise
            msg = f"Branch {head} was created concurrently"
            raise ConflictError(msg, ref=head) from e

        backup = read_worktree(backend.root, changes) if materialize else {}
        try:
            if materialize:
                write_worktree(backend.root, changes)
            backend.reset_index(sha)
        except Exception:
            self._logger.warning("commit_rolled_back", branch=head, commit=sha, tag=tag_name)
            rollback = [RefUpdate(head, parent, sha)]
            if new_tag_ref and tag_object:
                rollback.append(RefUpdate(new_tag_ref, None, tag_object))
            backend.update_refs(rollback)
            if materialize:
                write_worktree(backend.root, backup)
            raise

        self._logger.info(
            "commit_created",
            branch=head,
            commit=sha,
            parent=parent,
            files=len(changes),
            tag=tag_name,
        )
        return CommitResult(sha=sha, files=frozenset(changes), tag=tag_name, no_changes=False)

    # =========================================================================
    # Fetch and push
    # =========================================================================

    def fetch(
        self,
        target: FetchTarget = None,
        *,
        cancellation: CancellationToken | None = None,
    ) -> FetchResult:
        """Synchronize local state from the remote.

        Remote branches land in remote-tracking references and are then
        integrated into local branches: missing local branches are created
        and branches behind the remote are fast-forwarded (the checked-out
        one together with the worktree). Diverged local branches are left
        alone. Tags are copied as they are.

        Args:
            target: None or ``SourceControlVersionType.ALL`` fetches every
                branch and tag; a version type selects branches, tags or the
                head branch; a SourceControlVersion fetches that reference.
            cancellation: Optional cancellation token.

        Returns:
            FetchResult listing changed local references. Fetching again
            without remote changes returns an up-to-date result.

        Raises:
            NotFoundError: If the requested reference or pinned commit does
                not exist on the remote.
            ConflictError: If a fetched tag would move an existing tag.
            TransientNetworkError: If the remote is unreachable.
            AuthError: If the remote rejects credentials.
            OperationCancelledError: If the token is cancelled. References
                moved by the download are put back first.
        """
        with self._operation(cancellation) as backend:
            refspecs = self._fetch_refspecs(target, cancellation)
            before = self._snapshot_refs()
            try:
                backend.fetch(refspecs, cancellation)

                if isinstance(target, SourceControlVersion) and target.commit_id:
                    if backend.resolve(target.commit_id) is None:
                        msg = f"Commit {target.commit_id} not found after fetching {target.ref}"
                        raise NotFoundError(msg, ref=target.ref)

                if target is not SourceControlVersionType.ALL_TAGS and not (
                    isinstance(target, SourceControlVersion) and target.is_tag
                ):
                    self._integrate_tracking_branches(cancellation)
            except OperationCancelledError:
                self._restore_refs(before)
                raise

            updated = self._diff_refs(before, self._snapshot_refs())
            self._logger.info(
                "fetch_completed",
                target=_describe(target),
                updated=len(updated),
            )
            return FetchResult(updated=updated)

    def _fetch_refspecs(
        self,
        target: FetchTarget,
        cancellation: CancellationToken | None,
    ) -> list[str]:
        tracking = self._tracking_prefix
        all_branches = f"+{BRANCH_PREFIX}*:{tracking}*"
        all_tags = f"{TAG_PREFIX}*:{TAG_PREFIX}*"

        if target is None or target is SourceControlVersionType.ALL:
            return [all_branches, all_tags]
        if target is SourceControlVersionType.ALL_BRANCHES:
            return [all_branches]
        if target is SourceControlVersionType.ALL_TAGS:
            return [all_tags]
        if target is SourceControlVersionType.HEAD:
            name = self._head_branch_name(cancellation)
            return [f"+{branch_ref(name)}:{tracking}{name}"]
        if isinstance(target, SourceControlVersion):
            if target.is_branch:
                return [f"+{target.ref}:{tracking}{target.short_name}"]
            if target.is_tag:
                return [f"{target.ref}:{target.ref}"]
        msg = f"Unsupported fetch target: {target!r}"
        raise ValidationError(msg, name=str(target))

    def _head_branch_name(self, cancellation: CancellationToken | None) -> str:
        """Name of the local head branch, or the remote's default when unborn."""
        backend = self._backend
        head = backend.head_ref()
        if head is not None and backend.resolve(head) is not None:
            return strip_prefix(head, BRANCH_PREFIX) or head
        remote_head = backend.list_remote_refs(cancellation).head
        if remote_head is not None:
            return strip_prefix(remote_head, BRANCH_PREFIX) or remote_head
        if head is not None:
            return strip_prefix(head, BRANCH_PREFIX) or head
        return self._config.default_branch

    def _integrate_tracking_branches(self, cancellation: CancellationToken | None) -> None:
        backend = self._backend
        tracking = backend.list_refs(self._tracking_prefix)
        local = backend.list_refs(BRANCH_PREFIX)
        head = backend.head_ref()
        head_commit = backend.resolve(head) if head else None

        updates: list[RefUpdate] = []
        checked_out: tuple[str | None, str] | None = None
        for tracking_ref, commit in tracking.items():
            name = tracking_ref[len(self._tracking_prefix) :]
            if name == "HEAD":
                continue
            ref = branch_ref(name)
            current = local.get(ref)
            if current == commit:
                continue
            if current is not None and not backend.is_ancestor(current, commit):
                self._logger.debug("branch_not_fast_forwarded", branch=name, local=current, remote=commit)
                continue
            if ref == head:
                checked_out = (current, commit)
            else:
                updates.append(RefUpdate(ref, commit, current))

        check_cancelled(cancellation)
        backend.update_refs(updates)

        if head is not None and checked_out is not None:
            old, new = checked_out
            try:
                backend.update_worktree(head_commit, new)
            except ConflictError:
                self._logger.warning("checked_out_branch_not_updated", branch=head, remote=new)
                return
            backend.update_refs([RefUpdate(head, new, old)])
        elif head_commit is None and head is not None:
            self._adopt_remote_head(cancellation)

    def _adopt_remote_head(self, cancellation: CancellationToken | None) -> None:
        """Check out the remote default branch when HEAD is unborn."""
        backend = self._backend
        local = backend.list_refs(BRANCH_PREFIX)
        if not local:
            return
        remote_head = backend.list_remote_refs(cancellation).head
        if remote_head is None or remote_head not in local:
            remote_head = next(iter(sorted(local)))
        backend.set_head(remote_head)
        backend.update_worktree(None, local[remote_head])
        self._logger.info("head_adopted", branch=remote_head, commit=local[remote_head])

    def push(
        self,
        target: PushTarget | Sequence[SourceControlVersion] = None,
        *,
        cancellation: CancellationToken | None = None,
    ) -> PushResult:
        """Update the remote from local state in one atomic push.

        Args:
            target: None or ``SourceControlVersionType.ALL`` pushes every
                local branch and tag; a version type selects branches, tags
                or the head branch; a SourceControlVersion (or a sequence of
                them) pushes those references, a pinned commit exactly.
            cancellation: Optional cancellation token.

        Returns:
            PushResult listing changed remote references.

        Raises:
            ConflictError: If a branch update is not a fast-forward or a tag
                diverges from the remote. Nothing is pushed then.
            NotFoundError: If a requested local reference does not exist.
            TransientNetworkError: If the remote is unreachable.
            AuthError: If the remote rejects credentials.
        """
        with self._operation(cancellation) as backend:
            plan = self._push_plan(target)
            remote = backend.list_remote_refs(cancellation)

            refspecs: list[str] = []
            updated: dict[str, RefChange] = {}
            for ref, (source, new) in plan.items():
                old = remote.refs.get(ref)
                if old == new:
                    continue
                if old is not None and ref.startswith(TAG_PREFIX):
                    msg = f"Tag {ref} differs on the remote"
                    raise ConflictError(msg, ref=ref, details=f"remote={old} local={new}")
                if old is not None and not (
                    backend.resolve(old) is not None and backend.is_ancestor(old, new)
                ):
                    msg = f"Remote branch {ref} has diverged (non-fast-forward)"
                    raise ConflictError(msg, ref=ref, details=f"remote={old} local={new}")
                refspecs.append(f"{source}:{ref}")
                updated[ref] = RefChange(old, new)

            if refspecs:
                check_cancelled(cancellation)
                backend.push(refspecs, cancellation)
                self._record_pushed_branches(updated)

            self._logger.info("push_completed", target=_describe(target), updated=len(updated))
            return PushResult(updated=updated)

    def _push_plan(
        self,
        target: PushTarget | Sequence[SourceControlVersion],
    ) -> dict[str, tuple[str, str]]:
        """Map remote reference to (refspec source, object id)."""
        backend = self._backend
        if target is None or target is SourceControlVersionType.ALL:
            refs = {**backend.list_refs(BRANCH_PREFIX), **backend.list_refs(TAG_PREFIX)}
            return {ref: (ref, oid) for ref, oid in refs.items()}
        if target is SourceControlVersionType.ALL_BRANCHES:
            return {ref: (ref, oid) for ref, oid in backend.list_refs(BRANCH_PREFIX).items()}
        if target is SourceControlVersionType.ALL_TAGS:
            return {ref: (ref, oid) for ref, oid in backend.list_refs(TAG_PREFIX).items()}
        if target is SourceControlVersionType.HEAD:
            head = backend.head_ref()
            commit = backend.resolve(head) if head else None
            if head is None or commit is None:
                msg = "HEAD does not point at a commit"
                raise NotFoundError(msg, ref="HEAD")
            return {head: (head, commit)}
        if isinstance(target, SourceControlVersion):
            return dict([self._push_entry(target)])
        if isinstance(target, SourceControlVersionType):
            msg = f"Unsupported push target: {target!r}"
            raise ValidationError(msg, name=str(target))
        return dict(self._push_entry(version) for version in target)

    def _push_entry(self, version: SourceControlVersion) -> tuple[str, tuple[str, str]]:
        backend = self._backend
        if not (version.is_branch or version.is_tag):
            msg = f"Cannot push {version.ref}: not a branch or tag"
            raise ValidationError(msg, name=version.ref)

        local = backend.list_refs(version.ref).get(version.ref)
        if version.is_branch and version.commit_id:
            commit = backend.resolve(version.commit_id)
            if commit is None:
                msg = f"Commit not found: {version.commit_id}"
                raise NotFoundError(msg, ref=version.commit_id)
            return version.ref, (commit, commit)
        if local is None:
            msg = f"Reference not found: {version.ref}"
            raise NotFoundError(msg, ref=version.ref)
        if version.commit_id and backend.resolve(version.ref) != backend.resolve(version.commit_id):
            msg = f"Tag {version.ref} does not point at {version.commit_id}"
            raise ConflictError(msg, ref=version.ref)
        return version.ref, (version.ref, local)

    def _record_pushed_branches(self, updated: Mapping[str, RefChange]) -> None:
        backend = self._backend
        tracking = backend.list_refs(self._tracking_prefix)
        updates: list[RefUpdate] = []
        for ref, change in updated.items():
            name = strip_prefix(ref, BRANCH_PREFIX)
            if name is None:
                continue
            tracking_ref = remote_branch_ref(self._config.remote_name, name)
            updates.append(RefUpdate(tracking_ref, change.new, tracking.get(tracking_ref)))
        backend.update_refs(updates)

    # =========================================================================
    # Branches
    # =========================================================================

    def create_branch(
        self,
        name: str,
        commit_id: str | None = None,
        *,
        cancellation: CancellationToken | None = None,
    ) -> Branch:
        """Create a local branch.

        Args:
            name: Branch name.
            commit_id: Commit (or any revision) to start at. When omitted or
                empty the branch starts at the current head commit.
            cancellation: Optional cancellation token.

        Returns:
            The new branch.

        Raises:
            ValidationError: If the name is malformed.
            AlreadyExistsError: If the branch exists.
            NotFoundError: If the commit does not exist, or no commit was
                given and HEAD has no commit yet.
        """
        self._validate_name(name, "branch")
        with self._operation(cancellation) as backend:
            ref = branch_ref(name)
            if ref in backend.list_refs(BRANCH_PREFIX):
                msg = f"Branch already exists: {name}"
                raise AlreadyExistsError(msg, ref=ref)

            start = commit_id or "HEAD"
            commit = backend.resolve(start)
            if commit is None:
                msg = f"Commit not found: {start}"
                raise NotFoundError(msg, ref=start)

            backend.update_refs([RefUpdate(ref, commit, None)])
            self._logger.info("branch_created", branch=name, commit=commit)
            return Branch(name=name, head_commit_id=commit, is_remote=False)

    def rename_branch(
        self,
        old_name: str,
        new_name: str,
        *,
        cancellation: CancellationToken | None = None,
    ) -> Branch:
        """Rename a local branch in one reference transaction.

        Raises:
            NotFoundError: If ``old_name`` does not exist.
            AlreadyExistsError: If ``new_name`` exists; ``old_name`` is left
                untouched.
        """
        self._validate_name(old_name, "branch")
        self._validate_name(new_name, "branch")
        with self._operation(cancellation) as backend:
            old_ref = branch_ref(old_name)
            new_ref = branch_ref(new_name)
            branches = backend.list_refs(BRANCH_PREFIX)
            if old_ref not in branches:
                msg = f"Branch not found: {old_name}"
                raise NotFoundError(msg, ref=old_ref)
            if new_ref in branches:
                msg = f"Branch already exists: {new_name}"
                raise AlreadyExistsError(msg, ref=new_ref)

            commit = branches[old_ref]
            backend.update_refs([RefUpdate(new_ref, commit, None), RefUpdate(old_ref, None, commit)])
            if backend.head_ref() == old_ref:
                backend.set_head(new_ref)
            self._logger.info("branch_renamed", old=old_name, new=new_name, commit=commit)
            return Branch(name=new_name, head_commit_id=commit, is_remote=False)

    def delete_branch(
        self,
        name: str,
        *,
        cancellation: CancellationToken | None = None,
    ) -> None:
        """Delete a local branch.

        Raises:
            NotFoundError: If the branch does not exist.
            ConflictError: If the branch is checked out.
        """
        self._validate_name(name, "branch")
        with self._operation(cancellation) as backend:
            ref = branch_ref(name)
            commit = backend.list_refs(BRANCH_PREFIX).get(ref)
            if commit is None:
                msg = f"Branch not found: {name}"
                raise NotFoundError(msg, ref=ref)
            if backend.head_ref() == ref:
                msg = f"Cannot delete the checked-out branch {name}"
                raise ConflictError(msg, ref=ref)
            backend.update_refs([RefUpdate(ref, None, commit)])
            self._logger.info("branch_deleted", branch=name, commit=commit)

    def get_branches(
        self,
        from_remote: bool = False,  # noqa: FBT001, FBT002
        *,
        cancellation: CancellationToken | None = None,
    ) -> list[Branch]:
        """List local branches, or the remote's branches when ``from_remote``."""
        with self._operation(cancellation) as backend:
            if from_remote:
                refs = backend.list_remote_refs(cancellation).refs
            else:
                refs = backend.list_refs(BRANCH_PREFIX)
            branches = [
                Branch(name=name, head_commit_id=commit, is_remote=from_remote)
                for ref, commit in refs.items()
                if (name := strip_prefix(ref, BRANCH_PREFIX)) is not None
            ]
            return sorted(branches, key=lambda branch: branch.name)

    # =========================================================================
    # Tags
    # =========================================================================

    def create_tag(
        self,
        name: str,
        argument: TagArgument,
        *,
        cancellation: CancellationToken | None = None,
    ) -> Tag:
        """Create an annotated tag.

        Args:
            name: Tag name.
            argument: Target commit (empty for head) and tagger metadata.
            cancellation: Optional cancellation token.

        Returns:
            The new tag.

        Raises:
            ValidationError: If the name is malformed.
            AlreadyExistsError: If the tag exists.
            NotFoundError: If the commit does not exist.
        """
        self._validate_name(name, "tag")
        with self._operation(cancellation) as backend:
            ref = tag_ref(name)
            if ref in backend.list_refs(TAG_PREFIX):
                msg = f"Tag already exists: {name}"
                raise AlreadyExistsError(msg, ref=ref)

            start = argument.commit_id or "HEAD"
            commit = backend.resolve(start)
            if commit is None:
                msg = f"Commit not found: {start}"
                raise NotFoundError(msg, ref=start)

            tag_object = backend.write_tag(name, commit, argument)
            backend.update_refs([RefUpdate(ref, tag_object, None)])
            self._logger.info("tag_created", tag=name, commit=commit)
            return Tag(
                name=name,
                commit_id=commit,
                annotation=TagAnnotation(argument.author, argument.author_email, argument.description),
            )

    def delete_tag(
        self,
        name: str,
        *,
        cancellation: CancellationToken | None = None,
    ) -> None:
        """Delete a local tag.

        Raises:
            NotFoundError: If the tag does not exist.
        """
        self._validate_name(name, "tag")
        with self._operation(cancellation) as backend:
            ref = tag_ref(name)
            tag_object = backend.list_refs(TAG_PREFIX).get(ref)
            if tag_object is None:
                msg = f"Tag not found: {name}"
                raise NotFoundError(msg, ref=ref)
            backend.update_refs([RefUpdate(ref, None, tag_object)])
            self._logger.info("tag_deleted", tag=name)

    def get_tags(
        self,
        from_remote: bool = False,  # noqa: FBT001, FBT002
        *,
        cancellation: CancellationToken | None = None,
    ) -> list[Tag]:
        """List local tags, or the remote's tags when ``from_remote``.

        Remote tags carry an annotation only when the tag object has been
        fetched.
        """
        with self._operation(cancellation) as backend:
            tags: list[Tag] = []
            if from_remote:
                remote = backend.list_remote_refs(cancellation)
                for ref, object_id in remote.refs.items():
                    name = strip_prefix(ref, TAG_PREFIX)
                    if name is None:
                        continue
                    commit = remote.commit_of(ref) or object_id
                    known = backend.resolve(object_id) is not None
                    annotation = backend.read_annotation(object_id) if known else None
                    tags.append(Tag(name=name, commit_id=commit, annotation=annotation))
            else:
                for ref, object_id in backend.list_refs(TAG_PREFIX).items():
                    name = strip_prefix(ref, TAG_PREFIX)
                    commit = backend.resolve(ref)
                    if name is None or commit is None:
                        continue
                    tags.append(Tag(name=name, commit_id=commit, annotation=backend.read_annotation(object_id)))
            return sorted(tags, key=lambda tag: tag.name)

    # =========================================================================
    # Versions
    # =========================================================================

    def get_versions(
        self,
        from_remote: bool = False,  # noqa: FBT001, FBT002
        *,
        cancellation: CancellationToken | None = None,
    ) -> list[str]:
        """List every branch and tag as prefixed version strings.

        With ``from_remote`` the remote is listed once and both kinds are
        taken from that single listing.
        """
        if not from_remote:
            with self._lock:
                branches = [branch.name for branch in self.get_branches(cancellation=cancellation)]
                tags = [tag.name for tag in self.get_tags(cancellation=cancellation)]
        else:
            with self._operation(cancellation) as backend:
                refs = backend.list_remote_refs(cancellation).refs
            branches = sorted(name for ref in refs if (name := strip_prefix(ref, BRANCH_PREFIX)) is not None)
            tags = sorted(name for ref in refs if (name := strip_prefix(ref, TAG_PREFIX)) is not None)
        versions = [SourceVersion(SourceVersionType.BRANCH, name) for name in branches]
        versions.extend(SourceVersion(SourceVersionType.TAG, name) for name in tags)
        return [self._resolver.format(version) for version in versions]

    def resolve(
        self,
        version: SourceVersion | SourceControlVersion | str,
        *,
        cancellation: CancellationToken | None = None,
    ) -> SourceControlVersion:
        """Pin a symbolic version to the commit it currently points at.

        Branches resolve through the local branch, falling back to the
        remote-tracking branch.

        Raises:
            ValidationError: If the version string is malformed.
            NotFoundError: If the version does not exist locally.
        """
        if isinstance(version, SourceControlVersion):
            reference = version
        else:
            reference = self._resolver.resolve(version)
        with self._operation(cancellation) as backend:
            candidates = [reference.ref]
            if reference.is_branch:
                candidates.append(f"{self._tracking_prefix}{reference.short_name}")
            for candidate in candidates:
                if candidate in backend.list_refs(candidate):
                    commit = backend.resolve(candidate)
                    if commit is not None:
                        return SourceControlVersion(reference.ref, commit)
            msg = f"Version not found: {reference.ref}"
            raise NotFoundError(msg, ref=reference.ref)

    # =========================================================================
    # Working copy
    # =========================================================================

    def head(self, *, cancellation: CancellationToken | None = None) -> Branch | None:
        """Return the checked-out branch, None when HEAD is unborn or detached."""
        with self._operation(cancellation) as backend:
            ref = backend.head_ref()
            commit = backend.resolve(ref) if ref else None
            if ref is None or commit is None:
                return None
            return Branch(name=strip_prefix(ref, BRANCH_PREFIX) or ref, head_commit_id=commit)

    def checkout(
        self,
        name: str,
        *,
        cancellation: CancellationToken | None = None,
    ) -> Branch | None:
        """Switch the working copy to a local branch.

        A missing local branch is created from its remote-tracking branch.
        On an unborn HEAD, checking out a branch that exists nowhere points
        HEAD at it so the next commit creates it.

        Returns:
            The checked-out branch, None when it has no commit yet.

        Raises:
            NotFoundError: If the branch exists nowhere and HEAD has a commit.
            ConflictError: If local changes would be overwritten.
        """
        self._validate_name(name, "branch")
        with self._operation(cancellation) as backend:
            ref = branch_ref(name)
            current_ref = backend.head_ref()
            current = backend.resolve(current_ref) if current_ref else None
            target = backend.list_refs(BRANCH_PREFIX).get(ref)
            if target is None:
                target = backend.list_refs(self._tracking_prefix).get(f"{self._tracking_prefix}{name}")
                if target is not None:
                    backend.update_refs([RefUpdate(ref, target, None)])
            if target is None:
                if current is not None:
                    msg = f"Branch not found: {name}"
                    raise NotFoundError(msg, ref=ref)
                backend.set_head(ref)
                return None

            if current != target:
                backend.update_worktree(current, target)
            backend.set_head(ref)
            self._logger.info("branch_checked_out", branch=name, commit=target)
            return Branch(name=name, head_commit_id=target)

    def fast_forward(
        self,
        name: str,
        *,
        cancellation: CancellationToken | None = None,
    ) -> Branch:
        """Move a local branch to its remote-tracking branch.

        The branch is created when missing and left alone when it already
        contains the remote commit. The checked-out branch moves together
        with the worktree.

        Raises:
            NotFoundError: If there is no remote-tracking branch.
            ConflictError: If the branches diverged, or local changes would
                be overwritten.
        """
        self._validate_name(name, "branch")
        with self._operation(cancellation) as backend:
            ref = branch_ref(name)
            tracking_ref = f"{self._tracking_prefix}{name}"
            remote = backend.list_refs(self._tracking_prefix).get(tracking_ref)
            if remote is None:
                msg = f"Remote-tracking branch not found: {tracking_ref}"
                raise NotFoundError(msg, ref=tracking_ref)

            local = backend.list_refs(BRANCH_PREFIX).get(ref)
            if local == remote or (local is not None and backend.is_ancestor(remote, local)):
                return Branch(name=name, head_commit_id=local or remote)
            if local is not None and not backend.is_ancestor(local, remote):
                msg = f"Branch {name} diverged from {tracking_ref}"
                raise ConflictError(msg, ref=ref, details=f"local={local} remote={remote}")

            checked_out = backend.head_ref() == ref
            if checked_out:
                backend.update_worktree(local, remote)
            try:
                backend.update_refs([RefUpdate(ref, remote, local)])
            except Exception:
                if checked_out and local is not None:
                    backend.update_worktree(remote, local)
                raise
            self._logger.info("branch_fast_forwarded", branch=name, old=local, new=remote)
            return Branch(name=name, head_commit_id=remote)

    def read_files(
        self,
        version: SourceControlVersion | None = None,
        *,
        cancellation: CancellationToken | None = None,
    ) -> list[FileDescriptor]:
        """Read the files of a version (the head commit when None).

        Returns:
            Descriptors sorted by path; empty when HEAD has no commit.

        Raises:
            NotFoundError: If the version does not exist.
        """
        with self._operation(cancellation) as backend:
            if version is None:
                commit = backend.resolve("HEAD")
                if commit is None:
                    return []
            else:
                pinned = version.commit_id or self.resolve(version).commit_id or version.ref
                commit = backend.resolve(pinned)
                if commit is None:
                    msg = f"Version not found: {version.ref}"
                    raise NotFoundError(msg, ref=version.ref)
            entries = backend.read_tree(commit)
            return [
                FileDescriptor(relative_path=path, content=entry.data, mode=entry.mode)
                for path, entry in sorted(entries.items())
            ]

    # =========================================================================
    # Helpers
    # =========================================================================

    def _validate_name(self, name: str, kind: str) -> None:
        if not is_valid_ref_name(name):
            msg = f"Invalid {kind} name: {name!r}"
            raise ValidationError(msg, name=name)

    def _snapshot_refs(self) -> dict[str, str]:
        backend = self._backend
        return {
            **backend.list_refs(BRANCH_PREFIX),
            **backend.list_refs(TAG_PREFIX),
            **backend.list_refs(self._tracking_prefix),
        }

    def _restore_refs(self, snapshot: Mapping[str, str]) -> None:
        """Put every reference back to its value in ``snapshot`` in one transaction."""
        changed = self._diff_refs(snapshot, self._snapshot_refs())
        if not changed:
            return
        self._backend.update_refs([RefUpdate(ref, change.old, change.new) for ref, change in changed.items()])
        self._logger.info("fetch_rolled_back", refs=len(changed))

    @staticmethod
    def _diff_refs(before: Mapping[str, str], after: Mapping[str, str]) -> dict[str, RefChange]:
        changed = {
            ref: RefChange(before.get(ref), new) for ref, new in after.items() if before.get(ref) != new
        }
        changed.update({ref: RefChange(old, None) for ref, old in before.items() if ref not in after})
        return changed


def _describe(target: object) -> str:
    if target is None:
        return "all"
    if isinstance(target, SourceControlVersionType):
        return target.value
    if isinstance(target, SourceControlVersion):
        return target.ref
    return ",".join(_describe(item) for item in target)  # pyright: ignore[reportGeneralTypeIssues]
