"""Content repository actions.

Source actions take pinned snapshots of a version in an external repository.
Target actions publish a snapshot into an internal repository as a commit
(and optional tag) on a branch, then push. Publishing is resumable: running
it again after a failed push converges without creating duplicate commits.

Example:
    >>> source = registry.source_content_actions(Repository(upstream_uri, src_dir))
    >>> target = registry.target_content_actions(Repository(mirror_uri, dst_dir))
    >>> result = synchronize(source, target, "t:v1.2.0", argument, tag_name="v1.2.0")
    >>> result.pushed
    True
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ossactions.content._models import ContentSnapshot, SyncResult
from ossactions.exceptions import AlreadyExistsError, ConflictError, NotFoundError
from ossactions.source_control._models import (
    FileDescriptor,
    SourceControlVersion,
    SourceVersion,
    SourceVersionType,
    TagArgument,
)
from ossactions.source_control._versions import VersionResolver
from ossactions.utils._logging import get_logger

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from ossactions.content._models import FileSelector, FileTransform
    from ossactions.source_control._cancellation import CancellationToken
    from ossactions.source_control._models import CommitArgument, Repository
    from ossactions.source_control._registry import Handle


def _with_bytes(descriptor: FileDescriptor) -> FileDescriptor:
    if isinstance(descriptor.content, bytes):
        return descriptor
    return FileDescriptor(
        relative_path=descriptor.relative_path,
        content=descriptor.read_content(),
        mode=descriptor.mode,
        deleted=descriptor.deleted,
    )


class _ContentActions:
    def __init__(
        self,
        actions: Handle,
        *,
        resolver: VersionResolver | None = None,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        self._actions = actions
        self._resolver = resolver or VersionResolver()
        self._logger = (logger or get_logger()).bind(
            remote=actions.repository.remote_uri,
            directory=str(actions.repository.local_directory),
        )

    @property
    def actions(self) -> Handle:
        """The source control handle the content actions drive."""
        return self._actions

    @property
    def repository(self) -> Repository:
        """The bound repository."""
        return self._actions.repository

    def _parse(self, version: SourceVersion | str) -> SourceVersion:
        return self._resolver.parse(version) if isinstance(version, str) else version


class SourceContentRepositoryActions(_ContentActions):
    """Read versions and snapshots from a source repository."""

    def get_versions(self, *, cancellation: CancellationToken | None = None) -> list[str]:
        """List the versions the source remote currently offers."""
        return self._actions.get_versions(True, cancellation=cancellation)  # noqa: FBT003

    def snapshot(
        self,
        version: SourceVersion | str,
        *,
        cancellation: CancellationToken | None = None,
    ) -> ContentSnapshot:
        """Fetch a version and capture its files.

        Args:
            version: Version to snapshot, typed or as ``b:``/``t:`` string.
            cancellation: Optional cancellation token.

        Returns:
            Snapshot pinned to the commit the version points at.

        Raises:
            ValidationError: If the version string is malformed.
            NotFoundError: If the version does not exist on the remote.
        """
        source_version = self._parse(version)
        reference = self._resolver.resolve(source_version)
        _ = self._actions.fetch(reference, cancellation=cancellation)
        pinned = self._actions.resolve(reference, cancellation=cancellation)
        files = self._actions.read_files(pinned, cancellation=cancellation)
        assert pinned.commit_id is not None  # noqa: S101
        self._logger.info(
            "sync_snapshot_taken",
            version=str(source_version),
            commit=pinned.commit_id,
            files=len(files),
        )
        return ContentSnapshot(source_version, pinned.commit_id, tuple(files))


class TargetContentRepositoryActions(_ContentActions):
    """Publish snapshots into a target repository.

    Args:
        actions: Handle bound to the target repository.
        resolver: Version resolver, a new one by default.
        default_branch: Branch used for snapshots of tags when no branch is
            given.
        logger: Optional structlog logger.
    """

    def __init__(
        self,
        actions: Handle,
        *,
        resolver: VersionResolver | None = None,
        default_branch: str = "main",
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        super().__init__(actions, resolver=resolver, logger=logger)
        self._default_branch = default_branch

    @property
    def default_branch(self) -> str:
        """Branch that receives snapshots of tags when no branch is given."""
        return self._default_branch

    def publish(
        self,
        snapshot: ContentSnapshot,
        commit_argument: CommitArgument,
        *,
        branch: str | None = None,
        tag_name: str | None = None,
        mirror: bool = True,
        cancellation: CancellationToken | None = None,
    ) -> SyncResult:
        """Commit a snapshot onto a target branch and push it.

        Args:
            snapshot: Files to publish.
            commit_argument: Metadata for the commit (and tag).
            branch: Target branch. Defaults to the snapshot's branch name,
                or the default branch for tag snapshots.
            tag_name: Tag to create on the published commit.
            mirror: Delete target files missing from the snapshot.
            cancellation: Optional cancellation token.

        Returns:
            SyncResult describing what changed.

        Raises:
            ConflictError: If the target branch diverged from its remote, or
                the tag exists on another commit.
            TransientNetworkError: If the target remote is unreachable.
        """
        actions = self._actions
        if branch is None:
            is_branch = snapshot.version.type is SourceVersionType.BRANCH
            branch = snapshot.version.name if is_branch else self._default_branch
        branch_version = self._resolver.resolve(SourceVersion(SourceVersionType.BRANCH, branch))
        tag_version = (
            self._resolver.resolve(SourceVersion(SourceVersionType.TAG, tag_name)) if tag_name else None
        )

        self._fetch_if_present(branch_version, cancellation)
        if tag_version is not None:
            self._fetch_if_present(tag_version, cancellation)
        self._prepare_branch(branch, cancellation)

        changes = self._changes(snapshot, mirror=mirror, cancellation=cancellation)
        committed = False
        if changes:
            try:
                result = actions.commit_files(commit_argument, changes, tag_name, cancellation=cancellation)
            except AlreadyExistsError as e:
                msg = f"Tag {tag_name} already exists on another commit"
                raise ConflictError(msg, ref=e.ref) from e
            committed = not result.no_changes
            if committed:
                self._logger.info("sync_committed", branch=branch, commit=result.sha, files=len(changes))

        head = actions.head(cancellation=cancellation)
        target_commit = head.head_commit_id if head else None
        if target_commit is None:
            self._logger.info("sync_target_empty", branch=branch)
            return SyncResult(snapshot.commit_id, None)

        if tag_version is not None and tag_name and not committed:
            self._ensure_tag(tag_name, target_commit, commit_argument, cancellation)

        pushed = self._push(branch_version, tag_version, target_commit, cancellation)
        return SyncResult(
            source_commit_id=snapshot.commit_id,
            target_commit_id=target_commit,
            tag=tag_name or None,
            committed=committed,
            pushed=pushed,
        )

    def _fetch_if_present(
        self,
        version: SourceControlVersion,
        cancellation: CancellationToken | None,
    ) -> None:
        try:
            _ = self._actions.fetch(version, cancellation=cancellation)
        except NotFoundError:
            self._logger.debug("sync_remote_ref_missing", ref=version.ref)

    def _prepare_branch(self, branch: str, cancellation: CancellationToken | None) -> None:
        actions = self._actions
        try:
            _ = actions.checkout(branch, cancellation=cancellation)
        except NotFoundError:
            _ = actions.create_branch(branch, cancellation=cancellation)
            _ = actions.checkout(branch, cancellation=cancellation)
        try:
            _ = actions.fast_forward(branch, cancellation=cancellation)
        except NotFoundError:
            self._logger.debug("sync_branch_untracked", branch=branch)

    def _changes(
        self,
        snapshot: ContentSnapshot,
        *,
        mirror: bool,
        cancellation: CancellationToken | None,
    ) -> list[FileDescriptor]:
        current = {
            descriptor.relative_path: descriptor
            for descriptor in self._actions.read_files(cancellation=cancellation)
        }
        changes: list[FileDescriptor] = []
        for descriptor in map(_with_bytes, snapshot.files):
            existing = current.get(descriptor.relative_path)
            if descriptor.deleted:
                if existing is not None:
                    changes.append(descriptor)
            elif existing is None or (existing.mode, existing.content) != (descriptor.mode, descriptor.content):
                changes.append(descriptor)
        if mirror:
            changes.extend(
                FileDescriptor(relative_path=path, deleted=True)
                for path in sorted(current.keys() - snapshot.paths)
            )
        return changes

    def _ensure_tag(
        self,
        tag_name: str,
        commit: str,
        commit_argument: CommitArgument,
        cancellation: CancellationToken | None,
    ) -> None:
        argument = TagArgument(
            commit_id=commit,
            author=commit_argument.author,
            author_email=commit_argument.author_email,
            description=commit_argument.description,
        )
        try:
            _ = self._actions.create_tag(tag_name, argument, cancellation=cancellation)
        except AlreadyExistsError as e:
            existing = next((tag for tag in self._actions.get_tags(cancellation=cancellation) if tag.name == tag_name), None)
            if existing is None or existing.commit_id != commit:
                msg = f"Tag {tag_name} already exists on another commit"
                raise ConflictError(
                    msg,
                    ref=e.ref,
                    details=f"expected={commit} actual={existing.commit_id if existing else None}",
                ) from e
            self._logger.debug("sync_tag_exists", tag=tag_name, commit=commit)
        else:
            self._logger.info("sync_tagged", tag=tag_name, commit=commit)

    def _push(
        self,
        branch_version: SourceControlVersion,
        tag_version: SourceControlVersion | None,
        commit: str,
        cancellation: CancellationToken | None,
    ) -> bool:
        versions = [SourceControlVersion(branch_version.ref, commit)]
        if tag_version is not None:
            versions.append(tag_version)
        result = self._actions.push(versions, cancellation=cancellation)
        self._logger.info("sync_pushed", refs=len(result.updated), branch=branch_version.short_name)
        return not result.up_to_date


def synchronize(
    source: SourceContentRepositoryActions,
    target: TargetContentRepositoryActions,
    version: SourceVersion | str,
    commit_argument: CommitArgument,
    *,
    select: FileSelector | None = None,
    transform: FileTransform | None = None,
    tag_name: str | None = None,
    branch: str | None = None,
    mirror: bool = True,
    cancellation: CancellationToken | None = None,
) -> SyncResult:
    """Mirror a source version into the target repository.

    Args:
        source: Actions reading the source repository.
        target: Actions publishing into the target repository.
        version: Source version to mirror.
        commit_argument: Metadata for the target commit (and tag).
        select: Keep only files whose relative path matches.
        transform: Rewrite each selected file; None drops it.
        tag_name: Tag to create on the target commit.
        branch: Target branch (see ``TargetContentRepositoryActions.publish``).
        mirror: Delete target files missing from the snapshot.
        cancellation: Optional cancellation token.

    Returns:
        SyncResult of the publish step.
    """
    snapshot = source.snapshot(version, cancellation=cancellation)
    files: list[FileDescriptor] = []
    for descriptor in snapshot.files:
        if select is not None and not select(descriptor.relative_path):
            continue
        transformed = transform(descriptor) if transform is not None else descriptor
        if transformed is not None:
            files.append(_with_bytes(transformed))
    filtered = ContentSnapshot(snapshot.version, snapshot.commit_id, tuple(files))
    return target.publish(
        filtered,
        commit_argument,
        branch=branch,
        tag_name=tag_name,
        mirror=mirror,
        cancellation=cancellation,
    )
