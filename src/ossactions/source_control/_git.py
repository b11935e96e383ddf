"""Git backend built on GitPython.

GitBackend implements SourceControlBackend for real git repositories. Object
writes go straight to the object database, reference changes go through
``git update-ref --stdin`` (one transaction per call) and network operations
use ``--atomic`` so a failed or cancelled fetch or push leaves no partial
reference update.
"""

from __future__ import annotations

import subprocess
import tempfile
import threading
import time
from io import BytesIO
from pathlib import Path
from typing import TYPE_CHECKING, Final

from git import Actor, Repo
from git.exc import GitCommandError, InvalidGitRepositoryError
from git.index import IndexFile
from git.index.typ import BaseIndexEntry, IndexEntry
from git.objects import Blob, Commit, TagObject
from gitdb import IStream

from ossactions.config._models import GitConfig
from ossactions.exceptions import (
    AlreadyExistsError,
    AuthError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    OperationCancelledError,
    SourceControlError,
    TransientNetworkError,
)
from ossactions.source_control._models import RemoteRefs, TagAnnotation, TreeEntry
from ossactions.utils._git import decode_bytes
from ossactions.utils._logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from structlog.typing import FilteringBoundLogger

    from ossactions.source_control._cancellation import CancellationToken
    from ossactions.source_control._models import CommitArgument, RefUpdate, TagArgument

EMPTY_TREE_SHA: Final = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"

# Seconds between cancellation checks while a network command runs
_POLL_INTERVAL: Final = 0.1

_AUTH_MARKERS: Final = (
    "authentication failed",
    "could not read username",
    "could not read password",
    "permission denied",
    "invalid username or password",
    "http basic: access denied",
    "the requested url returned error: 401",
    "the requested url returned error: 403",
)
_TRANSIENT_MARKERS: Final = (
    "could not resolve host",
    "timed out",
    "connection reset",
    "connection refused",
    "connection closed",
    "hung up unexpectedly",
    "early eof",
    "rpc failed",
    "temporary failure",
    "network is unreachable",
    "the requested url returned error: 429",
    "the requested url returned error: 502",
    "the requested url returned error: 503",
    "the requested url returned error: 504",
)
_MISSING_REPOSITORY_MARKERS: Final = (
    "does not appear to be a git repository",
    "repository not found",
    "not found: repository",
)
_REJECTED_MARKERS: Final = (
    "[rejected]",
    "non-fast-forward",
    "fetch first",
    "would clobber existing tag",
    "already exists",
    "failed to push some refs",
    "atomic push failed",
    "atomic transaction failed",
)


def classify_git_error(
    output: str,
    remote_uri: str,
    cause: Exception | None = None,
) -> SourceControlError:
    """Map the output of a failed network git command to an error kind.

    Args:
        output: Combined stderr and stdout of the command.
        remote_uri: Remote the command talked to.
        cause: The underlying GitPython error, kept on transient errors.

    Returns:
        An AuthError, TransientNetworkError, NotFoundError,
        ConfigurationError or ConflictError. Output matching none of the
        known markers gives a plain SourceControlError, which is not
        retried.
    """
    text = output.strip()
    lowered = text.lower()
    summary = text.splitlines()[-1] if text else "git command failed"

    if any(marker in lowered for marker in _AUTH_MARKERS):
        return AuthError(f"Remote rejected credentials: {summary}", remote_uri=remote_uri)
    if "couldn't find remote ref" in lowered:
        return NotFoundError(f"Remote reference not found: {summary}", ref=summary.rsplit(" ", 1)[-1])
    if any(marker in lowered for marker in _MISSING_REPOSITORY_MARKERS):
        return ConfigurationError(f"Remote repository unusable: {summary}", path=remote_uri)
    if any(marker in lowered for marker in _REJECTED_MARKERS):
        return ConflictError(f"Remote rejected the update: {summary}", details=text)
    if any(marker in lowered for marker in _TRANSIENT_MARKERS):
        return TransientNetworkError(f"Network failure: {summary}", remote_uri=remote_uri, cause=cause)
    return SourceControlError(f"git failed: {summary}")


class GitBackend:
    """SourceControlBackend for git repositories, driven through GitPython.

    The working copy is created with ``git init`` on first use and the
    remote is registered under ``GitConfig.remote_name``. Nothing touches
    the network until ``list_remote_refs``, ``fetch`` or ``push``.

    Example:
        >>> backend = GitBackend(Path("/srv/work/repo"), "https://example.com/repo.git")
        >>> backend.open()
        >>> backend.head_ref()
        'refs/heads/main'
    """

    def __init__(
        self,
        root: Path,
        remote_uri: str,
        *,
        config: GitConfig | None = None,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        self._root = root
        self._remote_uri = remote_uri
        self._config = config or GitConfig()
        self._logger = logger or get_logger()
        self._repo: Repo | None = None
        self._lock = threading.Lock()

    @property
    def root(self) -> Path:
        """Absolute path of the working copy."""
        return self._root

    @property
    def remote_uri(self) -> str:
        """Location of the remote."""
        return self._remote_uri

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def open(self) -> None:
        """Open or initialise the working copy.

        Raises:
            ConfigurationError: If the directory holds a repository whose
                remote points elsewhere, or cannot be initialised.
        """
        with self._lock:
            if self._repo is not None:
                return
            try:
                if (self._root / ".git").exists():
                    repo = Repo(self._root)
                    self._check_remote(repo)
                else:
                    repo = Repo.init(self._root, mkdir=True, initial_branch=self._config.default_branch)
                    _ = repo.create_remote(self._config.remote_name, self._remote_uri)
                    with repo.config_writer() as writer:
                        writer.set_value("user", "name", self._config.default_author)
                        writer.set_value("user", "email", self._config.default_author_email)
            except (GitCommandError, InvalidGitRepositoryError, OSError) as e:
                msg = f"Cannot use {self._root} as a git working copy: {e}"
                raise ConfigurationError(msg, path=self._root) from e

            repo.git.update_environment(
                GIT_TERMINAL_PROMPT="0",
                GIT_SSH_COMMAND="ssh -o BatchMode=yes",
            )
            self._repo = repo
            self._logger.debug("git_repository_opened", root=str(self._root), remote=self._remote_uri)

    def close(self) -> None:
        """Release GitPython's cached processes."""
        with self._lock:
            if self._repo is not None:
                self._repo.close()
                self._repo = None

    def _check_remote(self, repo: Repo) -> None:
        try:
            remote = repo.remote(self._config.remote_name)
        except ValueError:
            _ = repo.create_remote(self._config.remote_name, self._remote_uri)
            return
        if remote.url != self._remote_uri:
            msg = (
                f"Working copy {self._root} is bound to {remote.url}, "
                f"not {self._remote_uri}"
            )
            raise ConfigurationError(msg, path=self._root)

    @property
    def _git(self) -> Repo:
        if self._repo is None:
            self.open()
        assert self._repo is not None  # noqa: S101
        return self._repo

    # =========================================================================
    # References
    # =========================================================================

    def head_ref(self) -> str | None:
        """Return the branch HEAD points at, None when detached."""
        head = self._git.head
        if head.is_detached:
            return None
        return head.reference.path

    def set_head(self, ref: str) -> None:
        """Point HEAD at ``ref``."""
        _ = self._git.git.symbolic_ref("HEAD", ref)

    def resolve(self, rev: str) -> str | None:
        """Resolve ``rev`` to a commit id, None if it names no commit."""
        try:
            output: str = self._git.git.rev_parse("--verify", "--quiet", f"{rev}^{{commit}}")
        except GitCommandError:
            return None
        return output.strip() or None

    def list_refs(self, prefix: str) -> dict[str, str]:
        """List references under ``prefix``."""
        output: str = self._git.git.for_each_ref("--format=%(objectname) %(refname)", prefix)
        refs: dict[str, str] = {}
        for line in output.splitlines():
            object_id, _, ref = line.partition(" ")
            if ref.startswith(prefix):
                refs[ref] = object_id
        return refs

    def update_refs(self, updates: Sequence[RefUpdate]) -> None:
        """Apply ``updates`` in a single ``update-ref`` transaction.

        Raises:
            AlreadyExistsError: If a reference expected absent exists.
            ConflictError: If a reference is not at its expected value.
        """
        if not updates:
            return
        lines: list[str] = []
        for update in updates:
            if update.new is None:
                lines.append(f"delete {update.ref} {update.old or ''}".rstrip())
            elif update.old is None:
                lines.append(f"create {update.ref} {update.new}")
            else:
                lines.append(f"update {update.ref} {update.new} {update.old}")

        with tempfile.TemporaryFile() as stdin:
            _ = stdin.write(("\n".join(lines) + "\n").encode())
            _ = stdin.seek(0)
            try:
                _ = self._git.git.update_ref("--stdin", istream=stdin)
            except GitCommandError as e:
                raise self._ref_error(e, updates) from e

        self._logger.debug("refs_updated", root=str(self._root), refs=[u.ref for u in updates])

    def _ref_error(self, error: GitCommandError, updates: Sequence[RefUpdate]) -> SourceControlError:
        text = decode_bytes(error.stderr or "")
        failed = next((u.ref for u in updates if f"'{u.ref}'" in text), None)
        if "already exists" in text or "exists; cannot create" in text:
            return AlreadyExistsError(f"Reference already exists: {failed}", ref=failed)
        return ConflictError(f"Reference update rejected: {failed}", ref=failed, details=text.strip())

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """Check reachability with ``merge-base --is-ancestor``."""
        try:
            _ = self._git.git.merge_base("--is-ancestor", ancestor, descendant)
        except GitCommandError:
            return False
        return True

    # =========================================================================
    # Objects
    # =========================================================================

    def tree_id(self, commit: str | None) -> str:
        """Return the tree of ``commit``, the empty tree for None."""
        if commit is None:
            return EMPTY_TREE_SHA
        return self._git.commit(commit).tree.hexsha

    def read_tree(
        self,
        commit: str,
        paths: Sequence[str] | None = None,
    ) -> dict[str, TreeEntry]:
        """Read blobs of ``commit``; missing paths are skipped."""
        tree = self._git.commit(commit).tree
        if paths is None:
            return {
                item.path: TreeEntry(item.mode, item.data_stream.read())
                for item in tree.traverse()
                if isinstance(item, Blob)
            }

        result: dict[str, TreeEntry] = {}
        for path in paths:
            try:
                item = tree / path
            except KeyError:
                continue
            if isinstance(item, Blob):
                result[path] = TreeEntry(item.mode, item.data_stream.read())
        return result

    def write_tree(
        self,
        parent: str | None,
        changes: Mapping[str, TreeEntry | None],
    ) -> str:
        """Build a tree in an in-memory index seeded from ``parent``."""
        index = IndexFile.from_tree(self._git, self.tree_id(parent))
        entries = index.entries
        for path, entry in changes.items():
            # Drop entries that would clash with the path as file or directory
            for key in [k for k in entries if k[0] == path or k[0].startswith(f"{path}/")]:
                del entries[key]
            if entry is None:
                continue
            parts = path.split("/")
            for depth in range(1, len(parts)):
                _ = entries.pop(("/".join(parts[:depth]), 0), None)
            binsha = self._store(Blob.type, entry.data)
            entries[(path, 0)] = IndexEntry.from_base(BaseIndexEntry((entry.mode, binsha, 0, path)))
        return index.write_tree().hexsha

    def write_commit(
        self,
        tree: str,
        parent: str | None,
        argument: CommitArgument,
    ) -> str:
        """Store a commit authored by ``argument`` without moving any ref."""
        repo = self._git
        commit = Commit.create_from_tree(
            repo,
            repo.tree(tree),
            argument.description,
            parent_commits=[repo.commit(parent)] if parent else [],
            head=False,
            author=Actor(argument.author, argument.author_email),
            committer=Actor(self._config.default_author, self._config.default_author_email),
        )
        return commit.hexsha

    def write_tag(self, name: str, commit: str, argument: TagArgument) -> str:
        """Store an annotated tag object for ``commit``."""
        message = argument.description if argument.description.endswith("\n") else f"{argument.description}\n"
        raw = (
            f"object {commit}\n"
            "type commit\n"
            f"tag {name}\n"
            f"tagger {argument.author} <{argument.author_email}> {int(time.time())} +0000\n"
            "\n"
            f"{message}"
        ).encode()
        return self._store(TagObject.type, raw).hex()

    def read_annotation(self, object_id: str) -> TagAnnotation | None:
        """Return tagger metadata for a tag object, None otherwise."""
        obj = self._git.rev_parse(object_id)
        if not isinstance(obj, TagObject):
            return None
        tagger = obj.tagger
        return TagAnnotation(
            author=(tagger.name or "") if tagger else "",
            author_email=(tagger.email or "") if tagger else "",
            description=obj.message.rstrip("\n"),
        )

    def _store(self, type_name: str, data: bytes) -> bytes:
        return self._git.odb.store(IStream(type_name, len(data), BytesIO(data))).binsha

    # =========================================================================
    # Working copy
    # =========================================================================

    def reset_index(self, commit: str) -> None:
        """Load ``commit`` into the index and refresh its stat data."""
        git = self._git.git
        _ = git.read_tree(commit)
        # Exit status is non-zero when worktree files differ; that is not an error here
        _ = git.update_index("-q", "--refresh", with_exceptions=False)

    def update_worktree(self, old: str | None, new: str) -> None:
        """Switch the worktree from ``old`` to ``new`` with ``read-tree -u``.

        Raises:
            ConflictError: If local changes would be overwritten.
        """
        try:
            if old is None:
                _ = self._git.git.read_tree("--reset", "-u", new)
            else:
                _ = self._git.git.read_tree("-m", "-u", old, new)
        except GitCommandError as e:
            text = decode_bytes(e.stderr or "").strip()
            msg = f"Cannot update working copy {self._root}: {text}"
            raise ConflictError(msg, details=text) from e

    # =========================================================================
    # Network
    # =========================================================================

    def list_remote_refs(
        self,
        cancellation: CancellationToken | None = None,
    ) -> RemoteRefs:
        """Run ``ls-remote --symref`` against the remote."""
        output = self._run_network("ls-remote", ["--symref", self._config.remote_name], cancellation)
        refs: dict[str, str] = {}
        peeled: dict[str, str] = {}
        head: str | None = None
        for line in output.splitlines():
            if line.startswith("ref: "):
                target, _, name = line[len("ref: ") :].partition("\t")
                if name == "HEAD":
                    head = target
                continue
            object_id, _, ref = line.partition("\t")
            if ref.endswith("^{}"):
                peeled[ref[: -len("^{}")]] = object_id
            elif ref.startswith("refs/"):
                refs[ref] = object_id
        return RemoteRefs(refs=refs, peeled=peeled, head=head)

    def fetch(
        self,
        refspecs: Sequence[str],
        cancellation: CancellationToken | None = None,
    ) -> None:
        """Run an atomic fetch of ``refspecs``."""
        if not refspecs:
            return
        _ = self._run_network(
            "fetch",
            ["--atomic", "--no-tags", "--no-write-fetch-head", "--quiet", self._config.remote_name, *refspecs],
            cancellation,
        )

    def push(
        self,
        refspecs: Sequence[str],
        cancellation: CancellationToken | None = None,
    ) -> None:
        """Run an atomic push of ``refspecs``."""
        if not refspecs:
            return
        _ = self._run_network(
            "push",
            ["--atomic", "--porcelain", self._config.remote_name, *refspecs],
            cancellation,
        )

    def _run_network(
        self,
        command: str,
        args: list[str],
        cancellation: CancellationToken | None,
    ) -> str:
        """Run a git network command, killing it on cancellation or timeout.

        Raises:
            OperationCancelledError: If ``cancellation`` fires.
            TransientNetworkError: If the command times out.
            SourceControlError: The classified failure otherwise.
        """
        if cancellation is not None:
            cancellation.raise_if_cancelled()
        handle = getattr(self._git.git, command.replace("-", "_"))(*args, as_process=True)
        process: subprocess.Popen[bytes] = handle.proc
        timeout = self._config.command_timeout
        deadline = time.monotonic() + timeout if timeout else None

        while True:
            try:
                stdout, stderr = process.communicate(timeout=_POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                if cancellation is not None and cancellation.cancelled:
                    self._kill(process)
                    msg = f"git {command} cancelled"
                    raise OperationCancelledError(msg) from None
                if deadline is not None and time.monotonic() > deadline:
                    self._kill(process)
                    msg = f"git {command} timed out after {timeout}s"
                    raise TransientNetworkError(msg, remote_uri=self._remote_uri) from None

        if process.returncode != 0:
            error = GitCommandError(["git", command, *args], process.returncode, stderr, stdout)
            output = f"{decode_bytes(stderr or b'')}\n{decode_bytes(stdout or b'')}"
            classified = classify_git_error(output, self._remote_uri, error)
            self._logger.debug(
                "git_network_command_failed",
                command=command,
                status=process.returncode,
                error=type(classified).__name__,
            )
            raise classified from error
        return decode_bytes(stdout or b"")

    @staticmethod
    def _kill(process: subprocess.Popen[bytes]) -> None:
        process.kill()
        _ = process.communicate()
