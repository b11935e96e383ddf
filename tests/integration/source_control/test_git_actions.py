"""Integration tests for SourceControlActions on real git repositories."""

from pathlib import Path

import pytest
from pytest_mock import MockerFixture

from ossactions.exceptions import (
    AlreadyExistsError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    OperationCancelledError,
)
from ossactions.source_control import (
    CancellationToken,
    CommitArgument,
    FileDescriptor,
    GitBackend,
    Handle,
    RepositoryHandleRegistry,
    SourceControlBackend,
    SourceControlVersion,
    TagAnnotation,
    TagArgument,
)
from tests.conftest import SeededRemote, run_git


@pytest.fixture
def work(tmp_path: Path) -> Path:
    return tmp_path / "work"


@pytest.fixture
def handle(registry: RepositoryHandleRegistry, seeded_remote: SeededRemote, work: Path) -> Handle:
    return registry.acquire(seeded_remote.url, work)


@pytest.fixture
def cloned(handle: Handle) -> Handle:
    _ = handle.fetch()
    return handle


# =============================================================================
# Binding Tests
# =============================================================================


class TestBinding:
    def test_uses_git_backend(self, handle: Handle) -> None:
        assert isinstance(handle.backend, GitBackend)
        assert isinstance(handle.backend, SourceControlBackend)

    def test_working_copy_bound_elsewhere_is_rejected(
        self,
        registry: RepositoryHandleRegistry,
        cloned: Handle,
        tmp_path: Path,
        work: Path,
    ) -> None:
        registry.release(cloned)
        other = tmp_path / "other.git"
        other.mkdir()
        run_git(other, "init", "-q", "--bare")

        handle = registry.acquire(str(other), work)

        with pytest.raises(ConfigurationError, match="bound to"):
            _ = handle.fetch()

    def test_reopening_existing_working_copy(
        self,
        registry: RepositoryHandleRegistry,
        cloned: Handle,
        seeded_remote: SeededRemote,
        work: Path,
    ) -> None:
        registry.release(cloned)
        handle = registry.acquire(seeded_remote.url, work)
        assert handle.get_versions() == ["b:feature-x", "b:main", "t:v1"]

    def test_missing_remote_is_a_configuration_error(
        self,
        registry: RepositoryHandleRegistry,
        tmp_path: Path,
    ) -> None:
        handle = registry.acquire(str(tmp_path / "missing.git"), tmp_path / "work")
        with pytest.raises(ConfigurationError):
            _ = handle.fetch()


# =============================================================================
# Fetch Tests
# =============================================================================


class TestFetch:
    def test_clones_branches_tags_and_worktree(
        self,
        handle: Handle,
        seeded_remote: SeededRemote,
        work: Path,
    ) -> None:
        result = handle.fetch()

        assert result.up_to_date is False
        assert handle.get_versions() == ["b:feature-x", "b:main", "t:v1"]
        assert handle.resolve("b:main").commit_id == seeded_remote.main
        assert handle.resolve("b:feature-x").commit_id == seeded_remote.feature
        assert (work / "README.md").read_text() == "hello\n"
        assert run_git(work, "status", "--porcelain") == ""

    def test_second_fetch_is_up_to_date(self, cloned: Handle) -> None:
        assert cloned.fetch().up_to_date is True

    def test_remote_versions_without_fetch(self, handle: Handle) -> None:
        assert handle.get_versions(True) == ["b:feature-x", "b:main", "t:v1"]

    def test_fast_forwards_checked_out_branch(
        self,
        cloned: Handle,
        seeded_remote: SeededRemote,
        work: Path,
    ) -> None:
        new = seeded_remote.commit("main", "later.txt", "later\n", "later")

        result = cloned.fetch()

        assert result.updated["refs/heads/main"].new == new
        assert (work / "later.txt").read_text() == "later\n"
        assert run_git(work, "status", "--porcelain") == ""

    def test_missing_branch_raises_not_found(self, handle: Handle) -> None:
        with pytest.raises(NotFoundError):
            _ = handle.fetch(SourceControlVersion("refs/heads/missing"))

    def test_cancelled_before_start(self, handle: Handle) -> None:
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelledError):
            _ = handle.fetch(cancellation=token)


# =============================================================================
# Commit Tests
# =============================================================================


class TestCommit:
    def test_commit_files_with_tag_and_push(
        self,
        cloned: Handle,
        seeded_remote: SeededRemote,
        commit_argument: CommitArgument,
        work: Path,
    ) -> None:
        result = cloned.commit_files(
            commit_argument,
            [FileDescriptor("docs/new.md", b"# New\n"), FileDescriptor("README.md", deleted=True)],
            tag_name="v2",
        )
        assert result.sha is not None

        _ = cloned.push()

        bare = seeded_remote.path
        assert run_git(bare, "rev-parse", "refs/heads/main") == result.sha
        assert run_git(bare, "cat-file", "-t", "refs/tags/v2") == "tag"
        assert run_git(bare, "rev-parse", "refs/tags/v2^{commit}") == result.sha
        assert run_git(bare, "ls-tree", "-r", "--name-only", "main") == "docs/new.md"
        assert run_git(bare, "log", "-1", "--format=%an <%ae>", "main") == "Test User <test@example.com>"
        assert not (work / "README.md").exists()
        assert run_git(work, "status", "--porcelain") == ""

    def test_commit_paths_on_disk(self, cloned: Handle, commit_argument: CommitArgument, work: Path) -> None:
        _ = (work / "README.md").write_text("edited\n")
        script = work / "run.sh"
        _ = script.write_text("#!/bin/sh\n")
        script.chmod(0o755)

        result = cloned.commit(commit_argument, [work / "README.md", "run.sh"])

        assert result.sha is not None
        assert run_git(work, "status", "--porcelain") == ""
        assert run_git(work, "ls-tree", "HEAD", "run.sh").startswith("100755 blob")

    def test_identical_content_is_no_change(self, cloned: Handle, commit_argument: CommitArgument) -> None:
        result = cloned.commit_files(commit_argument, [FileDescriptor("README.md", b"hello\n")])
        assert result.no_changes is True

    def test_existing_tag_raises(
        self,
        cloned: Handle,
        seeded_remote: SeededRemote,
        commit_argument: CommitArgument,
        work: Path,
    ) -> None:
        with pytest.raises(AlreadyExistsError):
            _ = cloned.commit_files(commit_argument, [FileDescriptor("a.txt", b"a")], tag_name="v1")
        assert run_git(work, "rev-parse", "refs/heads/main") == seeded_remote.main

    def test_worktree_failure_rolls_back_branch_and_tag(
        self,
        cloned: Handle,
        seeded_remote: SeededRemote,
        commit_argument: CommitArgument,
        work: Path,
        mocker: MockerFixture,
    ) -> None:
        _ = mocker.patch(
            "ossactions.source_control._actions.write_worktree",
            side_effect=[OSError("read-only file system"), None],
        )

        with pytest.raises(OSError, match="read-only"):
            _ = cloned.commit_files(commit_argument, [FileDescriptor("a.txt", b"a")], tag_name="v9")

        assert run_git(work, "rev-parse", "refs/heads/main") == seeded_remote.main
        assert run_git(work, "tag", "--list", "v9") == ""

    def test_stale_commit_id_conflicts(
        self,
        cloned: Handle,
        seeded_remote: SeededRemote,
        commit_argument: CommitArgument,
    ) -> None:
        _ = cloned.commit_files(commit_argument, [FileDescriptor("a.txt", b"a")])
        stale = CommitArgument("Test User", "test@example.com", "stale", commit_id=seeded_remote.main)
        with pytest.raises(ConflictError):
            _ = cloned.commit_files(stale, [FileDescriptor("b.txt", b"b")])


# =============================================================================
# Push Tests
# =============================================================================


class TestPush:
    def test_remote_moved_raises_conflict(
        self,
        cloned: Handle,
        seeded_remote: SeededRemote,
        commit_argument: CommitArgument,
    ) -> None:
        _ = cloned.commit_files(commit_argument, [FileDescriptor("a.txt", b"a")])
        remote = seeded_remote.commit("main", "other.txt", "other\n", "concurrent")

        with pytest.raises(ConflictError):
            _ = cloned.push()

        assert run_git(seeded_remote.path, "rev-parse", "refs/heads/main") == remote

    def test_push_new_branch(self, cloned: Handle, seeded_remote: SeededRemote) -> None:
        _ = cloned.create_branch("release")
        result = cloned.push(SourceControlVersion("refs/heads/release"))
        assert "refs/heads/release" in result.updated
        assert run_git(seeded_remote.path, "rev-parse", "refs/heads/release") == seeded_remote.main

    def test_nothing_to_push(self, cloned: Handle) -> None:
        assert cloned.push().up_to_date is True


# =============================================================================
# Branch and tag Tests
# =============================================================================


class TestBranchesAndTags:
    def test_create_branch_defaults_to_head(self, cloned: Handle, seeded_remote: SeededRemote) -> None:
        assert cloned.create_branch("topic").head_commit_id == seeded_remote.main

    def test_branch_at_tagged_commit_is_listed(self, cloned: Handle) -> None:
        assert set(cloned.get_versions(False)) == {"b:main", "b:feature-x", "t:v1"}
        (v1,) = cloned.get_tags()

        _ = cloned.create_branch("feature-y", v1.commit_id)

        branches = {branch.name: branch for branch in cloned.get_branches(False)}
        assert branches["feature-y"].head_commit_id == v1.commit_id
        assert branches["feature-y"].is_remote is False

    def test_rename_collision_leaves_both(self, cloned: Handle, seeded_remote: SeededRemote, work: Path) -> None:
        with pytest.raises(AlreadyExistsError):
            _ = cloned.rename_branch("feature-x", "main")
        assert run_git(work, "rev-parse", "refs/heads/feature-x") == seeded_remote.feature
        assert run_git(work, "rev-parse", "refs/heads/main") == seeded_remote.main

    def test_rename_and_delete(self, cloned: Handle, work: Path) -> None:
        _ = cloned.rename_branch("feature-x", "feature-y")
        cloned.delete_branch("feature-y")
        assert run_git(work, "branch", "--list", "feature-*") == ""

    def test_annotated_tag_metadata(self, cloned: Handle, seeded_remote: SeededRemote) -> None:
        tags = cloned.get_tags()
        assert [(tag.name, tag.commit_id) for tag in tags] == [("v1", seeded_remote.main)]
        assert tags[0].annotation == TagAnnotation("Seed Author", "seed@example.com", "release v1")

    def test_create_and_delete_tag(self, cloned: Handle, seeded_remote: SeededRemote, work: Path) -> None:
        tag = cloned.create_tag("v2", TagArgument(seeded_remote.feature, "Rel", "rel@example.com", "second"))
        assert tag.commit_id == seeded_remote.feature
        assert run_git(work, "cat-file", "-t", "v2") == "tag"
        cloned.delete_tag("v2")
        assert run_git(work, "tag", "--list", "v2") == ""

    def test_checkout_switches_worktree(self, cloned: Handle, work: Path) -> None:
        _ = cloned.checkout("feature-x")
        assert (work / "feature.txt").read_text() == "feature\n"
        assert run_git(work, "symbolic-ref", "HEAD") == "refs/heads/feature-x"

    def test_read_files_of_version(self, cloned: Handle) -> None:
        files = cloned.read_files(SourceControlVersion("refs/tags/v1"))
        assert [(f.relative_path, f.content) for f in files] == [("README.md", b"hello\n")]
