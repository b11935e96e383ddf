"""End-to-end synchronization between real git repositories."""

from pathlib import Path

import pytest

from ossactions.content import synchronize
from ossactions.exceptions import ConflictError
from ossactions.source_control import (
    CommitArgument,
    Repository,
    RepositoryHandleRegistry,
)
from tests.conftest import SeededRemote, run_git


@pytest.fixture
def mirror(tmp_path: Path) -> Path:
    bare = tmp_path / "mirror.git"
    bare.mkdir()
    run_git(bare, "init", "-q", "--bare")
    return bare


class TestSynchronize:
    def test_mirrors_tag_into_empty_repository(
        self,
        registry: RepositoryHandleRegistry,
        seeded_remote: SeededRemote,
        mirror: Path,
        commit_argument: CommitArgument,
        tmp_path: Path,
    ) -> None:
        source = registry.source_content_actions(Repository(seeded_remote.url, tmp_path / "src"))
        target = registry.target_content_actions(Repository(str(mirror), tmp_path / "dst"))

        result = synchronize(source, target, "t:v1", commit_argument, tag_name="v1")

        assert result.source_commit_id == seeded_remote.main
        assert result.committed is True
        assert result.pushed is True
        assert run_git(mirror, "rev-parse", "refs/heads/main") == result.target_commit_id
        assert run_git(mirror, "rev-parse", "refs/tags/v1^{commit}") == result.target_commit_id
        assert run_git(mirror, "ls-tree", "-r", "--name-only", "main") == "README.md"

    def test_second_run_is_idempotent(
        self,
        registry: RepositoryHandleRegistry,
        seeded_remote: SeededRemote,
        mirror: Path,
        commit_argument: CommitArgument,
        tmp_path: Path,
    ) -> None:
        source = registry.source_content_actions(Repository(seeded_remote.url, tmp_path / "src"))
        target = registry.target_content_actions(Repository(str(mirror), tmp_path / "dst"))
        first = synchronize(source, target, "t:v1", commit_argument, tag_name="v1")

        second = synchronize(source, target, "t:v1", commit_argument, tag_name="v1")

        assert second.target_commit_id == first.target_commit_id
        assert (second.committed, second.pushed) == (False, False)
        assert run_git(mirror, "rev-list", "--count", "main") == "1"

    def test_follows_branch_updates(
        self,
        registry: RepositoryHandleRegistry,
        seeded_remote: SeededRemote,
        mirror: Path,
        commit_argument: CommitArgument,
        tmp_path: Path,
    ) -> None:
        source = registry.source_content_actions(Repository(seeded_remote.url, tmp_path / "src"))
        target = registry.target_content_actions(Repository(str(mirror), tmp_path / "dst", retry_enabled=True))
        _ = synchronize(source, target, "b:feature-x", commit_argument)
        _ = seeded_remote.commit("feature-x", "more.txt", "more\n", "more")

        result = synchronize(source, target, "b:feature-x", commit_argument)

        assert result.committed is True
        assert run_git(mirror, "rev-list", "--count", "feature-x") == "2"
        files = run_git(mirror, "ls-tree", "-r", "--name-only", "feature-x").splitlines()
        assert files == ["README.md", "feature.txt", "more.txt"]

    def test_fresh_working_copy_resumes_from_remote(
        self,
        registry: RepositoryHandleRegistry,
        seeded_remote: SeededRemote,
        mirror: Path,
        commit_argument: CommitArgument,
        tmp_path: Path,
    ) -> None:
        source = registry.source_content_actions(Repository(seeded_remote.url, tmp_path / "src"))
        first_target = registry.target_content_actions(Repository(str(mirror), tmp_path / "dst-1"))
        first = synchronize(source, first_target, "b:main", commit_argument)

        second_target = registry.target_content_actions(Repository(str(mirror), tmp_path / "dst-2"))
        second = synchronize(source, second_target, "b:main", commit_argument)

        assert second.target_commit_id == first.target_commit_id
        assert second.committed is False

    def test_tag_on_other_commit_conflicts(
        self,
        registry: RepositoryHandleRegistry,
        seeded_remote: SeededRemote,
        mirror: Path,
        commit_argument: CommitArgument,
        tmp_path: Path,
    ) -> None:
        source = registry.source_content_actions(Repository(seeded_remote.url, tmp_path / "src"))
        target = registry.target_content_actions(Repository(str(mirror), tmp_path / "dst"))
        _ = synchronize(source, target, "b:main", commit_argument, tag_name="v1")

        with pytest.raises(ConflictError):
            _ = synchronize(source, target, "b:feature-x", commit_argument, branch="main", tag_name="v1")
