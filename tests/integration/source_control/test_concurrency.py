"""Concurrent use of handles on real git repositories."""

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from ossactions.source_control import (
    CommitArgument,
    FileDescriptor,
    RepositoryHandleRegistry,
    SourceControlVersion,
)
from tests.conftest import SeededRemote, run_git


class TestConcurrentCommits:
    def test_commits_on_one_working_copy_are_serialized(
        self,
        registry: RepositoryHandleRegistry,
        seeded_remote: SeededRemote,
        commit_argument: CommitArgument,
        tmp_path: Path,
    ) -> None:
        work = tmp_path / "work"
        _ = registry.acquire(seeded_remote.url, work).fetch()

        def commit(n: int) -> str | None:
            handle = registry.acquire(seeded_remote.url, work)
            return handle.commit_files(commit_argument, [FileDescriptor(f"file-{n}.txt", str(n).encode())]).sha

        with ThreadPoolExecutor(max_workers=8) as executor:
            shas = list(executor.map(commit, range(8)))

        assert len(set(shas)) == 8
        assert run_git(work, "rev-list", "--count", "main") == "9"
        assert run_git(work, "status", "--porcelain") == ""
        assert len(run_git(work, "ls-tree", "--name-only", "main").splitlines()) == 9

    def test_distinct_working_copies_proceed_independently(
        self,
        registry: RepositoryHandleRegistry,
        seeded_remote: SeededRemote,
        commit_argument: CommitArgument,
        tmp_path: Path,
    ) -> None:
        directories = [tmp_path / f"work-{n}" for n in range(4)]

        def clone_and_commit(directory: Path) -> str | None:
            handle = registry.acquire(seeded_remote.url, directory)
            _ = handle.fetch()
            _ = handle.create_branch(directory.name)
            _ = handle.checkout(directory.name)
            result = handle.commit_files(commit_argument, [FileDescriptor("owner.txt", directory.name.encode())])
            _ = handle.push(SourceControlVersion(f"refs/heads/{directory.name}"))
            return result.sha

        with ThreadPoolExecutor(max_workers=4) as executor:
            shas = list(executor.map(clone_and_commit, directories))

        assert len(registry) == 4
        for directory, sha in zip(directories, shas, strict=True):
            assert run_git(seeded_remote.path, "rev-parse", f"refs/heads/{directory.name}") == sha
        assert run_git(seeded_remote.path, "rev-parse", "refs/heads/main") == seeded_remote.main
