"""Shared test fixtures for ossactions tests."""

import logging
import os
import subprocess
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

import pytest
import structlog
from structlog.typing import FilteringBoundLogger

from ossactions.source_control import (
    CommitArgument,
    FakeBackend,
    FakeRemote,
    Repository,
    RepositoryHandleRegistry,
    SourceControlActions,
)

GIT_ENV = {
    "GIT_AUTHOR_NAME": "Seed Author",
    "GIT_AUTHOR_EMAIL": "seed@example.com",
    "GIT_COMMITTER_NAME": "Seed Author",
    "GIT_COMMITTER_EMAIL": "seed@example.com",
    "GIT_CONFIG_NOSYSTEM": "1",
}


def run_git(cwd: Path, *args: str) -> str:
    """Run a git command in ``cwd`` and return its stdout."""
    result = subprocess.run(
        ["git", "-c", "init.defaultBranch=main", *args],
        cwd=str(cwd),
        capture_output=True,
        check=True,
        text=True,
        env={**os.environ, **GIT_ENV},
    )
    return result.stdout.strip()


@dataclass(frozen=True, slots=True)
class SeededRemote:
    """A bare remote with a known history.

    History:
        main:      A (README.md)
        feature-x: A -> B (feature.txt)
        v1:        annotated tag on A
    """

    url: str
    path: Path
    seed: Path
    main: str
    feature: str

    def commit(self, branch: str, path: str, content: str, message: str) -> str:
        """Commit on ``branch`` through the seed clone and push it."""
        run_git(self.seed, "checkout", "-q", branch)
        target = self.seed / path
        target.parent.mkdir(parents=True, exist_ok=True)
        _ = target.write_text(content)
        run_git(self.seed, "add", path)
        run_git(self.seed, "commit", "-q", "-m", message)
        run_git(self.seed, "push", "-q", "origin", branch)
        return run_git(self.seed, "rev-parse", "HEAD")


@pytest.fixture
def seeded_remote(tmp_path: Path) -> SeededRemote:
    """Create a bare git remote with main, feature-x and tag v1."""
    bare = tmp_path / "remote.git"
    bare.mkdir()
    run_git(bare, "init", "-q", "--bare")

    seed = tmp_path / "seed"
    seed.mkdir()
    run_git(seed, "init", "-q")
    _ = (seed / "README.md").write_text("hello\n")
    run_git(seed, "add", "README.md")
    run_git(seed, "commit", "-q", "-m", "initial")
    main = run_git(seed, "rev-parse", "HEAD")
    run_git(seed, "tag", "-a", "v1", "-m", "release v1")

    run_git(seed, "checkout", "-q", "-b", "feature-x")
    _ = (seed / "feature.txt").write_text("feature\n")
    run_git(seed, "add", "feature.txt")
    run_git(seed, "commit", "-q", "-m", "feature")
    feature = run_git(seed, "rev-parse", "HEAD")

    run_git(seed, "remote", "add", "origin", str(bare))
    run_git(seed, "push", "-q", "origin", "main", "feature-x", "v1")
    run_git(bare, "symbolic-ref", "HEAD", "refs/heads/main")
    return SeededRemote(url=str(bare), path=bare, seed=seed, main=main, feature=feature)


@pytest.fixture
def quiet_logger() -> FilteringBoundLogger:
    """A logger that drops every event."""
    return structlog.wrap_logger(
        structlog.ReturnLogger(),
        wrapper_class=structlog.make_filtering_bound_logger(logging.CRITICAL),
        processors=[structlog.processors.JSONRenderer()],
    )


@pytest.fixture
def commit_argument() -> CommitArgument:
    return CommitArgument(author="Test User", author_email="test@example.com", description="test commit")


@pytest.fixture
def fake_remote() -> FakeRemote:
    return FakeRemote("memory://upstream")


@pytest.fixture
def fake_backend(tmp_path: Path, fake_remote: FakeRemote) -> FakeBackend:
    return FakeBackend(tmp_path / "work", fake_remote)


@pytest.fixture
def fake_actions(fake_backend: FakeBackend, quiet_logger: FilteringBoundLogger) -> SourceControlActions:
    repository = Repository(fake_backend.remote_uri, fake_backend.root)
    return SourceControlActions(repository, fake_backend, logger=quiet_logger)


@pytest.fixture
def registry(quiet_logger: FilteringBoundLogger) -> Iterator[RepositoryHandleRegistry]:
    with RepositoryHandleRegistry(logger=quiet_logger) as handle_registry:
        yield handle_registry
