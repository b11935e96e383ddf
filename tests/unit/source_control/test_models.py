"""Tests for source control value types."""

import io
from pathlib import Path

import pytest

from ossactions.source_control import (
    MODE_FILE,
    FetchResult,
    FileDescriptor,
    PushResult,
    RefChange,
    RemoteRefs,
    Repository,
    SourceControlVersion,
    SourceVersion,
    SourceVersionType,
)


class TestRepository:
    def test_identity_ignores_retry_flag(self, tmp_path: Path) -> None:
        plain = Repository("memory://a", tmp_path)
        retrying = Repository("memory://a", tmp_path, retry_enabled=True)
        assert plain == retrying
        assert hash(plain) == hash(retrying)

    def test_different_remote_is_different_repository(self, tmp_path: Path) -> None:
        assert Repository("memory://a", tmp_path) != Repository("memory://b", tmp_path)

    def test_resolves_relative_directory(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        repository = Repository("memory://a", Path("work"))
        assert repository.local_directory == tmp_path.resolve() / "work"
        assert repository.local_directory.is_absolute()

    def test_key_is_remote_and_directory(self, tmp_path: Path) -> None:
        repository = Repository("memory://a", tmp_path)
        assert repository.key == ("memory://a", tmp_path.resolve())

    def test_is_immutable(self, tmp_path: Path) -> None:
        repository = Repository("memory://a", tmp_path)
        with pytest.raises(AttributeError):
            repository.remote_uri = "memory://b"  # pyright: ignore[reportAttributeAccessIssue]


class TestFileDescriptor:
    def test_defaults_to_regular_file(self) -> None:
        descriptor = FileDescriptor("a.txt", b"x")
        assert descriptor.mode == MODE_FILE
        assert descriptor.deleted is False

    def test_reads_bytes_content(self) -> None:
        assert FileDescriptor("a.txt", b"data").read_content() == b"data"

    def test_reads_stream_content(self) -> None:
        assert FileDescriptor("a.txt", io.BytesIO(b"streamed")).read_content() == b"streamed"


class TestSourceVersion:
    def test_str_is_prefixed_form(self) -> None:
        assert str(SourceVersion(SourceVersionType.BRANCH, "main")) == "b:main"
        assert str(SourceVersion(SourceVersionType.TAG, "v1")) == "t:v1"


class TestSourceControlVersion:
    def test_branch_properties(self) -> None:
        version = SourceControlVersion("refs/heads/feature/x")
        assert version.is_branch is True
        assert version.is_tag is False
        assert version.short_name == "feature/x"
        assert version.source_version == SourceVersion(SourceVersionType.BRANCH, "feature/x")

    def test_tag_properties(self) -> None:
        version = SourceControlVersion("refs/tags/v1", "a" * 40)
        assert version.is_tag is True
        assert version.source_version == SourceVersion(SourceVersionType.TAG, "v1")

    def test_other_ref_has_no_source_version(self) -> None:
        with pytest.raises(ValueError, match="neither a branch nor a tag"):
            _ = SourceControlVersion("refs/remotes/origin/main").source_version


class TestResults:
    def test_empty_fetch_is_up_to_date(self) -> None:
        assert FetchResult().up_to_date is True

    def test_fetch_with_updates_is_not_up_to_date(self) -> None:
        result = FetchResult(updated={"refs/heads/main": RefChange(None, "a" * 40)})
        assert result.up_to_date is False

    def test_push_result_up_to_date(self) -> None:
        assert PushResult().up_to_date is True


class TestRemoteRefs:
    def test_commit_of_peels_annotated_tags(self) -> None:
        refs = RemoteRefs(
            refs={"refs/tags/v1": "t" * 40, "refs/heads/main": "c" * 40},
            peeled={"refs/tags/v1": "c" * 40},
        )
        assert refs.commit_of("refs/tags/v1") == "c" * 40
        assert refs.commit_of("refs/heads/main") == "c" * 40
        assert refs.commit_of("refs/heads/missing") is None
