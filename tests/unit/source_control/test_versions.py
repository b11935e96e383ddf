"""Tests for VersionResolver."""

import pytest

from ossactions.exceptions import ValidationError
from ossactions.source_control import (
    SourceControlVersion,
    SourceVersion,
    SourceVersionType,
    VersionResolver,
)


@pytest.fixture
def resolver() -> VersionResolver:
    return VersionResolver()


# =============================================================================
# parse Tests
# =============================================================================


class TestParse:
    def test_parses_branch_prefix(self, resolver: VersionResolver) -> None:
        assert resolver.parse("b:main") == SourceVersion(SourceVersionType.BRANCH, "main")

    def test_parses_tag_prefix(self, resolver: VersionResolver) -> None:
        assert resolver.parse("t:v1.0") == SourceVersion(SourceVersionType.TAG, "v1.0")

    def test_keeps_slashes_in_name(self, resolver: VersionResolver) -> None:
        assert resolver.parse("b:release/2024").name == "release/2024"

    def test_splits_on_first_colon_only(self, resolver: VersionResolver) -> None:
        with pytest.raises(ValidationError):
            _ = resolver.parse("b:a:b")

    @pytest.mark.parametrize("text", ["main", "", "b", "refs/heads/main"])
    def test_rejects_missing_prefix(self, resolver: VersionResolver, text: str) -> None:
        with pytest.raises(ValidationError, match="missing a type prefix"):
            _ = resolver.parse(text)

    @pytest.mark.parametrize("text", ["x:main", "B:main", "branch:main", ":main"])
    def test_rejects_unknown_prefix(self, resolver: VersionResolver, text: str) -> None:
        with pytest.raises(ValidationError, match="Unknown version prefix") as exc_info:
            _ = resolver.parse(text)
        assert exc_info.value.name == text

    @pytest.mark.parametrize("name", ["", "a..b", "has space", "end/", "x.lock", "-dash", ".hidden"])
    def test_rejects_invalid_names(self, resolver: VersionResolver, name: str) -> None:
        with pytest.raises(ValidationError, match="Invalid version name"):
            _ = resolver.parse(f"b:{name}")


# =============================================================================
# format Tests
# =============================================================================


class TestFormat:
    def test_formats_branch(self, resolver: VersionResolver) -> None:
        assert resolver.format(SourceVersion(SourceVersionType.BRANCH, "main")) == "b:main"

    def test_formats_tag(self, resolver: VersionResolver) -> None:
        assert resolver.format(SourceVersion(SourceVersionType.TAG, "v2")) == "t:v2"

    def test_rejects_invalid_name(self, resolver: VersionResolver) -> None:
        with pytest.raises(ValidationError):
            _ = resolver.format(SourceVersion(SourceVersionType.TAG, "bad name"))

    def test_is_inverse_of_parse(self, resolver: VersionResolver) -> None:
        for text in ("b:main", "t:v1.0", "b:feature/x"):
            assert resolver.format(resolver.parse(text)) == text


# =============================================================================
# resolve Tests
# =============================================================================


class TestResolve:
    def test_branch_maps_to_heads_namespace(self, resolver: VersionResolver) -> None:
        version = resolver.resolve(SourceVersion(SourceVersionType.BRANCH, "main"))
        assert version == SourceControlVersion("refs/heads/main")
        assert version.is_branch is True

    def test_tag_maps_to_tags_namespace(self, resolver: VersionResolver) -> None:
        version = resolver.resolve("t:v1")
        assert version.ref == "refs/tags/v1"
        assert version.is_tag is True

    def test_pins_commit(self, resolver: VersionResolver) -> None:
        sha = "a" * 40
        assert resolver.resolve("b:main", sha).commit_id == sha

    def test_rejects_malformed_commit(self, resolver: VersionResolver) -> None:
        with pytest.raises(ValidationError):
            _ = resolver.resolve("b:main", "not-a-sha")

    def test_rejects_malformed_string(self, resolver: VersionResolver) -> None:
        with pytest.raises(ValidationError):
            _ = resolver.resolve("main")


class TestFromRef:
    def test_round_trips_with_resolve(self, resolver: VersionResolver) -> None:
        version = SourceVersion(SourceVersionType.TAG, "v3")
        assert resolver.from_ref(resolver.resolve(version).ref) == version

    def test_rejects_other_namespaces(self, resolver: VersionResolver) -> None:
        with pytest.raises(ValidationError):
            _ = resolver.from_ref("refs/remotes/origin/main")
