"""Property-based tests for version identifiers and retry timing.

This module uses Hypothesis to test invariants that must hold for any input:
- Round trip: parsing a formatted version gives back the same version
- Resolution: a resolved reference maps back to the version it came from
- Rejection: names git refuses are never accepted
- Backoff: delays stay within the configured bounds
- Commit idempotence: committing unchanged content is a no-op
"""

import tempfile
from pathlib import Path

import pytest
from hypothesis import given, settings, strategies as st
from tenacity import RetryCallState, Retrying

from ossactions.config import RetryConfig
from ossactions.exceptions import ValidationError
from ossactions.source_control import (
    CommitArgument,
    FakeBackend,
    FakeRemote,
    FileDescriptor,
    Repository,
    SourceControlActions,
    SourceVersion,
    SourceVersionType,
    VersionResolver,
    retry_wait,
)

# =============================================================================
# Strategies
# =============================================================================

_NAME_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789-_"

# A single ref component: never empty, never leading with "-" or "."
name_component = st.text(alphabet=_NAME_ALPHABET, min_size=1, max_size=20).filter(
    lambda x: not x.startswith("-")
)

# Branch or tag names with 1-3 slash-separated components
valid_name = st.lists(name_component, min_size=1, max_size=3).map(lambda parts: "/".join(parts))

version_type = st.sampled_from(list(SourceVersionType))

# Sequences git refuses anywhere in a ref name
forbidden_fragment = st.sampled_from(
    [" ", "~", "^", ":", "?", "*", "[", "\\", "..", "@{", "//", "\x7f", "\t"]
)

_CONTENT_ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789 \n.,-_"
file_content = st.text(alphabet=_CONTENT_ALPHABET, max_size=200).map(str.encode)

RESOLVER = VersionResolver()
ARGUMENT = CommitArgument("Prop Author", "prop@example.com", "property commit")


# =============================================================================
# Version Tests
# =============================================================================


class TestVersionRoundTripProperties:
    @given(kind=version_type, name=valid_name)
    @settings(max_examples=100, deadline=None)
    def test_parse_inverts_format(self, kind: SourceVersionType, name: str) -> None:
        version = SourceVersion(kind, name)
        assert RESOLVER.parse(RESOLVER.format(version)) == version

    @given(kind=version_type, name=valid_name)
    @settings(max_examples=100, deadline=None)
    def test_resolved_ref_maps_back(self, kind: SourceVersionType, name: str) -> None:
        version = SourceVersion(kind, name)
        resolved = RESOLVER.resolve(version)
        assert resolved.ref.endswith(f"/{name}")
        assert RESOLVER.from_ref(resolved.ref) == version

    @given(kind=version_type, name=valid_name, fragment=forbidden_fragment, suffix=name_component)
    @settings(max_examples=100, deadline=None)
    def test_forbidden_fragments_always_rejected(
        self, kind: SourceVersionType, name: str, fragment: str, suffix: str
    ) -> None:
        text = f"{kind.value}:{name}{fragment}{suffix}"
        with pytest.raises(ValidationError):
            _ = RESOLVER.parse(text)

    @given(name=valid_name)
    @settings(max_examples=50, deadline=None)
    def test_lock_suffix_always_rejected(self, name: str) -> None:
        with pytest.raises(ValidationError):
            _ = RESOLVER.format(SourceVersion(SourceVersionType.BRANCH, f"{name}.lock"))

    @given(text=valid_name)
    @settings(max_examples=50, deadline=None)
    def test_missing_prefix_always_rejected(self, text: str) -> None:
        with pytest.raises(ValidationError, match="prefix"):
            _ = RESOLVER.parse(text)


# =============================================================================
# Backoff Tests
# =============================================================================


def _delay(policy: RetryConfig, attempt: int) -> float:
    state = RetryCallState(Retrying(), None, (), {})
    state.attempt_number = attempt
    return retry_wait(policy)(state)


class TestBackoffProperties:
    @given(
        base=st.floats(min_value=0.0, max_value=10.0),
        max_delay=st.floats(min_value=0.0, max_value=60.0),
        multiplier=st.floats(min_value=1.0, max_value=4.0),
        jitter=st.floats(min_value=0.0, max_value=1.0),
        attempt=st.integers(min_value=1, max_value=20),
    )
    @settings(max_examples=200, deadline=None)
    def test_delay_stays_within_jittered_cap(
        self, base: float, max_delay: float, multiplier: float, jitter: float, attempt: int
    ) -> None:
        policy = RetryConfig(base_delay=base, max_delay=max_delay, multiplier=multiplier, jitter=jitter)

        delay = _delay(policy, attempt)

        assert 0.0 <= delay <= max_delay
        assert delay <= base * multiplier ** (attempt - 1) + base * jitter + 1e-9

    @given(attempt=st.integers(min_value=1, max_value=10))
    @settings(max_examples=50, deadline=None)
    def test_delays_without_jitter_never_decrease(self, attempt: int) -> None:
        policy = RetryConfig(jitter=0.0)
        assert _delay(policy, attempt) <= _delay(policy, attempt + 1)


# =============================================================================
# Commit Tests
# =============================================================================


def _fresh_actions(root: Path) -> SourceControlActions:
    backend = FakeBackend(root / "work", FakeRemote("memory://property"))
    return SourceControlActions(Repository(backend.remote_uri, backend.root), backend)


class TestCommitIdempotenceProperties:
    @given(
        files=st.dictionaries(valid_name, file_content, min_size=1, max_size=5).filter(
            # a path may not be both a file and a directory
            lambda d: not any(other.startswith(f"{path}/") for path in d for other in d)
        )
    )
    @settings(max_examples=30, deadline=None)
    def test_recommitting_same_content_is_noop(self, files: dict[str, bytes]) -> None:
        descriptors = [FileDescriptor(path, content) for path, content in files.items()]
        with tempfile.TemporaryDirectory() as tmp:
            actions = _fresh_actions(Path(tmp))
            first = actions.commit_files(ARGUMENT, descriptors)
            second = actions.commit_files(ARGUMENT, descriptors)

            assert first.sha is not None
            assert second.no_changes is True
            head = actions.head()
            assert head is not None
            assert head.head_commit_id == first.sha
            assert {f.relative_path: f.content for f in actions.read_files()} == files
