"""Common git helper functions.

This module provides shared helpers used by the source control backends:
reference-name validation, reference namespace handling and text decoding.
"""

import re
from typing import Final

BRANCH_PREFIX: Final = "refs/heads/"
TAG_PREFIX: Final = "refs/tags/"
REMOTES_PREFIX: Final = "refs/remotes/"
ZERO_SHA: Final = "0" * 40

# Characters git refuses anywhere in a reference name
_FORBIDDEN_CHARS = re.compile(r"[\x00-\x20\x7f~^:?*\[\\]")
_SHA_PATTERN = re.compile(r"^[0-9a-f]{4,64}$")


def decode_bytes(value: bytes | str) -> str:
    """Decode bytes to str if needed.

    Args:
        value: A bytes or str value.

    Returns:
        The value as a string.
    """
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def is_valid_ref_name(name: str) -> bool:
    """Check a short branch or tag name against git's reference-name rules.

    Follows ``git check-ref-format --branch``: no empty or dot-leading
    components, no ``..``, ``@{``, ``//``, control characters, spaces or
    ``~^:?*[\\``, and no trailing ``/``, ``.`` or ``.lock``.

    Args:
        name: Branch or tag name without the ``refs/...`` prefix.

    Returns:
        True if git would accept the name.
    """
    if not name or name == "@" or name.startswith(("-", "/")):
        return False
    if name.endswith(("/", ".", ".lock")):
        return False
    if ".." in name or "@{" in name or "//" in name:
        return False
    if _FORBIDDEN_CHARS.search(name):
        return False
    return all(
        part and not part.startswith(".") and not part.endswith(".lock")
        for part in name.split("/")
    )


def is_object_id(value: str) -> bool:
    """Check whether a string looks like an (abbreviated) object id."""
    return bool(_SHA_PATTERN.match(value))


def branch_ref(name: str) -> str:
    """Return the full reference for a local branch name."""
    return f"{BRANCH_PREFIX}{name}"


def tag_ref(name: str) -> str:
    """Return the full reference for a tag name."""
    return f"{TAG_PREFIX}{name}"


def remote_branch_ref(remote: str, name: str) -> str:
    """Return the remote-tracking reference for a branch of ``remote``."""
    return f"{REMOTES_PREFIX}{remote}/{name}"


def strip_prefix(ref: str, prefix: str) -> str | None:
    """Strip a namespace prefix from a reference.

    Args:
        ref: Full reference name.
        prefix: Namespace such as ``refs/heads/``.

    Returns:
        The short name, or None if ``ref`` is not inside the namespace.
    """
    if ref.startswith(prefix):
        return ref[len(prefix) :]
    return None
