"""Shared utilities for ossactions."""

from ossactions.utils._git import (
    BRANCH_PREFIX,
    REMOTES_PREFIX,
    TAG_PREFIX,
    ZERO_SHA,
    branch_ref,
    decode_bytes,
    is_object_id,
    is_valid_ref_name,
    remote_branch_ref,
    strip_prefix,
    tag_ref,
)
from ossactions.utils._logging import (
    DEBUG_ENV,
    LEVEL_ENV,
    LogFormatType,
    create_logger,
    get_logger,
    resolve_level,
)

__all__ = [
    "BRANCH_PREFIX",
    "DEBUG_ENV",
    "LEVEL_ENV",
    "REMOTES_PREFIX",
    "TAG_PREFIX",
    "ZERO_SHA",
    "LogFormatType",
    "branch_ref",
    "create_logger",
    "decode_bytes",
    "get_logger",
    "is_object_id",
    "is_valid_ref_name",
    "remote_branch_ref",
    "resolve_level",
    "strip_prefix",
    "tag_ref",
]
