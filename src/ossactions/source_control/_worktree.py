"""Working copy file helpers.

Backends keep history in their own object stores, but every backend shares
the same on-disk working copy layout. This module converts caller paths to
repository-relative form and reads and writes worktree files.
"""

import os
import stat
import tempfile
from collections.abc import Iterable, Mapping
from pathlib import Path, PurePosixPath

from ossactions.exceptions import ValidationError
from ossactions.source_control._models import (
    MODE_EXECUTABLE,
    MODE_FILE,
    MODE_SYMLINK,
    VALID_FILE_MODES,
    TreeEntry,
)

# Directory names never addressable through the worktree
RESERVED_NAMES = frozenset({".git"})


def normalize_relative_path(relative_path: str) -> str:
    """Validate and normalize a repository-relative path.

    Args:
        relative_path: Path relative to the working copy root.

    Returns:
        The path in POSIX form without redundant separators.

    Raises:
        ValidationError: If the path is empty, absolute, escapes the root
            or addresses repository metadata.
    """
    raw = relative_path.replace("\\", "/")
    if not raw or raw.startswith("/"):
        msg = f"Path must be relative to the working copy: {relative_path!r}"
        raise ValidationError(msg, path=relative_path)

    parts = [part for part in PurePosixPath(raw).parts if part != "."]
    if not parts or ".." in parts:
        msg = f"Path is outside the working copy: {relative_path!r}"
        raise ValidationError(msg, path=relative_path)
    if parts[0] in RESERVED_NAMES:
        msg = f"Path addresses repository metadata: {relative_path!r}"
        raise ValidationError(msg, path=relative_path)
    return "/".join(parts)


def to_relative_path(root: Path, path: Path | str) -> str:
    """Convert an absolute or root-relative path to repo-relative form.

    Args:
        root: Absolute working copy root.
        path: Absolute path, or path relative to ``root``.

    Returns:
        Repository-relative path as a POSIX string.

    Raises:
        ValidationError: If the path is outside the working copy.
    """
    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = root / candidate
    # Resolve the parent only so that symlinks are committed as links
    resolved = candidate.parent.resolve() / candidate.name
    try:
        relative = resolved.relative_to(root)
    except ValueError:
        msg = f"Path is outside the working copy: {path}"
        raise ValidationError(msg, path=str(path)) from None
    return normalize_relative_path(relative.as_posix())


def ensure_within_worktree(root: Path, relative_path: str) -> Path:
    """Return the on-disk path for ``relative_path`` under ``root``.

    The path itself may be a symlink, but none of its parent directories
    may lead outside the working copy.

    Raises:
        ValidationError: If a parent directory resolves outside ``root``.
    """
    target = root / relative_path
    try:
        _ = target.parent.resolve().relative_to(root.resolve())
    except ValueError:
        msg = f"Path leaves the working copy through a symlink: {relative_path!r}"
        raise ValidationError(msg, path=relative_path) from None
    return target


def validate_mode(mode: int, relative_path: str) -> None:
    """Raise ValidationError unless ``mode`` is a supported file mode."""
    if mode not in VALID_FILE_MODES:
        msg = f"Unsupported file mode {mode:o} for {relative_path!r}"
        raise ValidationError(msg, path=relative_path)


def read_worktree(root: Path, relative_paths: Iterable[str]) -> dict[str, TreeEntry | None]:
    """Read worktree files.

    Args:
        root: Working copy root.
        relative_paths: Repository-relative paths.

    Returns:
        Path to entry, None for paths that do not exist.

    Raises:
        ValidationError: If a path names something other than a regular
            file or a symlink, or lies behind a symlink leading outside
            ``root``.
    """
    result: dict[str, TreeEntry | None] = {}
    for relative_path in relative_paths:
        target = ensure_within_worktree(root, relative_path)
        try:
            info = target.lstat()
        except FileNotFoundError:
            result[relative_path] = None
            continue

        if stat.S_ISLNK(info.st_mode):
            result[relative_path] = TreeEntry(MODE_SYMLINK, os.fsencode(os.readlink(target)))
        elif stat.S_ISREG(info.st_mode):
            mode = MODE_EXECUTABLE if info.st_mode & stat.S_IXUSR else MODE_FILE
            result[relative_path] = TreeEntry(mode, target.read_bytes())
        else:
            msg = f"Not a regular file: {relative_path!r}"
            raise ValidationError(msg, path=relative_path)
    return result


def write_worktree(root: Path, entries: Mapping[str, TreeEntry | None]) -> None:
    """Write entries into the worktree; None removes the path.

    Regular files are replaced atomically. Directories left empty by a
    removal are pruned up to ``root``.

    Raises:
        OSError: If a file cannot be written or removed.
        ValidationError: If a path lies behind a symlink leading outside
            ``root``.
    """
    for relative_path, entry in entries.items():
        target = ensure_within_worktree(root, relative_path)
        if entry is None:
            _remove(target)
            _prune_empty_parents(root, target.parent)
            continue

        target.parent.mkdir(parents=True, exist_ok=True)
        if target.is_dir() and not target.is_symlink():
            msg = f"A directory is in the way of {relative_path!r}"
            raise IsADirectoryError(msg)
        if entry.mode == MODE_SYMLINK:
            _remove(target)
            os.symlink(os.fsdecode(entry.data), target)
        else:
            _write_file(target, entry.data, executable=entry.mode == MODE_EXECUTABLE)


def diff_trees(
    old: Mapping[str, TreeEntry],
    new: Mapping[str, TreeEntry],
) -> dict[str, TreeEntry | None]:
    """Compute the changes that turn ``old`` into ``new`` (None removes)."""
    changes: dict[str, TreeEntry | None] = {
        path: entry for path, entry in new.items() if old.get(path) != entry
    }
    changes.update({path: None for path in old if path not in new})
    return changes


def _write_file(target: Path, data: bytes, *, executable: bool) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            _ = f.write(data)
        os.chmod(tmp_name, 0o755 if executable else 0o644)  # noqa: PTH101
        if target.is_symlink():
            target.unlink()
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _remove(target: Path) -> None:
    if target.is_symlink() or target.is_file():
        target.unlink()


def _prune_empty_parents(root: Path, directory: Path) -> None:
    while directory != root and root in directory.parents:
        try:
            directory.rmdir()
        except OSError:
            return
        directory = directory.parent
