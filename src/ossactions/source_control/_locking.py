"""Lock artifacts enforcing a single writer per working copy.

A lock artifact is a small file next to the working copy holding the PID of
the owning process. It is created exclusively, so two registries (in one
process or in several) can never bind the same directory at once. A lock
left behind by a process that no longer exists is taken over.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
import time
from pathlib import Path
from typing import TYPE_CHECKING

from ossactions.exceptions import ConfigurationError
from ossactions.utils._logging import get_logger

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

LOCK_SUFFIX = ".ossactions.lock"

# Seconds before a lock without a readable PID counts as stale
UNREADABLE_LOCK_GRACE = 30.0


def lock_path_for(directory: Path) -> Path:
    """Return the lock artifact location for a working copy directory."""
    return directory.parent / f".{directory.name}{LOCK_SUFFIX}"


def _process_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but belongs to another user
        return True
    return True


class DirectoryLock:
    """Exclusive PID lock for one working copy directory.

    Example:
        >>> lock = DirectoryLock(Path("/srv/work/repo"))
        >>> lock.acquire()
        >>> lock.path.name
        '.repo.ossactions.lock'
        >>> lock.release()
    """

    def __init__(self, directory: Path, *, logger: FilteringBoundLogger | None = None) -> None:
        self._directory = directory
        self._path = lock_path_for(directory)
        self._held = False
        self._logger = logger or get_logger()

    @property
    def path(self) -> Path:
        """Location of the lock artifact."""
        return self._path

    @property
    def held(self) -> bool:
        """True while this instance owns the lock."""
        return self._held

    def acquire(self) -> None:
        """Create the lock artifact.

        The PID is written to a temporary file first and then hard-linked
        into place, so the artifact never exists without its owner.

        Raises:
            ConfigurationError: If a live process holds the lock or the
                artifact cannot be created.
        """
        if self._held:
            return
        for _ in range(2):
            try:
                self._link_owner_file()
            except FileExistsError:
                self._handle_existing()
                continue
            except OSError as e:
                msg = f"Cannot create lock for {self._directory}: {e}"
                raise ConfigurationError(msg, path=self._directory) from e
            self._held = True
            return

        msg = f"Lock for {self._directory} was re-created concurrently"
        raise ConfigurationError(msg, path=self._directory)

    def _link_owner_file(self) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=self._path.name, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                _ = f.write(str(os.getpid()))
            os.link(tmp_name, self._path)
        finally:
            Path(tmp_name).unlink(missing_ok=True)

    def release(self) -> None:
        """Remove the lock artifact if this instance owns it."""
        if not self._held:
            return
        self._held = False
        with contextlib.suppress(FileNotFoundError):
            self._path.unlink()

    def _handle_existing(self) -> None:
        try:
            content = self._path.read_text().strip()
            age = time.time() - self._path.stat().st_mtime
        except FileNotFoundError:
            return
        except OSError as e:
            msg = f"Cannot read lock for {self._directory}: {e}"
            raise ConfigurationError(msg, path=self._directory) from e

        try:
            owner = int(content)
        except ValueError:
            # Written by something other than acquire(); only old ones are stale
            if age < UNREADABLE_LOCK_GRACE:
                msg = f"Working copy {self._directory} is locked by an unidentified owner"
                raise ConfigurationError(msg, path=self._directory) from None
            owner = 0

        if _process_alive(owner):
            msg = f"Working copy {self._directory} is locked by process {owner}"
            raise ConfigurationError(msg, path=self._directory)

        self._logger.warning(
            "stale_lock_removed",
            directory=str(self._directory),
            lock=str(self._path),
            owner_pid=owner,
        )
        with contextlib.suppress(FileNotFoundError):
            self._path.unlink()
