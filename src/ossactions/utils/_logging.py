"""structlog loggers for ossactions.

Loggers are assembled with ``structlog.wrap_logger``, so building one never
changes the global structlog configuration and several differently
configured loggers can coexist in one process. Components accept a logger
argument and fall back to ``get_logger()``.
"""

import logging
import os
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Literal, cast

import structlog

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger, Processor

DEBUG_ENV = "OSSACTIONS_DEBUG"
LEVEL_ENV = "OSSACTIONS_LOG_LEVEL"

LogFormatType = Literal["json", "text"]

_shared: "FilteringBoundLogger | None" = None
_shared_lock = threading.Lock()


def resolve_level(level: str | int | None = None) -> int:
    """Turn a level name into a ``logging`` level number.

    Numbers pass through unchanged. For names, a non-empty OSSACTIONS_DEBUG
    forces DEBUG. Without a name, OSSACTIONS_LOG_LEVEL is consulted, falling
    back to WARNING. Unrecognised names map to INFO.
    """
    if isinstance(level, int):
        return level
    if os.environ.get(DEBUG_ENV):
        return logging.DEBUG
    if level is None:
        level = os.environ.get(LEVEL_ENV) or "warning"
    return logging.getLevelNamesMapping().get(level.upper(), logging.INFO)


def _rotating_sink(path: Path, level: int, max_bytes: int, backup_count: int) -> logging.Logger:
    sink = logging.getLogger(f"ossactions.sink.{path}")
    sink.propagate = False
    sink.setLevel(level)
    for old in list(sink.handlers):
        sink.removeHandler(old)
        old.close()
    handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count)
    handler.setFormatter(logging.Formatter("%(message)s"))
    sink.addHandler(handler)
    return sink


def create_logger(
    log_level: str | int | None = None,
    *,
    log_format: LogFormatType = "json",
    log_file: str | Path | None = None,
    max_bytes: int | None = None,
    backup_count: int | None = None,
) -> "FilteringBoundLogger":  # noqa: UP037
    """Build a standalone logger.

    Args:
        log_level: Level name or number; see ``resolve_level``.
        log_format: ``json`` for one JSON object per line, ``text`` for
            ``timestamp [level] event key=value`` lines.
        log_file: File to append to; stderr when omitted or empty.
        max_bytes: Rotate the file once it reaches this size. Rotation
            needs ``backup_count`` as well.
        backup_count: Number of rotated files kept.

    Returns:
        A FilteringBoundLogger that drops events below the level.

    Example:
        >>> logger = create_logger("info", log_format="text")
        >>> logger.info("fetch_completed", remote="origin", updated=2)
    """
    level = resolve_level(log_level)

    sink: object
    if not log_file:
        sink = structlog.PrintLogger(sys.stderr)
    else:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        if max_bytes is None or backup_count is None:
            sink = structlog.WriteLogger(path.open("a", encoding="utf-8"))
        else:
            sink = _rotating_sink(path, level, max_bytes, backup_count)

    processors: list[Processor] = [
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if log_format == "text":
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    else:
        processors.extend([structlog.processors.format_exc_info, structlog.processors.JSONRenderer()])

    return cast(
        "FilteringBoundLogger",
        structlog.wrap_logger(
            sink,
            processors=processors,
            wrapper_class=structlog.make_filtering_bound_logger(level),
            context_class=dict,
        ),
    )


def get_logger() -> "FilteringBoundLogger":  # noqa: UP037
    """Return the process-wide default logger.

    JSON to stderr at the level taken from the environment, built on first
    use.
    """
    global _shared  # noqa: PLW0603
    if _shared is None:
        with _shared_lock:
            if _shared is None:
                _shared = create_logger()
    return _shared
