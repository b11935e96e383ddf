# pyright: reportAny=false, reportUnknownVariableType=false, reportUnknownArgumentType=false
"""Configuration sources: TOML files and OSSACTIONS_* environment variables.

Each source yields a plain nested dictionary ("layer"). ``merge_layers``
folds layers together so that later layers win, and ActionsConfig validates
the result.
"""

import contextlib
import copy
import json
import os
import re
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from ossactions.exceptions import ConfigLoadError

ENV_PREFIX = "OSSACTIONS_"

# "(at line 3, column 7)" suffix of TOMLDecodeError messages
_TOML_POSITION = re.compile(r"\(at line (\d+), column (\d+)\)")

# Read by the logging helpers, not part of the config tree
_LOGGING_ENV_KEYS = frozenset({"DEBUG", "LOG_LEVEL"})

_JSON_BRACKETS = (("[", "]"), ("{", "}"))

Layer = dict[str, Any]  # pyright: ignore[reportExplicitAny]


def load_toml(path: Path) -> Layer:
    """Load one TOML file as a configuration layer.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigLoadError: If the file is not valid TOML. The error carries
            the file path and, when tomllib reports it, the line and column.
    """
    try:
        with path.open("rb") as stream:
            return tomllib.load(stream)
    except tomllib.TOMLDecodeError as e:
        match = _TOML_POSITION.search(str(e))
        line, column = (int(match.group(1)), int(match.group(2))) if match else (None, None)
        msg = f"Invalid TOML in {path}: {e}"
        raise ConfigLoadError(msg, path=path, line=line, column=column) from e


def merge_layers(*layers: Mapping[str, Any]) -> Layer:  # pyright: ignore[reportExplicitAny]
    """Fold configuration layers into a new dictionary.

    Tables present in several layers are merged key by key; any other value
    (including lists) from a later layer replaces the earlier one. The
    inputs are left untouched.

    Example:
        >>> merge_layers({"retry": {"max_attempts": 3, "jitter": 0.1}}, {"retry": {"max_attempts": 5}})
        {'retry': {'max_attempts': 5, 'jitter': 0.1}}
    """
    merged: Layer = {}
    for layer in layers:
        for key, value in layer.items():
            current = merged.get(key)
            if isinstance(current, dict) and isinstance(value, Mapping):
                merged[key] = merge_layers(current, value)
            else:
                merged[key] = copy.deepcopy(value)
    return merged


def env_overrides(
    environ: Mapping[str, str] | None = None,
    *,
    prefix: str = ENV_PREFIX,
) -> Layer:
    """Build a configuration layer from prefixed environment variables.

    ``OSSACTIONS_RETRY__MAX_ATTEMPTS=5`` becomes ``{"retry": {"max_attempts": 5}}``:
    the prefix is dropped, double underscores separate tables and names are
    lowercased. Values are converted with ``coerce_env_value``.

    Args:
        environ: Variables to read; defaults to ``os.environ``.
        prefix: Prefix selecting the variables.
    """
    layer: Layer = {}
    for name, raw in (os.environ if environ is None else environ).items():
        key = name.removeprefix(prefix)
        if key == name or not key or key in _LOGGING_ENV_KEYS:
            continue
        *tables, leaf = key.lower().split("__")
        target = layer
        for table in tables:
            child = target.get(table)
            if not isinstance(child, dict):
                child = target[table] = {}
            target = child
        target[leaf] = coerce_env_value(raw)
    return layer


def coerce_env_value(raw: str) -> Any:  # pyright: ignore[reportExplicitAny]
    """Convert an environment string to the value it most likely denotes.

    ``true``/``false`` (any case) become booleans, integers and decimal
    numbers become int and float, bracketed JSON becomes a list or dict.
    Anything else stays a string.
    """
    if raw.lower() in {"true", "false"}:
        return raw.lower() == "true"
    with contextlib.suppress(ValueError):
        return int(raw)
    if "." in raw:
        with contextlib.suppress(ValueError):
            return float(raw)
    if any(raw.startswith(open_) and raw.endswith(close) for open_, close in _JSON_BRACKETS):
        with contextlib.suppress(json.JSONDecodeError):
            return json.loads(raw)
    return raw
