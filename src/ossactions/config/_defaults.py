"""Default configuration values.

This module defines the built-in default configuration values that are used
when no other configuration sources provide values.
"""

from typing import Any

DEFAULT_CONFIG: dict[str, Any] = {  # pyright: ignore[reportExplicitAny]
    "retry": {
        "max_attempts": 3,
        "base_delay": 0.5,
        "max_delay": 30.0,
        "multiplier": 2.0,
        "jitter": 0.1,
    },
    "logging": {
        "level": "warning",
        "format": "json",
        "file": "",
    },
    "git": {
        "remote_name": "origin",
        "default_branch": "main",
        "command_timeout": None,
        "default_author": "ossactions",
        "default_author_email": "ossactions@localhost",
    },
}
