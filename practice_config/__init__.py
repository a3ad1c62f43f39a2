"""
practice_config -- single public entrypoint for installation settings.

``get_active_settings()`` returns the cached settings parsed from the
packaged ``defaults.yaml``.  Tests and tools that need a different file
call ``load_settings(path)`` directly and pass the result to services.
"""

from __future__ import annotations

import threading

from practice_config.loader import load_settings, parse_settings
from practice_config.schema import PracticeSettings, ReceiptNumbering

_active: PracticeSettings | None = None
_lock = threading.Lock()


def get_active_settings() -> PracticeSettings:
    """Return the installation defaults, loading them once."""
    global _active
    with _lock:
        if _active is None:
            _active = load_settings()
        return _active


def reset_active_settings() -> None:
    """Drop the cached settings. FOR TESTING ONLY."""
    global _active
    with _lock:
        _active = None


__all__ = [
    "PracticeSettings",
    "ReceiptNumbering",
    "get_active_settings",
    "load_settings",
    "parse_settings",
    "reset_active_settings",
]
