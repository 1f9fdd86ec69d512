"""Helpers for reading settings from a ``Config`` object or a plain dict."""
from __future__ import annotations

from typing import Any, Dict


def get_config_section(source: Any, section: str) -> Dict:
    """Return ``section`` as a plain dict, or ``{}`` when it is missing."""
    if source is None:
        return {}

    if isinstance(source, dict):
        candidate = source.get(section)
        return candidate if isinstance(candidate, dict) else {}

    getter = getattr(source, 'get', None)
    if callable(getter):
        candidate = getter(section, None)
        if isinstance(candidate, dict):
            return candidate
        to_dict = getattr(candidate, 'to_dict', None)
        if callable(to_dict):
            return to_dict()

    return {}


def get_setting(source: Any, section: str, key: str, default: Any = None) -> Any:
    """Read ``section.key``; a missing or null value falls back to ``default``."""
    value = get_config_section(source, section).get(key)
    return default if value is None else value
