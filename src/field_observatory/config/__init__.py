"""Configuration package for Field Observatory.

Re-exports the settings entry points so that callers can write::

    from field_observatory.config import get_settings
"""

from __future__ import annotations

from field_observatory.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
