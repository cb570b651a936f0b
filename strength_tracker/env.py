from __future__ import annotations

import os

PRIMARY_PREFIX = "STRENGTH_TRACKER_"


def get_env(name: str, default: str | None = None) -> str | None:
    """
    Resolve configuration environment variables.

    Every setting lives under the Strength Tracker prefix so that one shell can
    point the CLI at a scratch data directory without touching anything else.
    """
    value = os.getenv(f"{PRIMARY_PREFIX}{name}")
    if value is not None:
        return value
    return default
