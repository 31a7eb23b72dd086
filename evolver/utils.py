"""Shared helpers for Evolver."""

import os
from datetime import datetime, timezone
from pathlib import Path


def get_evolver_home() -> Path:
    """Return the Evolver data directory.

    Honors ``EVOLVER_DATA_DIR`` and falls back to ``~/.evolver``.
    """
    env = os.environ.get("EVOLVER_DATA_DIR")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".evolver"


def utc_now() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()
