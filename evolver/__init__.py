"""
Evolver - strategy memory and selection for self-improving agents.

Remembers which strategies (genes) worked, picks the best one for newly
observed signals, and records outcomes through a validated write path.
"""

from .core import Evolver
from .errors import CommandNotAllowedError, EvolverError, MalformedRecordError, StoreIntegrityError
from .storage import SQLiteStore

try:
    from importlib.metadata import version

    __version__ = version("evolver")
except Exception:
    __version__ = "0.0.0"

__all__ = [
    "Evolver",
    "SQLiteStore",
    "EvolverError",
    "MalformedRecordError",
    "StoreIntegrityError",
    "CommandNotAllowedError",
]
