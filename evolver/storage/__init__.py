"""Storage layer for Evolver."""

from .schema import SCHEMA_VERSION
from .sqlite import SQLiteStore

__all__ = ["SQLiteStore", "SCHEMA_VERSION"]
