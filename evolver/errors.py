"""Exception types raised by Evolver.

Violations and warnings from the solidify path are returned as data on
:class:`~evolver.types.SolidifyResult`; only the conditions below are
raised.
"""


class EvolverError(Exception):
    """Base class for Evolver errors."""


class MalformedRecordError(EvolverError, ValueError):
    """A record passed to the store is missing ``id``/``type`` or fails its schema."""

    def __init__(self, message: str, record_type: str = None, errors=None):
        super().__init__(message)
        self.record_type = record_type
        self.errors = list(errors or [])


class StoreIntegrityError(EvolverError):
    """The backing database could not be repaired or recreated."""


class CommandNotAllowedError(EvolverError):
    """A validation command failed the allow-list check."""

    def __init__(self, command: str):
        super().__init__(f"Command not allowed: {command}")
        self.command = command
