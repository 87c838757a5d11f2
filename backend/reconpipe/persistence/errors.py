"""
Recovery store errors.

The orchestrator treats all of these as best-effort failures: a flag that
cannot be written is logged and the run continues.
"""


class PersistenceError(Exception):
    """Base exception for recovery database failures."""
    pass


class SchemaError(PersistenceError):
    """The recovery database could not be created, migrated, or is too new."""
    pass


class LoadError(PersistenceError):
    """Recovery flags could not be read or hold a corrupt value."""
    pass


class SaveError(PersistenceError):
    """A recovery flag could not be written or cleared."""
    pass
