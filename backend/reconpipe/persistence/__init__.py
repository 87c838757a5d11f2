"""
Persistence layer for recovery state.

SQLite-backed key-value flags that survive restarts.
Recovery detection without auto-resume of speculative polling.
"""

from .errors import PersistenceError, SchemaError, LoadError, SaveError
from .models import RecoveryAction, RecoveryDecision, RecoveryRecord
from .manager import RecoveryStore
from .recovery import check_recovery

__all__ = [
    "PersistenceError",
    "SchemaError",
    "LoadError",
    "SaveError",
    "RecoveryAction",
    "RecoveryDecision",
    "RecoveryRecord",
    "RecoveryStore",
    "check_recovery",
]
