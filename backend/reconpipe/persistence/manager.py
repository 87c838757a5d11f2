"""
SQLite-backed recovery store.

Single-file SQLite database holding a handful of key-value flags.
Any process instance pointed at the same file sees the same flags.
Explicit save/clear only - nothing is persisted implicitly.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Type

from .errors import LoadError, PersistenceError, SaveError, SchemaError
from .models import DEFAULT_STALE_AFTER, RecoveryRecord

logger = logging.getLogger(__name__)

# Database schema version for migrations
SCHEMA_VERSION = 1

KEY_MONITORING_ACTIVE = "monitoring_active"
KEY_MONITORING_STARTED_AT = "monitoring_started_at"
KEY_COMPLETION_PHASE_ACTIVE = "completion_phase_active"


class RecoveryStore:
    """
    Durable recovery flags.

    Stores:
    - monitoring_active / monitoring_started_at
    - completion_phase_active

    Does NOT store:
    - The tracked job title (never re-derived after a restart)
    - Stage history or events
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Args:
            db_path: Path to SQLite database file (defaults to ./reconpipe.db)
        """
        if db_path is None:
            db_path = str(Path.cwd() / "reconpipe.db")

        self.db_path = db_path
        self._write_lock = threading.Lock()
        self._ensure_schema()

    @contextmanager
    def _connect(self, error_cls: Type[PersistenceError] = PersistenceError):
        """Context manager for database connections."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=5.0)
        except sqlite3.Error as e:
            raise error_cls(f"Cannot open recovery database {self.db_path}: {e}") from e

        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise error_cls(f"Database operation failed: {e}") from e
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        """Create schema if it doesn't exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        with self._connect(SchemaError) as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL
                )
            """)

            cursor.execute("SELECT version FROM schema_version ORDER BY version DESC LIMIT 1")
            row = cursor.fetchone()
            current_version = row[0] if row else 0

            if current_version > SCHEMA_VERSION:
                raise SchemaError(
                    f"Recovery database schema v{current_version} is newer than supported v{SCHEMA_VERSION}"
                )
            if current_version < SCHEMA_VERSION:
                self._migrate_schema(conn, current_version)

    def _migrate_schema(self, conn, from_version: int) -> None:
        """Apply schema migrations."""
        cursor = conn.cursor()

        if from_version < 1:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS recovery_flags (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            cursor.execute(
                "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                (1, datetime.now(timezone.utc).isoformat())
            )
            logger.info(f"Recovery database initialised at {self.db_path}")

    # Raw key-value access

    def _set(self, values: Dict[str, str]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._write_lock, self._connect(SaveError) as conn:
            cursor = conn.cursor()
            for key, value in values.items():
                cursor.execute("""
                    INSERT INTO recovery_flags (key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                """, (key, value, now))

    def _delete(self, *keys: str) -> None:
        with self._write_lock, self._connect(SaveError) as conn:
            cursor = conn.cursor()
            cursor.executemany(
                "DELETE FROM recovery_flags WHERE key = ?",
                [(key,) for key in keys],
            )

    def _get_all(self) -> Dict[str, str]:
        with self._connect(LoadError) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT key, value FROM recovery_flags")
            return {row["key"]: row["value"] for row in cursor.fetchall()}

    # Monitoring flags

    def save_monitoring(self, now: Optional[datetime] = None) -> None:
        """Record that monitoring started at ``now``."""
        started_at = now or datetime.now(timezone.utc)
        self._set({
            KEY_MONITORING_ACTIVE: "true",
            KEY_MONITORING_STARTED_AT: started_at.isoformat(),
        })
        logger.debug(f"Saved monitoring flag (started {started_at.isoformat()})")

    def clear_monitoring(self) -> None:
        self._delete(KEY_MONITORING_ACTIVE, KEY_MONITORING_STARTED_AT)
        logger.debug("Cleared monitoring flags")

    def is_monitoring_fresh(self, stale_after=DEFAULT_STALE_AFTER, now: Optional[datetime] = None) -> bool:
        """True when monitoring is flagged active and not yet stale."""
        record = self.load()
        return record.monitoring_active and not record.is_stale(stale_after, now)

    # Completion phase flag

    def save_completion_phase(self) -> None:
        self._set({KEY_COMPLETION_PHASE_ACTIVE: "true"})
        logger.debug("Saved completion phase flag")

    def clear_completion_phase(self) -> None:
        self._delete(KEY_COMPLETION_PHASE_ACTIVE)
        logger.debug("Cleared completion phase flag")

    # Whole record

    def load(self) -> RecoveryRecord:
        """
        Load the recovery record.

        Raises:
            LoadError: If the database cannot be read or holds a corrupt timestamp
        """
        values = self._get_all()

        started_at = None
        raw_started = values.get(KEY_MONITORING_STARTED_AT)
        if raw_started:
            try:
                started_at = datetime.fromisoformat(raw_started)
            except ValueError as e:
                raise LoadError(f"Corrupt monitoring start time {raw_started!r}") from e
            if started_at.tzinfo is None:
                started_at = started_at.replace(tzinfo=timezone.utc)

        return RecoveryRecord(
            monitoring_active=values.get(KEY_MONITORING_ACTIVE) == "true",
            monitoring_started_at=started_at,
            completion_phase_active=values.get(KEY_COMPLETION_PHASE_ACTIVE) == "true",
        )

    def clear_all(self) -> None:
        self._delete(KEY_MONITORING_ACTIVE, KEY_MONITORING_STARTED_AT, KEY_COMPLETION_PHASE_ACTIVE)
