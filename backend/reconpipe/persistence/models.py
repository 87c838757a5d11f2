"""
Recovery record models.

The recovery record is the only state that survives a process restart.
It answers two questions on startup: was a confirmed-complete job in the
middle of being downloaded, and was monitoring running recently?
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_STALE_AFTER = timedelta(minutes=2)


class RecoveryRecord(BaseModel):
    """Durable recovery flags as loaded from storage."""

    model_config = ConfigDict(extra="forbid")

    monitoring_active: bool = False
    monitoring_started_at: Optional[datetime] = None
    completion_phase_active: bool = False

    def monitoring_age(self, now: Optional[datetime] = None) -> Optional[timedelta]:
        if self.monitoring_started_at is None:
            return None
        now = now or datetime.now(timezone.utc)
        return now - self.monitoring_started_at

    def is_stale(self, stale_after: timedelta = DEFAULT_STALE_AFTER, now: Optional[datetime] = None) -> bool:
        """
        Monitoring is stale when it has been active longer than ``stale_after``.

        A monitoring flag without a start time is treated as stale.
        """
        if not self.monitoring_active:
            return False
        age = self.monitoring_age(now)
        return age is None or age > stale_after


class RecoveryAction(str, Enum):
    """What startup recovery decided to do."""

    RESUME_COMPLETION = "resume_completion"  # Finish the download of a completed job
    AWAIT_OPERATOR = "await_operator"  # Fresh monitoring flag kept, polling not resumed
    CLEARED_STALE = "cleared_stale"  # Stale monitoring flag removed
    NONE = "none"


class RecoveryDecision(BaseModel):
    """Outcome of the startup recovery check."""

    model_config = ConfigDict(extra="forbid")

    action: RecoveryAction
    record: RecoveryRecord
    reason: str = ""
    checked_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
