"""
Startup recovery policy.

Recovery detection without blanket auto-resume:

- completion phase flagged → resume the download of the completed job
  (low risk, must survive a restart);
- monitoring flagged and fresh → leave the flags, do NOT resume polling,
  wait for an explicit operator start;
- monitoring flagged and stale → clear the flags, do nothing else.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from .manager import RecoveryStore
from .models import DEFAULT_STALE_AFTER, RecoveryAction, RecoveryDecision

logger = logging.getLogger(__name__)


def check_recovery(
    store: RecoveryStore,
    stale_after: timedelta = DEFAULT_STALE_AFTER,
    now: Optional[datetime] = None,
) -> RecoveryDecision:
    """
    Inspect the recovery record and apply the flag-clearing part of the policy.

    Resuming work is left to the caller (see PipelineOrchestrator.resume_on_startup).
    """
    now = now or datetime.now(timezone.utc)
    record = store.load()

    if record.completion_phase_active:
        logger.info("Completion phase was active before restart, resuming download")
        return RecoveryDecision(
            action=RecoveryAction.RESUME_COMPLETION,
            record=record,
            reason="Completed job was being downloaded when the process stopped",
            checked_at=now,
        )

    if record.monitoring_active:
        age = record.monitoring_age(now)
        if record.is_stale(stale_after, now):
            store.clear_monitoring()
            age_text = f"{age.total_seconds():.0f}s" if age is not None else "unknown age"
            logger.info(f"Monitoring flag is stale ({age_text}), cleared without resuming")
            return RecoveryDecision(
                action=RecoveryAction.CLEARED_STALE,
                record=record,
                reason=f"Monitoring flag older than {stale_after.total_seconds():.0f}s",
                checked_at=now,
            )

        logger.info(
            f"Recent monitoring flag found ({age.total_seconds():.0f}s old), "
            "not restarting monitoring automatically"
        )
        return RecoveryDecision(
            action=RecoveryAction.AWAIT_OPERATOR,
            record=record,
            reason="Monitoring was active recently; an explicit start is required",
            checked_at=now,
        )

    logger.debug("No recovery flags found")
    return RecoveryDecision(action=RecoveryAction.NONE, record=record, checked_at=now)
