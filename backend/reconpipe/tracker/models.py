"""
Job list observation models.

A JobSnapshot is one read of the reconstruction service's job list.
Each observed job is classified into exactly one JobStatusClass.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class JobStatusClass(str, Enum):
    """Closed status contract for an external job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    UNKNOWN = "unknown"


# Classes that mean "still running, keep waiting".
IN_PROGRESS_CLASSES = frozenset({JobStatusClass.QUEUED, JobStatusClass.PROCESSING})


class JobObservation(BaseModel):
    """
    One job card as seen in the job list.

    ``status_class`` may be supplied directly by a driver that already
    knows the closed contract; otherwise it is derived from
    ``status_text`` (see classify.py).
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    title: str
    status_text: Optional[str] = None
    status_class: Optional[JobStatusClass] = None

    def classify(self) -> JobStatusClass:
        from .classify import classify_status

        return classify_status(self.status_text, explicit=self.status_class)


class JobSnapshot(BaseModel):
    """Ordered job list observed at ``taken_at``."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    jobs: List[JobObservation] = Field(default_factory=list)
    taken_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def find(self, title: str) -> Optional[JobObservation]:
        """First job whose title matches exactly."""
        for job in self.jobs:
            if job.title == title:
                return job
        return None

    def first_in_progress(self) -> Optional[JobObservation]:
        """First job classified Queued or Processing, in list order."""
        for job in self.jobs:
            if job.classify() in IN_PROGRESS_CLASSES:
                return job
        return None


class PollOutcome(str, Enum):
    """What a single tracker tick concluded."""

    SKIPPED = "skipped"  # Previous tick still in flight
    READ_ERROR = "read_error"  # Job list unavailable this tick
    IDLE = "idle"  # Run is finished, failed, or not monitoring
    NO_JOB = "no_job"  # Nothing in progress to adopt yet
    ADOPTED = "adopted"  # Started tracking a job this tick
    MISSING = "missing"  # Tracked job absent from the list this tick
    WAITING = "waiting"  # Tracked job queued or unrecognised status
    PROCESSING = "processing"
    FAILED = "failed"
    COMPLETED = "completed"
    STALE = "stale"  # Run was reset while the tick was in flight
