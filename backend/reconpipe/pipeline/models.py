"""
Pipeline run data models.

A PipelineRun is one execution of the four ordered stages:
authenticate → capture → process → download, ending in completed,
or jumping to failed from anywhere.

Transition rules live in state.py. Only the StageStateMachine and the
JobTracker mutate a run.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..events.models import EventStep


class PipelineStage(str, Enum):
    """Pipeline stage identity."""

    AUTHENTICATE = "authenticate"
    CAPTURE = "capture"
    PROCESS = "process"
    DOWNLOAD = "download"
    COMPLETED = "completed"
    FAILED = "failed"  # Terminal until reset(), outside the ordering


class StageStatus(str, Enum):
    """Status of a single ordered stage."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


# The four stages shown to operators, in order.
ORDERED_STAGES = (
    PipelineStage.AUTHENTICATE,
    PipelineStage.CAPTURE,
    PipelineStage.PROCESS,
    PipelineStage.DOWNLOAD,
)

STAGE_INDEX: Dict[PipelineStage, int] = {
    PipelineStage.AUTHENTICATE: 0,
    PipelineStage.CAPTURE: 1,
    PipelineStage.PROCESS: 2,
    PipelineStage.DOWNLOAD: 3,
    PipelineStage.COMPLETED: 4,
}

STAGE_EVENT_STEPS: Dict[PipelineStage, EventStep] = {
    PipelineStage.AUTHENTICATE: EventStep.AUTHENTICATE,
    PipelineStage.CAPTURE: EventStep.CAPTURE,
    PipelineStage.PROCESS: EventStep.PROCESSING,
    PipelineStage.DOWNLOAD: EventStep.DOWNLOAD,
    PipelineStage.COMPLETED: EventStep.COMPLETE,
    PipelineStage.FAILED: EventStep.ERROR,
}


def _initial_statuses() -> Dict[PipelineStage, StageStatus]:
    return {stage: StageStatus.PENDING for stage in ORDERED_STAGES}


class PipelineRun(BaseModel):
    """
    One execution of the pipeline.

    ``tracked_job_title`` is set once per run; ``download_triggered``
    guards the download hand-off. Both are cleared only by reset().
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    run_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    current_stage: PipelineStage = PipelineStage.AUTHENTICATE
    stage_statuses: Dict[PipelineStage, StageStatus] = Field(default_factory=_initial_statuses)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    tracked_job_title: Optional[str] = None
    download_triggered: bool = False
    failure_message: Optional[str] = None

    @property
    def is_failed(self) -> bool:
        return self.current_stage == PipelineStage.FAILED

    @property
    def is_completed(self) -> bool:
        return self.current_stage == PipelineStage.COMPLETED

    def stage_index(self) -> int:
        """Ordering index of the current stage (-1 when failed)."""
        return STAGE_INDEX.get(self.current_stage, -1)

    def snapshot(self) -> Dict:
        """Plain-dict view for status endpoints and logs."""
        return {
            "run_id": self.run_id,
            "current_stage": self.current_stage.value,
            "stages": {s.value: st.value for s, st in self.stage_statuses.items()},
            "started_at": self.started_at.isoformat(),
            "tracked_job_title": self.tracked_job_title,
            "download_triggered": self.download_triggered,
            "failure_message": self.failure_message,
        }
