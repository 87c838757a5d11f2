"""
Stage transition validation.

Pipeline lifecycle: AUTHENTICATE → CAPTURE → PROCESS → DOWNLOAD → COMPLETED,
with FAILED reachable from every stage.

INVARIANT: The stage index never decreases within a run. Only reset()
returns a run to AUTHENTICATE, and FAILED is left only through reset().
Polling, reloads or late events must never regress a run.
"""

from typing import FrozenSet

from .errors import InvalidStageTransitionError
from .models import PipelineStage, StageStatus, STAGE_INDEX


TERMINAL_STAGES: FrozenSet[PipelineStage] = frozenset({
    PipelineStage.COMPLETED,
    PipelineStage.FAILED,
})

# Statuses a caller may request through advance().
ADVANCE_STATUSES: FrozenSet[StageStatus] = frozenset({
    StageStatus.ACTIVE,
    StageStatus.COMPLETED,
})


def is_stage_terminal(stage: PipelineStage) -> bool:
    return stage in TERMINAL_STAGES


def can_advance(from_stage: PipelineStage, to_stage: PipelineStage) -> bool:
    """
    Check if moving from one stage to another is legal.

    Staying in the same stage is allowed (idempotent re-emits).
    FAILED is handled by fail(), never by advance().
    """
    if from_stage == PipelineStage.FAILED or to_stage == PipelineStage.FAILED:
        return False

    if from_stage == PipelineStage.COMPLETED:
        return to_stage == PipelineStage.COMPLETED

    return STAGE_INDEX[to_stage] >= STAGE_INDEX[from_stage]


def validate_advance(from_stage: PipelineStage, to_stage: PipelineStage) -> None:
    """
    Raises:
        InvalidStageTransitionError: If the transition is not allowed
    """
    if not can_advance(from_stage, to_stage):
        raise InvalidStageTransitionError(from_stage.value, to_stage.value)
