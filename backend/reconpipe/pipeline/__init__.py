"""
Pipeline stage tracking.

This module owns the single PipelineRun and its monotonic stage order.
It does NOT talk to the reconstruction service or any device.

Public API:
    PipelineStage, StageStatus - Stage identity and per-stage status
    PipelineRun - Current run state
    StageStateMachine - Transitions, reset and failure
    can_advance, validate_advance - Transition rules
"""

from .errors import (
    PipelineError,
    InvalidStageTransitionError,
    TrackedJobAlreadySetError,
)
from .models import (
    ORDERED_STAGES,
    PipelineRun,
    PipelineStage,
    StageStatus,
)
from .state import can_advance, validate_advance, is_stage_terminal
from .machine import StageStateMachine

__all__ = [
    # Errors
    "PipelineError",
    "InvalidStageTransitionError",
    "TrackedJobAlreadySetError",
    # Models
    "ORDERED_STAGES",
    "PipelineRun",
    "PipelineStage",
    "StageStatus",
    # Rules
    "can_advance",
    "validate_advance",
    "is_stage_terminal",
    # Machine
    "StageStateMachine",
]
