"""
Stage state machine.

Owns the "current stage" of the single PipelineRun and forbids regression.
Side effects tied to entering a stage (turntable start/stop, stopping the
poller) are registered as hooks by collaborators; the machine itself only
tracks stage identity and publishes progress events.

Hooks run outside the state lock so that a hook may stop a background
thread that is itself waiting to advance the run.
"""

import logging
import threading
from typing import Callable, Dict, List, Optional

from ..events.bus import EventBus
from ..events.models import EventStep
from .errors import TrackedJobAlreadySetError
from .models import (
    ORDERED_STAGES,
    STAGE_EVENT_STEPS,
    STAGE_INDEX,
    PipelineRun,
    PipelineStage,
    StageStatus,
)
from .state import ADVANCE_STATUSES, can_advance

logger = logging.getLogger(__name__)

RunHook = Callable[[PipelineRun], None]

DEFAULT_STAGE_MESSAGES: Dict[PipelineStage, str] = {
    PipelineStage.AUTHENTICATE: "Logging in to reconstruction service...",
    PipelineStage.CAPTURE: "Capturing photos with turntable rotation...",
    PipelineStage.PROCESS: "Processing 3D model...",
    PipelineStage.DOWNLOAD: "Downloading 3D model files...",
    PipelineStage.COMPLETED: "Processing completed successfully!",
}


class StageStateMachine:
    """
    Monotonic stage tracker for one pipeline run.

    The current PipelineRun is exposed by reference; concurrent tasks read
    it but mutate it only through this class (and the tracked-job helpers
    used by the JobTracker).
    """

    def __init__(self, bus: EventBus):
        self.bus = bus
        self._lock = threading.RLock()
        self._run = PipelineRun()
        self._enter_hooks: Dict[PipelineStage, List[RunHook]] = {}
        self._reset_hooks: List[RunHook] = []
        self._fail_hooks: List[RunHook] = []

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def run(self) -> PipelineRun:
        return self._run

    @property
    def current_stage(self) -> PipelineStage:
        with self._lock:
            return self._run.current_stage

    def is_current_run(self, run_id: Optional[str]) -> bool:
        with self._lock:
            return run_id is not None and run_id == self._run.run_id

    # ------------------------------------------------------------------
    # Hook registration
    # ------------------------------------------------------------------

    def on_enter(self, stage: PipelineStage, hook: RunHook) -> None:
        """Register a callback invoked once each time ``stage`` is entered."""
        self._enter_hooks.setdefault(stage, []).append(hook)

    def on_reset(self, hook: RunHook) -> None:
        """Register a callback invoked before the run is reset."""
        self._reset_hooks.append(hook)

    def on_fail(self, hook: RunHook) -> None:
        """Register a callback invoked after the run enters FAILED."""
        self._fail_hooks.append(hook)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def advance(
        self,
        stage: PipelineStage,
        status: StageStatus = StageStatus.ACTIVE,
        message: Optional[str] = None,
        publish: bool = True,
    ) -> bool:
        """
        Move the run to ``stage`` with ``status``.

        Returns:
            True if the run is now at ``stage``; False if the transition
            was rejected (regression, or the run has failed).
        """
        return self._advance(stage, status, message, publish) is not None

    def complete(self, message: Optional[str] = None, publish: bool = True) -> bool:
        """
        Move the run to COMPLETED, marking every ordered stage completed.

        Returns:
            True only for the call that entered COMPLETED; False if the run
            was already completed or the transition was rejected.
        """
        entered = self._advance(
            PipelineStage.COMPLETED,
            StageStatus.COMPLETED,
            message,
            publish,
        )
        return bool(entered)

    def _advance(
        self,
        stage: PipelineStage,
        status: StageStatus,
        message: Optional[str],
        publish: bool,
    ) -> Optional[bool]:
        """Returns None if rejected, else whether ``stage`` was newly entered."""
        if status not in ADVANCE_STATUSES:
            raise ValueError(f"advance() accepts active or completed, got {status.value}")
        if stage == PipelineStage.FAILED:
            raise ValueError("Use fail() to move a run to FAILED")

        with self._lock:
            run = self._run
            from_stage = run.current_stage

            if not can_advance(from_stage, stage):
                logger.warning(
                    f"Rejected stage transition {from_stage.value} -> {stage.value} "
                    f"(run {run.run_id[:8]})"
                )
                return None

            entered = stage != from_stage

            if not entered and run.stage_statuses.get(stage, status) == status:
                # Idempotent re-advance: nothing changed, nothing to announce.
                return False

            if entered:
                # Everything up to the target is done, including skipped stages.
                for ordered in ORDERED_STAGES:
                    if STAGE_INDEX[ordered] < STAGE_INDEX[stage]:
                        run.stage_statuses[ordered] = StageStatus.COMPLETED
                run.current_stage = stage
                logger.info(f"Pipeline stage {from_stage.value} -> {stage.value} ({status.value})")

            if stage in run.stage_statuses:
                run.stage_statuses[stage] = status

            if publish:
                self.bus.emit(
                    STAGE_EVENT_STEPS[stage],
                    message or DEFAULT_STAGE_MESSAGES[stage],
                    run_id=run.run_id,
                    status=status.value,
                )

        if entered:
            self._run_hooks(self._enter_hooks.get(stage, []), run, f"enter {stage.value}")

        return entered

    def fail(self, message: str) -> bool:
        """
        Move the run to FAILED unconditionally and publish an error event.

        Returns:
            True if this call failed the run, False if it had already failed.
        """
        with self._lock:
            run = self._run
            if run.is_failed:
                logger.debug(f"Run {run.run_id[:8]} already failed, ignoring: {message}")
                return False

            previous = run.current_stage
            if previous in run.stage_statuses:
                run.stage_statuses[previous] = StageStatus.FAILED
            run.current_stage = PipelineStage.FAILED
            run.failure_message = message
            logger.error(f"Pipeline failed during {previous.value}: {message}")

            self.bus.emit(EventStep.ERROR, message, run_id=run.run_id, stage=previous.value)

        self._run_hooks(self._fail_hooks, run, "fail")
        return True

    def reset(self) -> PipelineRun:
        """
        Return every stage to pending and start a fresh run identity.

        Reset hooks (stopping the poller and watchers) run first, so no
        stale tick can mutate the new run.
        """
        with self._lock:
            old_run = self._run

        self._run_hooks(self._reset_hooks, old_run, "reset")

        with self._lock:
            self._run = PipelineRun()
            logger.info(f"Pipeline reset (run {old_run.run_id[:8]} -> {self._run.run_id[:8]})")
            return self._run

    # ------------------------------------------------------------------
    # Run fields owned by the job tracker
    # ------------------------------------------------------------------

    def set_tracked_job(self, title: str) -> bool:
        """
        Adopt ``title`` as the run's external job.

        Returns:
            True if newly set, False if the same title was already tracked.

        Raises:
            TrackedJobAlreadySetError: If a different title is tracked.
        """
        with self._lock:
            current = self._run.tracked_job_title
            if current is None:
                self._run.tracked_job_title = title
                logger.info(f"Tracking external job '{title}'")
                return True
            if current == title:
                return False
            raise TrackedJobAlreadySetError(current, title)

    def claim_download(self) -> bool:
        """
        Atomically mark the download as triggered.

        Returns:
            True for the single caller allowed to start the download.
        """
        with self._lock:
            if self._run.download_triggered or self._run.is_failed:
                return False
            self._run.download_triggered = True
            return True

    # ------------------------------------------------------------------

    def _run_hooks(self, hooks: List[RunHook], run: PipelineRun, label: str) -> None:
        for hook in hooks:
            try:
                hook(run)
            except Exception as e:
                logger.warning(f"Stage hook failed ({label}): {e}")
