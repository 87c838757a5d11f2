"""
Job tracker - infers the external job's lifecycle from job list snapshots.

One tick:
1. Read the job list through the automation driver (which refreshes
   the page as part of the read).
2. Without a tracked job, adopt the first Queued/Processing job.
3. With a tracked job, look it up by exact title and act on its class:
   Processing → Process/active, Failed → fail the run,
   Completed → Download/active and hand off the download exactly once.

Only one tick may run at a time. A tick that starts while another is in
flight is skipped, not queued.
"""

import logging
import threading
from typing import Callable, Optional

from ..collaborators import DriverError, WebAutomationDriver
from ..pipeline.machine import StageStateMachine
from ..pipeline.models import PipelineRun, PipelineStage, StageStatus
from .errors import PollTimeoutError
from .models import (
    IN_PROGRESS_CLASSES,
    JobSnapshot,
    JobStatusClass,
    PollOutcome,
)

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_MAX_POLL_ATTEMPTS = 150
DEFAULT_ERROR_WARNING_THRESHOLD = 3

CompletionHandoff = Callable[[PipelineRun], None]


class JobTracker:
    """
    Single-job tracker.

    At most one external job is tracked per run. The tracked title lives on
    the PipelineRun (set through the state machine) so a reset run starts
    untracked.
    """

    def __init__(
        self,
        driver: WebAutomationDriver,
        machine: StageStateMachine,
        on_completed: Optional[CompletionHandoff] = None,
        error_warning_threshold: int = DEFAULT_ERROR_WARNING_THRESHOLD,
    ):
        self.driver = driver
        self.machine = machine
        self.on_completed = on_completed
        self.error_warning_threshold = error_warning_threshold

        # Held for the whole tick; acquired non-blocking.
        self._reload_lock = threading.Lock()

        self.consecutive_errors = 0
        self.missing_ticks = 0
        self.finished = False
        self.last_outcome: Optional[PollOutcome] = None

    @property
    def is_reloading(self) -> bool:
        return self._reload_lock.locked()

    def reset(self) -> None:
        """Forget per-run counters. Called when the run is reset."""
        self.consecutive_errors = 0
        self.missing_ticks = 0
        self.finished = False
        self.last_outcome = None

    def poll(self) -> Optional[JobSnapshot]:
        """
        Run one tick.

        Returns:
            The snapshot read this tick, or None if the tick was skipped,
            the run is idle, or the job list could not be read.
        """
        if not self._reload_lock.acquire(blocking=False):
            logger.debug("Reload already in progress, skipping tick")
            self.last_outcome = PollOutcome.SKIPPED
            return None

        try:
            run = self.machine.run
            if self.finished or run.is_failed or run.is_completed:
                self.last_outcome = PollOutcome.IDLE
                return None

            try:
                snapshot = JobSnapshot(jobs=self.driver.list_jobs())
            except DriverError as e:
                self._record_read_error(e)
                return None

            self.consecutive_errors = 0

            if not self.machine.is_current_run(run.run_id):
                # Reset while the page was refreshing; this read belongs to a dead run.
                logger.info("Run was reset during job list refresh, dropping snapshot")
                self.last_outcome = PollOutcome.STALE
                return snapshot

            self.last_outcome = self._evaluate(snapshot, run)
            return snapshot
        finally:
            self._reload_lock.release()

    def _record_read_error(self, error: DriverError) -> None:
        self.consecutive_errors += 1
        self.last_outcome = PollOutcome.READ_ERROR

        if self.consecutive_errors == self.error_warning_threshold:
            logger.warning(
                f"Job list unavailable for {self.consecutive_errors} consecutive ticks: {error}"
            )
        else:
            logger.info(f"Job list read failed (attempt streak {self.consecutive_errors}): {error}")

    def _evaluate(self, snapshot: JobSnapshot, run: PipelineRun) -> PollOutcome:
        logger.debug(f"Snapshot holds {len(snapshot.jobs)} job(s)")

        title = run.tracked_job_title
        if title is None:
            candidate = snapshot.first_in_progress()
            if candidate is None:
                logger.debug("No tracked job and nothing in progress yet")
                return PollOutcome.NO_JOB

            self.machine.set_tracked_job(candidate.title)
            logger.info(f"Found new job to track: '{candidate.title}' ({candidate.status_text})")
            self.machine.advance(PipelineStage.PROCESS, StageStatus.ACTIVE)
            return PollOutcome.ADOPTED

        job = snapshot.find(title)
        if job is None:
            self.missing_ticks += 1
            logger.info(
                f"Tracked job '{title}' not in job list (miss {self.missing_ticks}), "
                "keeping watch"
            )
            return PollOutcome.MISSING

        self.missing_ticks = 0
        status_class = job.classify()
        logger.debug(f"Tracked job '{title}' status: {job.status_text!r} -> {status_class.value}")

        if status_class == JobStatusClass.FAILED:
            self.finished = True
            self.machine.fail(f"Tracked project failed: {job.status_text}")
            return PollOutcome.FAILED

        if status_class == JobStatusClass.COMPLETED:
            self.finished = True
            logger.info(f"Tracked job '{title}' has completed")
            self.machine.advance(PipelineStage.DOWNLOAD, StageStatus.ACTIVE)
            if self.machine.claim_download():
                self._hand_off(run)
            else:
                logger.info("Download already triggered for this run, not handing off again")
            return PollOutcome.COMPLETED

        if status_class == JobStatusClass.PROCESSING:
            self.machine.advance(PipelineStage.PROCESS, StageStatus.ACTIVE)
            return PollOutcome.PROCESSING

        if status_class not in IN_PROGRESS_CLASSES:
            logger.info(f"Tracked job '{title}' has unrecognised status {job.status_text!r}")
        return PollOutcome.WAITING

    def _hand_off(self, run: PipelineRun) -> None:
        if self.on_completed is None:
            logger.warning("No download hand-off registered; completed job left on the service")
            return
        try:
            self.on_completed(run)
        except Exception as e:
            logger.error(f"Download hand-off failed: {e}")
            self.machine.fail(f"Download failed: {e}")


class PollLoop:
    """
    Background thread running JobTracker.poll() at a fixed interval.

    The first tick runs immediately. The loop ends when the tracker
    finishes, when stop() is called, or when ``max_attempts`` ticks pass
    without resolution (reported through ``on_timeout``).
    """

    def __init__(
        self,
        tracker: JobTracker,
        interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
        on_timeout: Optional[Callable[[PollTimeoutError], None]] = None,
    ):
        self.tracker = tracker
        self.interval = interval
        self.max_attempts = max_attempts
        self.on_timeout = on_timeout

        self.attempts = 0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            logger.info("Reload cycle already running, stopping existing one first")
            self.stop()

        with self._lock:
            self.attempts = 0
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event,),
                name="reconpipe-poll-loop",
                daemon=True,
            )
            self._thread.start()
        logger.info(f"Job poll loop started ({self.interval:g}s interval, max {self.max_attempts} attempts)")

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop the loop and wait for the current tick to finish.

        Safe to call from the loop thread itself (no join in that case).
        """
        with self._lock:
            thread = self._thread
            self._stop_event.set()

        if thread is None:
            return
        if thread is not threading.current_thread() and thread.is_alive():
            thread.join(timeout)
        logger.info("Job poll loop stopped")

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            self.attempts += 1
            logger.debug(f"Checking job status (attempt {self.attempts}/{self.max_attempts})")

            try:
                self.tracker.poll()
            except Exception as e:
                # Unexpected failure in a tick must not kill the loop.
                logger.error(f"Unexpected error during poll tick: {e}")

            if self.tracker.finished or stop_event.is_set():
                break

            if self.attempts >= self.max_attempts:
                error = PollTimeoutError(self.attempts, self.interval)
                logger.warning(str(error))
                if self.on_timeout is not None:
                    self.on_timeout(error)
                break

            stop_event.wait(self.interval)
