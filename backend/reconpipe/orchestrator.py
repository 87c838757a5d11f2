"""
Pipeline orchestrator.

Wires the stage state machine, job tracker, recovery store, ingestion
watcher and uploader together and exposes the operator controls:
start(), trigger_download(), stop_monitoring(), reset(), status() and
resume_on_startup().

Run lifecycle:
1. start(): Authenticate (driver login) -> Capture (submit photos,
   turntable spins) -> save monitoring flag -> poll loop.
2. The tracker moves the run to Process, then Download once the external
   job completes, and hands off to the download worker exactly once.
3. The download worker exports the artifact. The watcher extracts the
   archive and reports the result folder, which completes the run.
4. Any terminal error (job failed, timeout, unreachable driver) runs the
   same idempotent cleanup.
"""

import logging
import shutil
import threading
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional

from .collaborators import DriverError, NullTurntable, TurntableController, WebAutomationDriver
from .events.bus import EventBus
from .events.models import EventStep
from .persistence.errors import PersistenceError
from .persistence.manager import RecoveryStore
from .persistence.models import RecoveryAction, RecoveryDecision
from .persistence.recovery import check_recovery
from .pipeline.errors import PipelineError
from .pipeline.machine import StageStateMachine
from .pipeline.models import PipelineRun, PipelineStage, StageStatus
from .pipeline.state import is_stage_terminal
from .settings import PipelineSettings
from .tracker.errors import PollTimeoutError
from .tracker.poller import JobTracker, PollLoop
from .upload.uploader import OutboundUploader, UploadResult
from .watchfolders.downloads import DownloadMonitor
from .watchfolders.engine import ArtifactIngestionWatcher
from .watchfolders.errors import DownloadTimeoutError
from .watchfolders.extractor import unique_destination
from .watchfolders.models import CompletionNotice
from .watchfolders.scanner import ARCHIVE_EXTENSIONS
from .watchfolders.stability import FileStabilityChecker

logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    """
    One capture station, one pipeline run at a time.

    All collaborators can be injected (tests pass fakes); anything not
    given is built from ``settings``.
    """

    def __init__(
        self,
        driver: WebAutomationDriver,
        settings: Optional[PipelineSettings] = None,
        turntable: Optional[TurntableController] = None,
        bus: Optional[EventBus] = None,
        store: Optional[RecoveryStore] = None,
        uploader: Optional[OutboundUploader] = None,
    ):
        self.settings = settings or PipelineSettings()
        s = self.settings

        self.driver = driver
        self.turntable = turntable or NullTurntable()
        self.bus = bus or EventBus()
        self.store = store or RecoveryStore(s.db_path)
        self.uploader = uploader or OutboundUploader(
            s.upload_base_url, api_key=s.upload_api_key, timeout=s.upload_timeout
        )

        self.machine = StageStateMachine(self.bus)
        self.tracker = JobTracker(
            driver,
            self.machine,
            on_completed=self._hand_off_download,
            error_warning_threshold=s.consecutive_error_warning,
        )
        self.poll_loop = PollLoop(
            self.tracker,
            interval=s.poll_interval,
            max_attempts=s.max_poll_attempts,
            on_timeout=self._on_poll_timeout,
        )

        stability = FileStabilityChecker(
            min_size_bytes=s.min_archive_bytes,
            settle_seconds=s.download_settle_seconds,
        )
        self.inbound_dir = Path(s.inbound_dir)
        self.watcher = ArtifactIngestionWatcher(
            self.inbound_dir,
            Path(s.outbound_dir),
            on_completed=self._on_artifact_ready,
            run_id_provider=lambda: self.machine.run.run_id,
            stability=stability,
            sidecar_window_seconds=s.sidecar_window_seconds,
            use_polling=s.use_polling_observer,
        )

        # A separate browser download folder needs its own completion check;
        # otherwise the watcher's completion report ends the wait.
        self.downloads_dir = Path(s.downloads_dir) if s.downloads_dir else None
        self.download_monitor = (
            DownloadMonitor(
                self.downloads_dir,
                stability=stability,
                timeout=s.download_timeout,
                interval=s.download_check_interval,
            )
            if self.downloads_dir is not None
            else None
        )

        self._control_lock = threading.Lock()
        self._start_lock = threading.Lock()
        self._artifact_ready = threading.Event()
        self._download_thread: Optional[threading.Thread] = None
        self._start_thread: Optional[threading.Thread] = None
        self.last_upload: Optional[UploadResult] = None

        self.machine.on_enter(PipelineStage.CAPTURE, self._start_turntable)
        self.machine.on_enter(PipelineStage.PROCESS, self._stop_turntable)
        self.machine.on_fail(self._on_failed)
        self.machine.on_reset(self._on_reset)

    # ------------------------------------------------------------------
    # Operator controls
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """
        Run Authenticate and Capture, then begin monitoring the job list.

        A finished (completed or failed) run is reset first.

        Returns:
            True if monitoring started, False if the run failed on the way.

        Raises:
            PipelineError: If a run is already in progress.
        """
        with self._control_lock:
            run = self.machine.run
            if is_stage_terminal(run.current_stage):
                self.machine.reset()
            elif self._is_busy():
                raise PipelineError(
                    f"Pipeline run {run.run_id[:8]} is already in progress ({run.current_stage.value})"
                )

            self._artifact_ready.clear()
            self.watcher.start()

            self.machine.advance(PipelineStage.AUTHENTICATE, StageStatus.ACTIVE)
            try:
                logged_in = self.driver.login()
            except DriverError as e:
                self.machine.fail(f"Cannot reach reconstruction service: {e}")
                return False
            if not logged_in:
                self.machine.fail("Login to reconstruction service failed")
                return False

            self.machine.advance(PipelineStage.CAPTURE, StageStatus.ACTIVE)
            try:
                submitted = self.driver.submit_capture()
            except DriverError as e:
                self.machine.fail(f"Capture submission failed: {e}")
                return False
            if not submitted:
                self.machine.fail("Capture submission failed")
                return False

            self._save_flag(self.store.save_monitoring)
            self.poll_loop.start()
            return True

    def start_in_background(self) -> bool:
        """
        start() on a worker thread, for callers that must not block.

        Returns:
            False if a run is already in progress.
        """
        with self._start_lock:
            thread = self._start_thread
            if (thread is not None and thread.is_alive()) or self._is_busy():
                return False
            self._start_thread = threading.Thread(
                target=self._start_guarded, name="reconpipe-start", daemon=True
            )
            self._start_thread.start()
            return True

    def _start_guarded(self) -> None:
        try:
            self.start()
        except PipelineError as e:
            logger.warning(str(e))

    def stop_monitoring(self) -> None:
        """Stop polling the job list and clear the monitoring flag. The run keeps its stage."""
        self.poll_loop.stop()
        self._save_flag(self.store.clear_monitoring)
        logger.info("Monitoring stopped by operator")

    def reset(self) -> PipelineRun:
        """Tear down background work and start a fresh, idle run."""
        with self._control_lock:
            return self.machine.reset()

    def trigger_download(self) -> bool:
        """
        Export the result of a job the operator knows has finished.

        Skips job-list monitoring: the run goes straight to Download and the
        download worker runs as if the tracker had seen the job complete.
        A finished run is reset first.

        Returns:
            False if this run's download was already claimed.
        """
        with self._control_lock:
            if is_stage_terminal(self.machine.current_stage):
                self.machine.reset()
            if self.machine.run.download_triggered or self._download_in_progress():
                return False

            self.poll_loop.stop()
            self._artifact_ready.clear()
            self.watcher.start()

            if not self.machine.advance(
                PipelineStage.DOWNLOAD,
                StageStatus.ACTIVE,
                message="Manual download requested...",
            ):
                return False
            if not self.machine.claim_download():
                return False
            logger.info("Download triggered by operator")
            self._hand_off_download(self.machine.run)
            return True

    def resume_on_startup(self) -> RecoveryDecision:
        """
        Apply the startup recovery policy and start the watcher.

        Only an interrupted completion phase is resumed: the run goes
        straight to Download and the download hand-off runs again.
        Monitoring is never restarted without an operator.
        """
        decision = check_recovery(
            self.store,
            stale_after=timedelta(seconds=self.settings.stale_after_seconds),
        )

        if decision.action == RecoveryAction.RESUME_COMPLETION:
            self.machine.advance(
                PipelineStage.DOWNLOAD,
                StageStatus.ACTIVE,
                message="Resuming download after restart...",
            )
            self.watcher.start()
            if self.machine.claim_download():
                self._hand_off_download(self.machine.run)
        else:
            self.watcher.start()

        return decision

    def shutdown(self) -> None:
        """Stop background threads without touching the recovery flags."""
        self.poll_loop.stop()
        if self.download_monitor is not None:
            self.download_monitor.cancel()
        self.watcher.stop()

    def status(self) -> Dict[str, Any]:
        """Snapshot of the run and the background workers."""
        try:
            recovery = self.store.load().model_dump(mode="json")
        except PersistenceError as e:
            recovery = {"error": str(e)}

        return {
            "run": self.machine.run.snapshot(),
            "monitoring": self.poll_loop.is_running,
            "poll_attempts": self.poll_loop.attempts,
            "tracker": {
                "is_reloading": self.tracker.is_reloading,
                "consecutive_errors": self.tracker.consecutive_errors,
                "missing_ticks": self.tracker.missing_ticks,
                "last_outcome": self.tracker.last_outcome.value if self.tracker.last_outcome else None,
            },
            "watcher_running": self.watcher.is_running,
            "in_flight": [r.filename for r in self.watcher.in_flight.active()],
            "download_in_progress": self._download_in_progress(),
            "upload_enabled": self.uploader.enabled,
            "recovery": recovery,
        }

    # ------------------------------------------------------------------
    # Download hand-off
    # ------------------------------------------------------------------

    def _hand_off_download(self, run: PipelineRun) -> None:
        """Called once per run by the tracker when the external job completes."""
        self._save_flag(self.store.clear_monitoring)
        self._save_flag(self.store.save_completion_phase)

        self._download_thread = threading.Thread(
            target=self._download_worker,
            args=(run.run_id,),
            name="reconpipe-download",
            daemon=True,
        )
        self._download_thread.start()

    def _download_worker(self, run_id: str) -> None:
        try:
            self._capture_screenshot()

            baseline = self.download_monitor.snapshot() if self.download_monitor else set()
            reported = self.driver.download_current_artifact()
            logger.info(f"Artifact export requested (driver reported {reported!r})")

            if not self.machine.is_current_run(run_id):
                logger.info("Run was reset during download, abandoning it")
                return

            if self.download_monitor is not None and not self._is_in_inbound(reported):
                for path in self.download_monitor.wait_for_download(baseline):
                    self._move_to_inbound(path)

            if not self._artifact_ready.wait(self.settings.download_timeout):
                raise DownloadTimeoutError(str(self.inbound_dir), self.settings.download_timeout)

        except DownloadTimeoutError as e:
            if self.machine.is_current_run(run_id):
                self.machine.fail(str(e))
        except DriverError as e:
            if self.machine.is_current_run(run_id):
                self.machine.fail(f"Download failed: {e}")

    def _capture_screenshot(self) -> None:
        try:
            path = self.driver.take_screenshot()
        except Exception as e:
            logger.warning(f"Screenshot failed, continuing without it: {e}")
            return
        if path and not self._is_in_inbound(path):
            try:
                self._move_to_inbound(Path(path))
            except OSError as e:
                logger.warning(f"Could not move screenshot next to the download: {e}")

    def _is_in_inbound(self, path: Optional[str]) -> bool:
        if not path:
            return False
        return Path(path).parent.resolve() == self.inbound_dir.resolve()

    def _move_to_inbound(self, path: Path) -> None:
        self.inbound_dir.mkdir(parents=True, exist_ok=True)
        target = unique_destination(self.inbound_dir / path.name)
        shutil.move(str(path), str(target))
        if path.suffix.lower() in ARCHIVE_EXTENSIONS:
            logger.info(f"Moved download {path.name} to {self.inbound_dir}")

    def _download_in_progress(self) -> bool:
        thread = self._download_thread
        return thread is not None and thread.is_alive()

    # ------------------------------------------------------------------
    # Watcher completion
    # ------------------------------------------------------------------

    def _on_artifact_ready(self, notice: CompletionNotice) -> None:
        if not self.machine.is_current_run(notice.run_id):
            logger.info(f"Dropping result {notice.folder} from an earlier run")
            return

        run = self.machine.run
        if run.is_failed:
            logger.info(f"Result {notice.folder} arrived after the run failed, not completing it")
            return

        if run.current_stage == PipelineStage.DOWNLOAD and self.machine.complete(publish=False):
            self.bus.emit(
                EventStep.COMPLETE,
                f"3D model ready: {notice.folder}",
                run_id=run.run_id,
                folder=notice.folder,
                path=notice.path,
            )
            self._save_flag(self.store.clear_completion_phase)
            self._artifact_ready.set()
        else:
            logger.info(
                f"Result {notice.folder} ingested while the run is in {run.current_stage.value}"
            )

        threading.Thread(
            target=self._upload,
            args=(notice,),
            name="reconpipe-upload",
            daemon=True,
        ).start()

    def _upload(self, notice: CompletionNotice) -> None:
        sidecar = str(Path(notice.path) / notice.sidecar_image) if notice.sidecar_image else None
        self.last_upload = self.uploader.upload(notice.path, sidecar)

    # ------------------------------------------------------------------
    # Hooks and cleanup
    # ------------------------------------------------------------------

    def _start_turntable(self, run: PipelineRun) -> None:
        self._turntable("motor_on")
        self._turntable("rotate_forward")

    def _stop_turntable(self, run: PipelineRun) -> None:
        self._turntable("stop")
        self._turntable("motor_off")

    def _turntable(self, command: str) -> None:
        try:
            getattr(self.turntable, command)()
        except Exception as e:
            logger.warning(f"Turntable command {command} failed: {e}")

    def _on_poll_timeout(self, error: PollTimeoutError) -> None:
        self.machine.fail(str(error))

    def _on_failed(self, run: PipelineRun) -> None:
        self._cleanup()

    def _on_reset(self, run: PipelineRun) -> None:
        self._cleanup()
        self.tracker.reset()
        self._artifact_ready.clear()

    def _cleanup(self) -> None:
        """Stop background work tied to the run. Safe to call repeatedly."""
        self.poll_loop.stop()
        if self.download_monitor is not None:
            self.download_monitor.cancel()
        self._stop_turntable(self.machine.run)
        self._save_flag(self.store.clear_all)
        self.watcher.stop()

    def _save_flag(self, operation) -> None:
        try:
            operation()
        except PersistenceError as e:
            logger.warning(f"Recovery flag update failed: {e}")

    def _is_busy(self) -> bool:
        run = self.machine.run
        if is_stage_terminal(run.current_stage):
            return False
        return (
            self.poll_loop.is_running
            or self._download_in_progress()
            or run.current_stage != PipelineStage.AUTHENTICATE
            or run.stage_statuses[PipelineStage.AUTHENTICATE] != StageStatus.PENDING
        )
