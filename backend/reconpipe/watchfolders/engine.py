"""
Artifact ingestion watcher.

Watches the inbound folder for finished archives, extracts each one into
its own result folder under the outbound folder, and reports every result
folder exactly once, whether it was produced by extraction here or
dropped into the outbound folder by something else.

Detection is event driven (watchdog observers) with a reconciliation scan
at startup. Extraction runs on a small worker pool.
"""

import logging
import os
import shutil
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Dict, List, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from .errors import ArchiveExtractionError, WatchFolderNotFoundError
from .extractor import attach_sidecar, extract_archive, flatten_models, unique_destination
from .models import CompletionNotice, CompletionSource, InboundFile, IngestOutcome, OutboundFolder
from .registry import InFlightRegistry, KnownFolderLedger
from .scanner import ARCHIVE_EXTENSIONS, FileScanner
from .stability import FileStabilityChecker

logger = logging.getLogger(__name__)


CompletionCallback = Callable[[CompletionNotice], None]


class _InboundHandler(FileSystemEventHandler):
    def __init__(self, watcher: "ArtifactIngestionWatcher"):
        super().__init__()
        self.watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.submit_archive(Path(os.fsdecode(event.src_path)))

    def on_closed(self, event: FileSystemEvent) -> None:
        # Writer finished (inotify only)
        if not event.is_directory:
            self.watcher.submit_archive(Path(os.fsdecode(event.src_path)))

    def on_moved(self, event: FileSystemEvent) -> None:
        # Browsers rename name.zip.crdownload -> name.zip when done
        if not event.is_directory:
            self.watcher.submit_archive(Path(os.fsdecode(event.dest_path)))


class _OutboundHandler(FileSystemEventHandler):
    def __init__(self, watcher: "ArtifactIngestionWatcher"):
        super().__init__()
        self.watcher = watcher

    def _top_level(self, raw_path) -> Optional[Path]:
        path = Path(os.fsdecode(raw_path))
        try:
            relative = path.relative_to(self.watcher.outbound_dir)
        except ValueError:
            return None
        if not relative.parts:
            return None
        return self.watcher.outbound_dir / relative.parts[0]

    def on_created(self, event: FileSystemEvent) -> None:
        folder = self._top_level(event.src_path)
        if folder is not None:
            self.watcher.submit_folder(folder)

    def on_moved(self, event: FileSystemEvent) -> None:
        folder = self._top_level(event.dest_path)
        if folder is not None:
            self.watcher.submit_folder(folder)


class ArtifactIngestionWatcher:
    """
    Inbound archive and outbound folder watcher.

    Guarantees:
    - An archive filename is processed by at most one worker at a time
    - A result folder is reported at most once (KnownFolderLedger)
    - A folder still being assembled is never reported by the outbound path
    - Every report carries the run id captured when the work started

    Warn-and-continue semantics: a failing archive is logged and left in
    place, its partial result folder is removed, and the watcher keeps running.
    """

    def __init__(
        self,
        inbound_dir: Path,
        outbound_dir: Path,
        on_completed: Optional[CompletionCallback] = None,
        run_id_provider: Optional[Callable[[], Optional[str]]] = None,
        stability: Optional[FileStabilityChecker] = None,
        sidecar_window_seconds: float = 600.0,
        retry_interval: float = 2.0,
        max_retries: int = 90,
        max_workers: int = 2,
        use_polling: bool = False,
    ):
        """
        Args:
            inbound_dir: Folder archives are downloaded into
            outbound_dir: Folder result folders are published into
            on_completed: Called once per reported result folder
            run_id_provider: Returns the id of the current pipeline run
            stability: Archive stability checker (defaults: 1 KiB, 5s settle)
            sidecar_window_seconds: Screenshots newer than this are attached
            retry_interval: Seconds between re-checks of unstable archives
            max_retries: Re-checks before an unstable archive is given up on
            max_workers: Extraction worker threads
            use_polling: Use a polling observer (network shares, containers)
        """
        self.inbound_dir = Path(inbound_dir).absolute()
        self.outbound_dir = Path(outbound_dir).absolute()
        self.on_completed = on_completed
        self.run_id_provider = run_id_provider
        self.stability = stability or FileStabilityChecker()
        self.sidecar_window_seconds = sidecar_window_seconds
        self.retry_interval = retry_interval
        self.max_retries = max_retries
        self.max_workers = max_workers
        self.use_polling = use_polling

        self.scanner = FileScanner()
        self.in_flight = InFlightRegistry()
        self.ledger = KnownFolderLedger()

        self._lock = threading.Lock()
        self._timers: Dict[str, threading.Timer] = {}
        self._attempts: Dict[str, int] = {}
        self._observers: List = []
        self._executor: Optional[ThreadPoolExecutor] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    # Lifecycle

    def start(self) -> None:
        """
        Reconcile both folders, then start the observers.

        Result folders already present in the outbound folder are recorded
        as known without being reported. Waiting archives are processed.
        """
        if self._running:
            logger.debug("Ingestion watcher already running")
            return

        self.inbound_dir.mkdir(parents=True, exist_ok=True)
        self.outbound_dir.mkdir(parents=True, exist_ok=True)

        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="ingest"
        )
        self._running = True

        self.reconcile()

        observer_cls = PollingObserver if self.use_polling else Observer
        inbound_observer = observer_cls()
        inbound_observer.schedule(_InboundHandler(self), str(self.inbound_dir), recursive=False)
        outbound_observer = observer_cls()
        outbound_observer.schedule(_OutboundHandler(self), str(self.outbound_dir), recursive=True)
        for observer in (inbound_observer, outbound_observer):
            observer.daemon = True
            observer.start()
        self._observers = [inbound_observer, outbound_observer]

        logger.info(f"Watching {self.inbound_dir} (archives) and {self.outbound_dir} (results)")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """
        Stop and join both observers and cancel pending retries.

        An extraction already running is not interrupted; it finishes on its
        worker thread and still reports its folder.
        """
        if not self._running:
            return
        self._running = False

        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
            self._attempts.clear()
        for timer in timers:
            timer.cancel()

        for observer in self._observers:
            observer.stop()
        for observer in self._observers:
            observer.join(timeout)
        self._observers = []

        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

        logger.info("Ingestion watcher stopped")

    def reconcile(self) -> None:
        """Startup scan of both folders, see start()."""
        if not self.inbound_dir.is_dir():
            raise WatchFolderNotFoundError(f"Inbound folder does not exist: {self.inbound_dir}")

        folders = self.scanner.scan_folders(self.outbound_dir)
        existing = [f.name for f in folders if self._is_non_empty(f)]
        self.ledger.seed(existing)
        if existing:
            logger.info(f"Recorded {len(existing)} existing result folder(s) as known")

        archives = self.scanner.scan_archives(self.inbound_dir)
        if archives:
            logger.info(f"Found {len(archives)} archive(s) waiting in {self.inbound_dir}")
        for archive in archives:
            self.submit_archive(archive)

    # Work submission

    def submit_archive(self, path: Path) -> None:
        """Queue an archive for processing (synchronous when not started)."""
        self._submit(self._process_archive, path)

    def submit_folder(self, path: Path) -> None:
        """Queue an outbound folder check (synchronous when not started)."""
        self._submit(self._process_folder, path)

    def _submit(self, fn, path: Path) -> None:
        executor = self._executor
        if executor is None:
            self._guarded(fn, path)
            return
        try:
            executor.submit(self._guarded, fn, path)
        except RuntimeError:
            logger.debug(f"Watcher shutting down, dropped {path.name}")

    def _guarded(self, fn, path: Path) -> None:
        try:
            fn(path)
        except Exception as e:
            logger.error(f"Unexpected error processing {path}: {e}")

    def _process_archive(self, path: Path) -> None:
        key = f"archive:{path}"
        outcome = self.handle_archive(path)
        if outcome == IngestOutcome.UNSTABLE:
            self._schedule_retry(key, self._process_archive, path)
        else:
            with self._lock:
                self._attempts.pop(key, None)

    def _process_folder(self, path: Path) -> None:
        key = f"folder:{path.name}"
        if self.handle_outbound_folder(path) is None:
            self._schedule_retry(key, self._process_folder, path)
        else:
            with self._lock:
                self._attempts.pop(key, None)

    def _schedule_retry(self, key: str, fn, path: Path) -> None:
        with self._lock:
            if not self._running or key in self._timers:
                return
            attempts = self._attempts.get(key, 0) + 1
            if attempts > self.max_retries:
                self._attempts.pop(key, None)
                logger.warning(f"Giving up on {path.name} after {self.max_retries} re-checks")
                return
            self._attempts[key] = attempts
            timer = threading.Timer(self.retry_interval, self._fire_retry, args=(key, fn, path))
            timer.daemon = True
            self._timers[key] = timer
        timer.start()

    def _fire_retry(self, key: str, fn, path: Path) -> None:
        with self._lock:
            self._timers.pop(key, None)
            if not self._running:
                return
        self._submit(fn, path)

    # Archive path

    def handle_archive(self, path: Path) -> IngestOutcome:
        """
        Process one inbound archive.

        Extract into outbound/<archive stem>, flatten model files, attach
        recent screenshots, report the folder, then delete the archive.
        If extraction fails the archive is left in place and the partly
        written folder is removed, so a retry lands in the same folder.
        """
        path = Path(path)
        if path.name.startswith(".") or path.suffix.lower() not in ARCHIVE_EXTENSIONS:
            return IngestOutcome.IGNORED

        check = self.stability.check_stability(path)
        if not check.is_stable:
            if check.size_bytes is None:
                logger.debug(f"Archive gone before processing: {path.name}")
                return IngestOutcome.MISSING
            logger.debug(f"Archive not ready: {path.name} - {check.reason}")
            return IngestOutcome.UNSTABLE

        run_id = self._current_run_id()
        destination = self.outbound_dir / path.stem
        if self._is_non_empty(destination) and not self.in_flight.is_destination_busy(destination.name):
            destination = unique_destination(destination)
        owns_destination = not self._is_non_empty(destination)

        if self.in_flight.acquire(path.name, destination.name, run_id) is None:
            logger.debug(f"Archive already in flight: {path.name}")
            return IngestOutcome.IN_FLIGHT

        started = False
        reported = False
        try:
            if not path.exists():
                return IngestOutcome.MISSING

            started = True
            extract_archive(path, destination)
            try:
                flatten_models(destination)
            except OSError as e:
                raise ArchiveExtractionError(path.name, f"could not flatten model files: {e}") from e
            sidecar = self._attach_screenshots(destination)

            reported = True
            self._report(destination, CompletionSource.EXTRACTION, run_id, sidecar)

            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Could not delete processed archive {path.name}: {e}")
            return IngestOutcome.EXTRACTED

        except ArchiveExtractionError as e:
            logger.error(f"{e} (archive left in place)")
            return IngestOutcome.FAILED
        finally:
            # Must happen before release: once released, a leftover folder
            # looks like a finished drop to the outbound path.
            if started and not reported and owns_destination:
                self._discard_partial(destination)
            self.in_flight.release(path.name)

    def _discard_partial(self, destination: Path) -> None:
        shutil.rmtree(destination, ignore_errors=True)
        if destination.exists():
            logger.warning(f"Could not remove partly extracted folder {destination}")
        else:
            logger.info(f"Removed partly extracted folder {destination.name}")

    def _attach_screenshots(self, destination: Path) -> Optional[str]:
        """Move every recent screenshot into ``destination``; returns the newest one's name."""
        newest = None
        for image in self.scanner.find_recent_images(self.inbound_dir, self.sidecar_window_seconds):
            try:
                attached = attach_sidecar(image, destination)
            except OSError as e:
                logger.warning(f"Could not attach screenshot {image.name}: {e}")
                continue
            if newest is None:
                newest = attached.name
        return newest

    # Outbound path

    def handle_outbound_folder(self, path: Path) -> Optional[bool]:
        """
        Report a result folder that appeared in the outbound folder.

        Returns:
            True if reported, False if skipped, None if the folder is still
            empty (worth re-checking later)
        """
        path = Path(path)
        if path.name.startswith(".") or not path.is_dir():
            return False
        if self.in_flight.is_destination_busy(path.name):
            return False
        if self.ledger.is_known(path.name):
            return False
        if not self._is_non_empty(path):
            return None
        return self._report(path, CompletionSource.OUTBOUND_SCAN, self._current_run_id(), None)

    # Reporting

    def _report(
        self,
        folder: Path,
        source: CompletionSource,
        run_id: Optional[str],
        sidecar: Optional[str],
    ) -> bool:
        if not self.ledger.mark_new(folder.name):
            logger.debug(f"Result folder already reported: {folder.name}")
            return False

        notice = CompletionNotice(
            folder=folder.name,
            path=str(folder),
            source=source,
            run_id=run_id,
            sidecar_image=sidecar,
        )
        logger.info(f"Result folder ready: {folder.name} (via {source.value})")

        if self.on_completed is not None:
            try:
                self.on_completed(notice)
            except Exception as e:
                logger.error(f"Completion handler failed for {folder.name}: {e}")
        return True

    # Queries

    def list_outbound_folders(self) -> List[OutboundFolder]:
        """Result folders with their files, newest first."""
        return self.scanner.list_outbound(self.outbound_dir)

    def list_inbound_files(self) -> List[InboundFile]:
        """Files waiting in the inbound folder, newest first."""
        return self.scanner.list_inbound(self.inbound_dir)

    def _current_run_id(self) -> Optional[str]:
        if self.run_id_provider is None:
            return None
        return self.run_id_provider()

    @staticmethod
    def _is_non_empty(folder: Path) -> bool:
        try:
            return folder.is_dir() and any(folder.iterdir())
        except OSError:
            return False
