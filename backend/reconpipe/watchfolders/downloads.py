"""
Download completion monitor.

Waits for a browser download to finish in a downloads directory by
comparing its listing against a baseline taken before the download was
requested.
"""

import logging
import threading
import time
from pathlib import Path
from typing import List, Optional, Set

from .errors import DownloadTimeoutError
from .stability import FileStabilityChecker

logger = logging.getLogger(__name__)


DEFAULT_DOWNLOAD_TIMEOUT = 120.0
DEFAULT_CHECK_INTERVAL = 2.0


class DownloadMonitor:
    """
    Poll-based download detector.

    A download is finished when the directory holds more files than the
    baseline and every new file passes the stability check.
    """

    def __init__(
        self,
        directory: Path,
        stability: Optional[FileStabilityChecker] = None,
        timeout: float = DEFAULT_DOWNLOAD_TIMEOUT,
        interval: float = DEFAULT_CHECK_INTERVAL,
    ):
        self.directory = Path(directory)
        self.stability = stability or FileStabilityChecker()
        self.timeout = timeout
        self.interval = interval
        self._cancel = threading.Event()

    def snapshot(self) -> Set[str]:
        """Names of the files currently in the downloads directory."""
        if not self.directory.is_dir():
            return set()
        return {p.name for p in self.directory.iterdir() if p.is_file()}

    def cancel(self) -> None:
        """Abort a wait in progress."""
        self._cancel.set()

    def check(self, baseline: Set[str]) -> List[Path]:
        """
        One poll. Returns the finished new files, or an empty list.
        """
        current = self.snapshot()
        if len(current) <= len(baseline):
            return []

        new_names = sorted(current - baseline)
        if not new_names:
            return []

        new_files = [self.directory / name for name in new_names]
        for path in new_files:
            result = self.stability.check_stability(path)
            if not result.is_stable:
                logger.debug(f"Download not finished yet: {path.name} ({result.reason})")
                return []
        return new_files

    def wait_for_download(
        self,
        baseline: Set[str],
        timeout: Optional[float] = None,
        interval: Optional[float] = None,
    ) -> List[Path]:
        """
        Block until a finished download appears.

        Raises:
            DownloadTimeoutError: If nothing finished within the timeout
                (or the wait was cancelled)
        """
        timeout = self.timeout if timeout is None else timeout
        interval = self.interval if interval is None else interval
        self._cancel.clear()
        deadline = time.monotonic() + timeout

        logger.info(f"Waiting up to {timeout:g}s for a download in {self.directory}")
        while True:
            finished = self.check(baseline)
            if finished:
                logger.info(f"Download finished: {', '.join(p.name for p in finished)}")
                return finished

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            if self._cancel.wait(min(interval, remaining)):
                logger.info("Download wait cancelled")
                break

        raise DownloadTimeoutError(str(self.directory), timeout)
