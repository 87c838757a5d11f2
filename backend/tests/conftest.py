"""
Shared fixtures for the reconpipe test suite.

No real browser, device or network is used: the web automation driver is
a scripted fake and the turntable is the recording NullTurntable.
"""

import os
import sys
import threading
import time
import zipfile
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import pytest

# Add backend directory to path if not already there
_backend_dir = Path(__file__).parent.parent.resolve()
if str(_backend_dir) not in sys.path:
    sys.path.insert(0, str(_backend_dir))

from reconpipe.events import EventBus, EventRecorder
from reconpipe.persistence import RecoveryStore
from reconpipe.pipeline import StageStateMachine
from reconpipe.settings import PipelineSettings
from reconpipe.tracker import JobObservation


JobList = Union[List[JobObservation], Exception]


def jobs(*cards) -> List[JobObservation]:
    """Build a job list from (title, status_text) pairs."""
    return [JobObservation(title=title, status_text=status) for title, status in cards]


class FakeDriver:
    """
    Scripted web automation driver.

    ``job_lists`` is consumed one entry per list_jobs() call; the last
    entry repeats once the script runs out. An Exception entry is raised.
    """

    def __init__(
        self,
        job_lists: Optional[List[JobList]] = None,
        login_result: Union[bool, Exception] = True,
        submit_result: Union[bool, Exception] = True,
        download: Optional[Callable[[], str]] = None,
        screenshot: Optional[Callable[[], Optional[str]]] = None,
    ):
        self.job_lists = list(job_lists or [[]])
        self.login_result = login_result
        self.submit_result = submit_result
        self.download = download
        self.screenshot = screenshot
        self.calls: List[str] = []
        self._lock = threading.Lock()
        self._index = 0

    def _record(self, name: str) -> None:
        with self._lock:
            self.calls.append(name)

    def count(self, name: str) -> int:
        with self._lock:
            return self.calls.count(name)

    @staticmethod
    def _result(value):
        if isinstance(value, Exception):
            raise value
        return value

    def login(self) -> bool:
        self._record("login")
        return self._result(self.login_result)

    def submit_capture(self) -> bool:
        self._record("submit_capture")
        return self._result(self.submit_result)

    def navigate(self, url: str) -> None:
        self._record("navigate")

    def find_first(self, selectors):
        self._record("find_first")
        return None

    def click(self, element) -> None:
        self._record("click")

    def fill_field(self, element, value: str) -> None:
        self._record("fill_field")

    def list_jobs(self) -> List[JobObservation]:
        self._record("list_jobs")
        with self._lock:
            entry = self.job_lists[min(self._index, len(self.job_lists) - 1)]
            self._index += 1
        if callable(entry) and not isinstance(entry, list):
            entry = entry()
        return self._result(entry)

    def download_current_artifact(self) -> str:
        self._record("download_current_artifact")
        if self.download is None:
            return ""
        return self.download()

    def take_screenshot(self) -> Optional[str]:
        self._record("take_screenshot")
        if self.screenshot is None:
            return None
        return self.screenshot()


def write_archive(path: Path, members: Dict[str, bytes], age_seconds: float = 0.0) -> Path:
    """
    Write a zip archive atomically (temporary name, then rename), the way
    a browser finishes a download. ``age_seconds`` backdates its mtime.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    partial = path.with_name(path.name + ".crdownload")
    with zipfile.ZipFile(partial, "w") as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    if age_seconds:
        backdate(partial, age_seconds)
    os.replace(partial, path)
    return path


def backdate(path: Path, seconds: float) -> None:
    stamp = time.time() - seconds
    os.utime(path, (stamp, stamp))


def wait_for(condition: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll ``condition`` until it holds or ``timeout`` passes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(interval)
    return condition()


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus: EventBus) -> EventRecorder:
    return EventRecorder(bus)


@pytest.fixture
def machine(bus: EventBus) -> StageStateMachine:
    return StageStateMachine(bus)


@pytest.fixture
def store(tmp_path: Path) -> RecoveryStore:
    return RecoveryStore(str(tmp_path / "recovery.db"))


@pytest.fixture
def inbound(tmp_path: Path) -> Path:
    path = tmp_path / "downloads"
    path.mkdir()
    return path


@pytest.fixture
def outbound(tmp_path: Path) -> Path:
    path = tmp_path / "extracted"
    path.mkdir()
    return path


@pytest.fixture
def settings(tmp_path: Path, inbound: Path, outbound: Path) -> PipelineSettings:
    """Fast settings: tiny intervals, no settle time, tmp folders."""
    return PipelineSettings(
        poll_interval=0.01,
        max_poll_attempts=500,
        download_timeout=5.0,
        download_check_interval=0.02,
        download_settle_seconds=0.0,
        min_archive_bytes=1,
        inbound_dir=str(inbound),
        outbound_dir=str(outbound),
        db_path=str(tmp_path / "recovery.db"),
    )
