"""
Collaborator interfaces.

The pipeline depends on two external collaborators whose internals are out
of scope here:

- WebAutomationDriver: drives the reconstruction service's web UI
  (login, capture submission, job list, artifact export).
- TurntableController: the capture turntable/motor.

Every driver call is fallible and must either succeed or raise a
DriverError subclass. There are no partial results.
"""

import importlib
import logging
from typing import TYPE_CHECKING, Any, List, Optional, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:
    from .tracker.models import JobObservation

logger = logging.getLogger(__name__)


class DriverError(Exception):
    """Base exception for web automation driver failures."""
    pass


class DriverUnavailableError(DriverError):
    """The automation driver or the page behind it cannot be reached."""
    pass


@runtime_checkable
class WebAutomationDriver(Protocol):
    """Operations consumed from the web automation driver."""

    def login(self) -> bool: ...

    def submit_capture(self) -> bool: ...

    def navigate(self, url: str) -> None: ...

    def find_first(self, selectors: Sequence[str]) -> Optional[Any]: ...

    def click(self, element: Any) -> None: ...

    def fill_field(self, element: Any, value: str) -> None: ...

    def list_jobs(self) -> List["JobObservation"]: ...

    def download_current_artifact(self) -> str: ...

    def take_screenshot(self) -> Optional[str]: ...


@runtime_checkable
class TurntableController(Protocol):
    """Fire-and-forget turntable commands."""

    def rotate_forward(self) -> None: ...

    def stop(self) -> None: ...

    def motor_on(self) -> None: ...

    def motor_off(self) -> None: ...


class NullTurntable:
    """Turntable stand-in used when no device is attached. Logs each command."""

    def __init__(self) -> None:
        self.commands: List[str] = []

    def _record(self, command: str) -> None:
        self.commands.append(command)
        logger.info(f"Turntable command (no device attached): {command}")

    def rotate_forward(self) -> None:
        self._record("rotate_forward")

    def stop(self) -> None:
        self._record("stop")

    def motor_on(self) -> None:
        self._record("motor_on")

    def motor_off(self) -> None:
        self._record("motor_off")


class UnavailableDriver:
    """
    Driver used when none is configured.

    Every call raises DriverUnavailableError, so a start fails in
    Authenticate while ingestion and the HTTP surface keep working.
    """

    def __init__(self, reason: str = "No web automation driver configured"):
        self.reason = reason

    def _unavailable(self, *args: Any, **kwargs: Any):
        raise DriverUnavailableError(self.reason)

    login = submit_capture = navigate = find_first = click = fill_field = _unavailable
    list_jobs = download_current_artifact = take_screenshot = _unavailable


def load_driver(factory_path: Optional[str]) -> WebAutomationDriver:
    """
    Build the driver from a "package.module:callable" path.

    Returns an UnavailableDriver when no path is given.

    Raises:
        DriverUnavailableError: If the factory cannot be imported or called
    """
    if not factory_path:
        logger.warning("No web automation driver configured, pipeline runs will fail to authenticate")
        return UnavailableDriver()

    module_name, _, attr = factory_path.partition(":")
    if not attr:
        raise DriverUnavailableError(f"Driver path must look like 'module:callable', got {factory_path!r}")
    try:
        factory = getattr(importlib.import_module(module_name), attr)
        driver = factory()
    except Exception as e:
        raise DriverUnavailableError(f"Cannot load driver {factory_path}: {e}") from e

    logger.info(f"Loaded web automation driver from {factory_path}")
    return driver
