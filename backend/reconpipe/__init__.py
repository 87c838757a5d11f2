"""
reconpipe - job orchestration and artifact ingestion for a 3D capture station.

Public API:
    PipelineOrchestrator - start / stop_monitoring / reset / resume_on_startup
    PipelineSettings - Validated configuration (RECONPIPE_* environment)
    EventBus, ProgressEvent, EventStep - Progress notifications
"""

from .events import EventBus, EventStep, ProgressEvent
from .orchestrator import PipelineOrchestrator
from .settings import PipelineSettings

__version__ = "0.1.0"

__all__ = [
    "EventBus",
    "EventStep",
    "ProgressEvent",
    "PipelineOrchestrator",
    "PipelineSettings",
]
