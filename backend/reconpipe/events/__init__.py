"""
Event bus - progress and error notifications.

Public API:
    EventStep - Pipeline step carried by each event
    ProgressEvent - Immutable event record
    EventBus - Process-wide publish/subscribe channel
    EventRecorder - Subscriber that retains received events
"""

from .models import EventStep, ProgressEvent
from .bus import EventBus, EventRecorder

__all__ = [
    "EventStep",
    "ProgressEvent",
    "EventBus",
    "EventRecorder",
]
