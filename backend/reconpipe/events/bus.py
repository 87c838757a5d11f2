"""
Process-wide publish/subscribe channel for progress events.

Delivery is best-effort: a subscriber that raises is logged and skipped,
it never blocks delivery to the others or the publisher. Nothing is
persisted; a subscriber only sees events published while it is attached.
"""

import logging
import threading
from typing import Callable, Dict, List, Optional

from .models import EventStep, ProgressEvent

logger = logging.getLogger(__name__)

Subscriber = Callable[[ProgressEvent], None]


class EventBus:
    """
    Fan-out event bus.

    Subscribers are plain callables invoked synchronously on the
    publishing thread, in subscription order.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: Dict[int, Subscriber] = {}
        self._next_token = 0

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Attach a subscriber.

        Returns:
            Callable that detaches the subscriber (idempotent).
        """
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscribers[token] = callback

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(token, None)

        return unsubscribe

    def publish(self, event: ProgressEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers.values())

        logger.debug(f"Publishing {event.step.value} event to {len(subscribers)} subscriber(s)")

        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Event subscriber failed on {event.step.value} event: {e}")

    def emit(
        self,
        step: EventStep,
        message: str = "",
        run_id: Optional[str] = None,
        **payload,
    ) -> ProgressEvent:
        """Build and publish an event in one call."""
        event = ProgressEvent(step=step, message=message, run_id=run_id, payload=payload)
        self.publish(event)
        return event

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)


class EventRecorder:
    """
    Subscriber that keeps every event it receives.

    Used by tests to observe the bus.
    """

    def __init__(self, bus: Optional[EventBus] = None):
        self._lock = threading.Lock()
        self._events: List[ProgressEvent] = []
        self._unsubscribe: Optional[Callable[[], None]] = None
        if bus is not None:
            self.attach(bus)

    def attach(self, bus: EventBus) -> None:
        self._unsubscribe = bus.subscribe(self)

    def detach(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def __call__(self, event: ProgressEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> List[ProgressEvent]:
        with self._lock:
            return list(self._events)

    def steps(self) -> List[EventStep]:
        return [e.step for e in self.events]

    def count(self, step: EventStep) -> int:
        return sum(1 for e in self.events if e.step == step)

    def last(self) -> Optional[ProgressEvent]:
        with self._lock:
            return self._events[-1] if self._events else None

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
