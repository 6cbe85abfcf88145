"""
Event Bus - in-process fan-out of job lifecycle events.

Subscriptions are keyed by job id and live only in memory. Delivery is
synchronous and in emission order; a failing callback is logged and never
affects the emitter or the other subscribers. There is no replay: a
subscriber only sees events emitted after it subscribed.
"""

from collections import defaultdict
from collections.abc import Callable
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger()


class EventType(str, Enum):
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    CONTENT_CHANGED = "content_changed"


TERMINAL_EVENTS = frozenset({EventType.COMPLETED, EventType.FAILED, EventType.CANCELLED})

JobEvent = dict[str, Any]
EventCallback = Callable[[JobEvent], None]


class EventBus:
    def __init__(self):
        self._subscribers: dict[str, list[EventCallback]] = defaultdict(list)

    def subscribe(self, job_id: str, callback: EventCallback) -> Callable[[], None]:
        """Register callback for job_id; returns an idempotent unsubscribe."""
        self._subscribers[job_id].append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(job_id)
            if not callbacks:
                return
            try:
                callbacks.remove(callback)
            except ValueError:
                return
            if not callbacks:
                del self._subscribers[job_id]

        return unsubscribe

    def emit(self, job_id: str, event_type: EventType, **payload: Any) -> int:
        """Deliver an event to every current subscriber. Returns the delivery count."""
        event: JobEvent = {"type": EventType(event_type).value, "job_id": job_id, **payload}
        delivered = 0
        # Copy: callbacks may unsubscribe themselves while we iterate
        for callback in list(self._subscribers.get(job_id, ())):
            try:
                callback(event)
                delivered += 1
            except Exception as e:
                logger.error(
                    "Event subscriber failed",
                    job_id=job_id,
                    event_type=event["type"],
                    error=str(e),
                )
        return delivered

    def subscriber_count(self, job_id: str) -> int:
        return len(self._subscribers.get(job_id, ()))
