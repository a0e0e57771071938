"""
In-process pub/sub for auth events.

Delivery is synchronous, on the publisher's thread, in subscription order.
A failing handler is logged and skipped; it never reaches the publisher,
whose state change has already happened.
"""

import logging
from collections import defaultdict
from typing import Callable

from core.events import AuthEvent

logger = logging.getLogger(__name__)

Handler = Callable[[AuthEvent], None]


class EventBus:
    """Handlers keyed by event class name, e.g. ``"SessionChanged"``."""

    def __init__(self):
        self._handlers: defaultdict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: str, callback: Handler) -> Callable[[], None]:
        """Register callback for event_type.

        Returns:
            Function that removes the subscription (safe to call twice).
        """
        self._handlers[event_type].append(callback)

        def unsubscribe() -> None:
            handlers = self._handlers[event_type]
            if callback in handlers:
                handlers.remove(callback)

        return unsubscribe

    def publish(self, event: AuthEvent) -> None:
        event_type = type(event).__name__
        # Snapshot: handlers may unsubscribe while being notified
        for callback in tuple(self._handlers.get(event_type, ())):
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Handler %s failed for %s (event_id=%s)",
                    getattr(callback, "__name__", repr(callback)),
                    event_type,
                    event.event_id,
                )
