"""
Event bus for billing domain events.

Synchronous in-process pub/sub, used only for side effects that follow a
committed write (receipts, recurring-invoice emails). A failing handler is
logged and skipped; it never reaches the publisher.
"""

import logging
from collections import defaultdict
from typing import Callable, Dict, List

from core.events import BillingEvent

logger = logging.getLogger(__name__)

Handler = Callable[[BillingEvent], None]


class EventBus:
    """
    In-process event bus.

    Subscribe by event class (or its name), publish by event instance.
    Handlers run in subscription order in the publisher's thread.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type[BillingEvent] | str, callback: Handler) -> None:
        name = event_type if isinstance(event_type, str) else event_type.__name__
        self._subscribers[name].append(callback)

    def has_subscribers(self, event_type: type[BillingEvent] | str) -> bool:
        name = event_type if isinstance(event_type, str) else event_type.__name__
        return bool(self._subscribers.get(name))

    def publish(self, event: BillingEvent) -> int:
        """
        Deliver ``event`` to its subscribers.

        Returns:
            Number of handlers that raised
        """
        event_type = event.__class__.__name__
        failures = 0

        for callback in self._subscribers.get(event_type, []):
            try:
                callback(event)
            except Exception:
                failures += 1
                logger.exception(
                    "Handler %s failed for %s (event_id=%s)",
                    getattr(callback, "__name__", repr(callback)),
                    event_type,
                    event.event_id,
                )

        return failures
