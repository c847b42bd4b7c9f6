# File: src/parking_facility/infrastructure/messaging.py
"""
In-process event bus for the facility's domain events

Handlers subscribe to an event class and receive every published event that
is an instance of it, so subscribing to DomainEvent receives everything.
"""

from typing import Callable, Dict, List, Type
import logging
import threading

from ..domain.models import DomainEvent

EventHandler = Callable[[DomainEvent], None]


class EventBus:
    """
    In-memory event bus for intra-process event publishing

    A failing handler is logged and skipped; the remaining handlers still
    receive the event.
    """

    def __init__(self):
        self._subscribers: Dict[Type[DomainEvent], List[EventHandler]] = {}
        self._lock = threading.Lock()
        self._logger = logging.getLogger(self.__class__.__name__)

    def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        """Subscribe to events of a specific type"""
        with self._lock:
            handlers = self._subscribers.setdefault(event_type, [])
            if handler not in handlers:
                handlers.append(handler)
                self._logger.debug(f"Subscribed {_handler_name(handler)} to {event_type.__name__}")

    def unsubscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        """Unsubscribe handler from events"""
        with self._lock:
            handlers = self._subscribers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)
                self._logger.debug(f"Unsubscribed {_handler_name(handler)} from {event_type.__name__}")

    def publish(self, event: DomainEvent) -> int:
        """
        Publish an event to all matching subscribers
        Returns: the number of handlers that completed without error
        """
        self._logger.info(f"Publishing event: {event.__class__.__name__} (ID: {event.event_id})")

        with self._lock:
            handlers = [
                handler
                for event_type, subscribed in self._subscribers.items()
                if isinstance(event, event_type)
                for handler in subscribed
            ]

        delivered = 0
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
                self._logger.debug(f"Event handled by {_handler_name(handler)}")
            except Exception as e:
                self._logger.error(
                    f"Error handling event {event.__class__.__name__} with {_handler_name(handler)}: {e}",
                    exc_info=True
                )
        return delivered

    def subscriber_count(self, event_type: Type[DomainEvent]) -> int:
        return len(self._subscribers.get(event_type, []))


def _handler_name(handler: EventHandler) -> str:
    return getattr(handler, '__name__', handler.__class__.__name__)
