"""
Simple asynchronous event bus carrying structured optimization events.
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from models.events import OptimizationEvent

logger_event_bus = logging.getLogger(__name__)

EventCallback = Callable[[OptimizationEvent], Coroutine[Any, Any, None]]


class EventBus:
    """Publish/subscribe bus between the loop components and their observers"""

    def __init__(self):
        self.subscribers: dict[str, list[EventCallback]] = {}
        self.published_count = 0

    def subscribe(self, event_type: str, callback: EventCallback) -> None:
        """Subscribe to an event type."""
        if not callable(callback):
            raise TypeError("Callback must be a callable async function.")
        if event_type not in self.subscribers:
            self.subscribers[event_type] = []
        if callback not in self.subscribers[event_type]:  # Avoid duplicate subscriptions
            self.subscribers[event_type].append(callback)
            logger_event_bus.debug(f"Callback {getattr(callback, '__name__', callback)} subscribed to {event_type}")
        else:
            logger_event_bus.warning(f"Callback {getattr(callback, '__name__', callback)} already subscribed to {event_type}")

    def unsubscribe(self, event_type: str, callback: EventCallback) -> None:
        """Unsubscribe a specific callback from an event type."""
        if event_type in self.subscribers:
            try:
                self.subscribers[event_type].remove(callback)
                if not self.subscribers[event_type]:  # Clean up empty list
                    del self.subscribers[event_type]
            except ValueError:
                logger_event_bus.warning(f"Callback {getattr(callback, '__name__', callback)} not found for event type {event_type}")

    async def publish(self, event: OptimizationEvent) -> None:
        """Publish an event to subscribers. Subscriber errors are logged, never propagated."""
        if not isinstance(event, OptimizationEvent):
            logger_event_bus.error(f"Attempted to publish invalid event type: {type(event)}")
            return

        self.published_count += 1
        logger_event_bus.debug(f"Event published: {event.event_type} from {event.source.value}")
        callbacks = list(self.subscribers.get(event.event_type, []))
        if not callbacks:
            return
        tasks = [asyncio.create_task(callback(event)) for callback in callbacks]
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for callback, result in zip(callbacks, results):
            if isinstance(result, Exception):
                logger_event_bus.error(
                    f"Error in subscriber callback '{getattr(callback, '__name__', callback)}' for event {event.event_type}: {result}"
                )
