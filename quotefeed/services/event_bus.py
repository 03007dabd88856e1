"""
Event Bus
Publish/subscribe fan-out of typed events to registered handlers.
"""

import asyncio
import inspect
import logging
from typing import Callable, Dict, List, Set, Union

from quotefeed.schemas.realtime import BaseEvent, EventType

logger = logging.getLogger("event_bus")

ANY_EVENT = "*"

EventHandler = Callable[[BaseEvent], object]


class EventBus:
    """
    Maps event type to an ordered list of handlers.

    Handlers registered under ``"*"`` receive every event. A failing handler
    is logged and never stops delivery to the others. Coroutine handlers are
    scheduled as tasks on the running loop.
    """

    def __init__(self):
        self._listeners: Dict[str, List[EventHandler]] = {}
        self._pending: Set[asyncio.Task] = set()
        self.emitted_count = 0

    @staticmethod
    def _key(event_type: Union[str, EventType]) -> str:
        return event_type.value if isinstance(event_type, EventType) else event_type

    def on(self, event_type: Union[str, EventType], handler: EventHandler) -> Callable[[], None]:
        """Register a handler; returns a function that unregisters it."""
        key = self._key(event_type)
        handlers = self._listeners.setdefault(key, [])
        if handler not in handlers:
            handlers.append(handler)

        def _unsubscribe() -> None:
            self.off(key, handler)

        return _unsubscribe

    def on_any(self, handler: EventHandler) -> Callable[[], None]:
        return self.on(ANY_EVENT, handler)

    def off(self, event_type: Union[str, EventType], handler: EventHandler) -> None:
        handlers = self._listeners.get(self._key(event_type))
        if handlers and handler in handlers:
            handlers.remove(handler)

    def emit(self, event: BaseEvent) -> None:
        """Deliver an event to its handlers, then to wildcard handlers."""
        self.emitted_count += 1
        handlers = list(self._listeners.get(event.type, [])) + list(self._listeners.get(ANY_EVENT, []))

        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    self._schedule(result, event.type)
            except Exception as e:
                logger.error(f"[event_bus] Error in event listener for {event.type}: {e}", exc_info=True)

    def _schedule(self, awaitable, event_type: str) -> None:
        async def _run():
            try:
                await awaitable
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[event_bus] Error in async listener for {event_type}: {e}", exc_info=True)

        task = asyncio.ensure_future(_run())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def listener_count(self, event_type: Union[str, EventType, None] = None) -> int:
        if event_type is None:
            return sum(len(handlers) for handlers in self._listeners.values())
        return len(self._listeners.get(self._key(event_type), []))

    def clear(self) -> None:
        """Drop every handler and cancel pending async deliveries."""
        self._listeners.clear()
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()
