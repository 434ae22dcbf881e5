"""
Tickler Event Bus.

Scheduler components never call each other for observability; they emit
events. An emitted event first passes through the middleware chain (the
JSONL event logger lives there), then reaches every subscriber whose
pattern matches its type.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
from typing import Awaitable, Callable

from tickler.core.events import Event

logger = logging.getLogger(__name__)

EventHandler = Callable[[Event], Awaitable[None]]
MiddlewareNext = Callable[[Event], Awaitable[Event]]
MiddlewareFunc = Callable[[Event, MiddlewareNext], Awaitable[Event]]


class EventBus:
    """
    Publish/subscribe event bus with middleware pipeline.

    Usage:
        bus = EventBus()
        bus.on("intent:failed", page_someone)
        bus.on("intent:*", on_any_intent_event)
        bus.use(event_logger.middleware)

        await bus.emit(Event(type=EventType.INTENT_FIRED, data={...}))
    """

    def __init__(self) -> None:
        self._subscribers: list[tuple[str, EventHandler]] = []
        self._middleware: list[MiddlewareFunc] = []

    def on(self, pattern: str, handler: EventHandler) -> None:
        """Subscribe to events whose type matches `pattern` ('intent:*', '*')."""
        self._subscribers.append((pattern, handler))

    def use(self, middleware: MiddlewareFunc) -> None:
        """
        Append middleware. Earlier middleware wraps later middleware.

            async def mw(event: Event, next: MiddlewareNext) -> Event:
                return await next(event)
        """
        self._middleware.append(middleware)

    async def emit(self, event: Event) -> Event:
        """
        Run the event through middleware, then deliver it to every matching
        subscriber concurrently.

        Subscriber failures are logged and never reach the emitter, so a
        broken listener cannot fail a schedule or a fire.
        """
        return await self._chain(0, event)

    async def _chain(self, index: int, event: Event) -> Event:
        if index == len(self._middleware):
            await self._deliver(event)
            return event
        return await self._middleware[index](event, lambda e: self._chain(index + 1, e))

    async def _deliver(self, event: Event) -> None:
        handlers = [h for pattern, h in self._subscribers if _matches(pattern, event.type)]
        if not handlers:
            return
        results = await asyncio.gather(*(h(event) for h in handlers), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Subscriber error for {event.type}: {result}", exc_info=result)


def _matches(pattern: str, event_type: str) -> bool:
    if pattern == event_type or pattern == "*":
        return True
    return "*" in pattern and fnmatch.fnmatch(event_type, pattern)
