"""In-process domain events.

The candidate result tracker publishes ``CandidateResultsChanged`` whenever a
candidate's result set changes; the order service subscribes and reconciles
order completion. Handlers run sequentially on the publisher's session, and a
failing handler is logged without affecting the publisher or other handlers.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DomainEvent:
    pass


@dataclass(frozen=True)
class CandidateResultsChanged(DomainEvent):
    candidate_id: int


EventHandler = Callable[[AsyncSession, DomainEvent], Awaitable[None]]


class EventDispatcher:
    def __init__(self):
        self._handlers: dict[type, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: EventHandler | None = None):
        """Register a handler; usable directly or as a decorator."""
        def register(func: EventHandler) -> EventHandler:
            if func not in self._handlers[event_type]:
                self._handlers[event_type].append(func)
            return func

        if handler is not None:
            return register(handler)
        return register

    def unsubscribe(self, event_type: type, handler: EventHandler) -> None:
        if handler in self._handlers.get(event_type, []):
            self._handlers[event_type].remove(handler)

    def handler_count(self, event_type: type) -> int:
        return len(self._handlers.get(event_type, []))

    async def publish(self, db: AsyncSession, event: DomainEvent) -> None:
        for handler in list(self._handlers.get(type(event), [])):
            try:
                await handler(db, event)
            except Exception:
                logger.exception("Handler %s failed for %s", getattr(handler, "__name__", handler), event)
                await db.rollback()


event_dispatcher = EventDispatcher()
