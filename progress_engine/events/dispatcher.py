"""Route domain events to their listeners.

Each listener runs in its own ``UnitOfWork``: a failing listener rolls
back only its own cascade and propagates, leaving the retry to the queue.
Events a listener records are published after its commit, so cascades
continue as further jobs rather than nested calls.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from progress_engine.clock import Clock, utcnow
from progress_engine.context import EngineContext
from progress_engine.events.publishers import EventPublisher, InMemoryEventPublisher
from progress_engine.paths import listeners as path_listeners
from progress_engine.progress import listeners as progress_listeners
from progress_engine.unit_of_work import UnitOfWork
from shared.events.schemas import DomainEvent

logger = logging.getLogger(__name__)

Listener = Callable[[UnitOfWork, EngineContext, Any], Awaitable[None]]

LISTENERS: dict[str, list[Listener]] = {
    "enrollment.completed": [path_listeners.update_path_progress_on_course_completion],
    "enrollment.dropped": [path_listeners.update_path_progress_on_course_drop],
    "enrollment.course_started": [path_listeners.start_path_course_on_course_started],
    "progress.lesson_deleted": [progress_listeners.recalculate_on_lesson_deleted],
}


async def dispatch(
    event: DomainEvent,
    session_factory: async_sessionmaker[AsyncSession],
    publisher: EventPublisher,
    ctx: EngineContext,
    *,
    clock: Clock = utcnow,
) -> int:
    """Run every listener for ``event``. Returns how many ran."""
    handlers = LISTENERS.get(event.event_name, [])
    for handler in handlers:
        logger.info("Dispatching %s (%s) to %s", event.event_name, event.event_id, handler.__name__)
        async with UnitOfWork(
            session_factory, publisher, clock=clock, actor_id=event.actor_id
        ) as uow:
            await handler(uow, ctx, event)
    return len(handlers)


async def drain(
    publisher: InMemoryEventPublisher,
    session_factory: async_sessionmaker[AsyncSession],
    ctx: EngineContext,
    *,
    clock: Clock = utcnow,
    max_rounds: int = 50,
) -> list[DomainEvent]:
    """Deliver queued events until the cascade settles. Used in-process by tests and local runs."""
    handled: list[DomainEvent] = []
    for _ in range(max_rounds):
        batch = publisher.take()
        if not batch:
            return handled
        for event in batch:
            await dispatch(event, session_factory, publisher, ctx, clock=clock)
            handled.append(event)
    raise RuntimeError(f"Event cascade did not settle after {max_rounds} rounds")
