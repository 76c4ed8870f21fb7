"""Transaction boundary for every write the engine performs.

A ``UnitOfWork`` owns one session and one transaction. Services record
domain events on it while they work; the events are handed to the
publisher only after the commit succeeds. If anything raises, the
transaction is rolled back and the recorded events are discarded, so
listeners never observe a change that did not persist.
"""

from __future__ import annotations

import logging
from datetime import datetime
from types import TracebackType
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from progress_engine.clock import Clock, utcnow
from progress_engine.events.publishers import EventPublisher
from shared.events.schemas import DomainEvent

logger = logging.getLogger(__name__)


class UnitOfWork:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        publisher: EventPublisher,
        *,
        clock: Clock = utcnow,
        actor_id: UUID | None = None,
    ):
        self._session_factory = session_factory
        self._publisher = publisher
        self._clock = clock
        self.actor_id = actor_id
        self._session: AsyncSession | None = None
        self._events: list[DomainEvent] = []

    @property
    def session(self) -> AsyncSession:
        if self._session is None:
            raise RuntimeError("UnitOfWork used outside of 'async with'")
        return self._session

    @property
    def pending_events(self) -> list[DomainEvent]:
        return list(self._events)

    def now(self) -> datetime:
        return self._clock()

    def record(self, event: DomainEvent) -> None:
        self._events.append(event)

    async def __aenter__(self) -> UnitOfWork:
        self._session = self._session_factory()
        self._events = []
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        session = self.session
        try:
            if exc_type is not None:
                await session.rollback()
                if self._events:
                    logger.info(
                        "Discarding %d event(s) after rollback: %s",
                        len(self._events),
                        exc_type.__name__,
                    )
                self._events = []
                return
            await session.commit()
        finally:
            await session.close()
            self._session = None

        events, self._events = self._events, []
        for event in events:
            await self._publisher.publish(event)
