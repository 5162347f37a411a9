"""Read-only access to the upstream events and their attached result sets."""

from __future__ import annotations

from datetime import date
from typing import Any, Protocol

from sqlalchemy import and_, desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from records_engine.db.models import Event, EventResultSet
from records_engine.schemas.results import EventMeta

# Keyset cursor: the ``(date, event_id)`` of the last event on the previous page.
EventCursor = tuple[date, str]


class EventSource(Protocol):
    """Paginated, date-descending view over the upstream event collection."""

    async def fetch_event_page(
        self,
        *,
        since: date | None = None,
        until: date | None = None,
        after: EventCursor | None = None,
        limit: int,
    ) -> list[EventMeta]:
        """Return up to ``limit`` events ordered by date descending then id.

        ``since``/``until`` are inclusive bounds. ``after`` resumes strictly
        after the given cursor in that ordering.
        """

    async def fetch_results(self, event_id: str) -> list[dict[str, Any]] | None:
        """Return the raw result payloads of an event or ``None`` if none exist."""

    async def get_event(self, event_id: str) -> EventMeta | None:
        """Return one event's metadata."""

    async def earliest_event_date(self) -> date | None:
        """Return the date of the oldest event, or ``None`` for an empty source."""


def _to_meta(event: Event) -> EventMeta:
    return EventMeta(
        event_id=event.id,
        name=event.name,
        date=event.date,
        city=event.city,
        state=event.state,
    )


class SqlEventSource:
    """:class:`EventSource` backed by the ``events`` and ``event_results`` tables.

    Every call opens its own session so the reader can fetch several result
    sets concurrently.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def fetch_event_page(
        self,
        *,
        since: date | None = None,
        until: date | None = None,
        after: EventCursor | None = None,
        limit: int,
    ) -> list[EventMeta]:
        query = select(Event).order_by(desc(Event.date), Event.id).limit(limit)

        if since is not None:
            query = query.where(Event.date >= since)
        if until is not None:
            query = query.where(Event.date <= until)
        if after is not None:
            cursor_date, cursor_id = after
            query = query.where(
                or_(
                    Event.date < cursor_date,
                    and_(Event.date == cursor_date, Event.id > cursor_id),
                )
            )

        async with self._session_factory() as session:
            result = await session.execute(query)
            events = result.scalars().all()

        return [_to_meta(event) for event in events]

    async def fetch_results(self, event_id: str) -> list[dict[str, Any]] | None:
        query = select(EventResultSet.records).where(EventResultSet.event_id == event_id)
        async with self._session_factory() as session:
            result = await session.execute(query)
            records = result.scalar_one_or_none()

        if records is None:
            return None
        return list(records)

    async def get_event(self, event_id: str) -> EventMeta | None:
        async with self._session_factory() as session:
            event = await session.get(Event, event_id)
            if event is None:
                return None
            return _to_meta(event)

    async def earliest_event_date(self) -> date | None:
        async with self._session_factory() as session:
            result = await session.execute(select(func.min(Event.date)))
            return result.scalar_one_or_none()


__all__ = ["EventCursor", "EventSource", "SqlEventSource"]
