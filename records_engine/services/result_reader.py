"""Paginated ingestion of event result sets.

The reader is the single place where raw upstream payloads are validated and
defaulted. Everything downstream works with :class:`RawResultRecord` instances
and never re-checks optional fields.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from pydantic import ValidationError

from records_engine.db.repositories.event_source import EventCursor, EventSource
from records_engine.errors import (
    EventNotFoundError,
    PartitionReadFailure,
    SkippableRecordError,
)
from records_engine.schemas.results import EventMeta, RawResultRecord
from records_engine.services.progress import ProgressCallback, ProgressReporter, as_reporter
from records_engine.settings import DEFAULT_FETCH_CONCURRENCY, DEFAULT_READ_PAGE_SIZE

logger = logging.getLogger(__name__)

EventBatch = tuple[EventMeta, list[RawResultRecord]]


@dataclass(slots=True)
class ReadStats:
    events: int = 0
    records: int = 0
    skipped_records: int = 0
    skipped: list[SkippableRecordError] = field(default_factory=list, repr=False)


def parse_result_set(meta: EventMeta, payloads: list[Any] | None) -> tuple[list[RawResultRecord], list[SkippableRecordError]]:
    """Validate the raw payloads of one event.

    Returns the valid records and one :class:`SkippableRecordError` per payload
    that could not be parsed.
    """
    records: list[RawResultRecord] = []
    skipped: list[SkippableRecordError] = []
    for payload in payloads or []:
        if not isinstance(payload, dict):
            skipped.append(
                SkippableRecordError("payload is not a mapping", event_id=meta.event_id, raw=payload)
            )
            continue
        try:
            records.append(RawResultRecord.model_validate(payload))
        except ValidationError as exc:
            reason = "; ".join(
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                for error in exc.errors()
            )
            skipped.append(SkippableRecordError(reason, event_id=meta.event_id, raw=payload))
    return records, skipped


class RawResultReader:
    """Walk the event source newest-first and attach each event's result set."""

    def __init__(
        self,
        source: EventSource,
        *,
        page_size: int = DEFAULT_READ_PAGE_SIZE,
        fetch_concurrency: int = DEFAULT_FETCH_CONCURRENCY,
        progress: ProgressReporter | ProgressCallback | None = None,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be positive")
        if fetch_concurrency < 1:
            raise ValueError("fetch_concurrency must be positive")
        self._source = source
        self._page_size = page_size
        self._fetch_concurrency = fetch_concurrency
        self._progress = as_reporter(progress)
        self.stats = ReadStats()

    async def iter_events(
        self,
        *,
        since: date | None = None,
        until: date | None = None,
        partition: str | None = None,
    ) -> AsyncIterator[EventBatch]:
        """Yield ``(event, records)`` pairs by event date descending.

        Raises:
            PartitionReadFailure: when a page or one of its result sets cannot
                be fetched. Pairs yielded for earlier pages are unaffected.
        """
        label = partition or _partition_label(since, until)
        cursor: EventCursor | None = None
        page_index = 0
        total = 0

        while True:
            try:
                events = await self._source.fetch_event_page(
                    since=since, until=until, after=cursor, limit=self._page_size
                )
                payloads = await self._fetch_page_results(events)
            except Exception as exc:
                failure = PartitionReadFailure(label, page_index, exc)
                self._progress.error(str(failure))
                raise failure from exc

            if not events:
                break

            total += len(events)
            self._progress(f"Processing batch of {len(events)} events (total: {total})")

            for meta, raw in zip(events, payloads):
                yield self._with_presence(meta, raw), self._parse(meta, raw)

            if len(events) < self._page_size:
                break
            cursor = (events[-1].date, events[-1].event_id)
            page_index += 1

    def iter_year(self, year: int) -> AsyncIterator[EventBatch]:
        """Yield only events dated within calendar ``year``."""
        return self.iter_events(
            since=date(year, 1, 1), until=date(year, 12, 31), partition=str(year)
        )

    async def load_event(self, event_id: str) -> EventBatch:
        """Read a single event and its result set.

        Raises:
            EventNotFoundError: when the source has no such event.
            PartitionReadFailure: when the event cannot be read.
        """
        try:
            meta = await self._source.get_event(event_id)
            raw = await self._source.fetch_results(event_id) if meta is not None else None
        except Exception as exc:
            failure = PartitionReadFailure(f"event:{event_id}", 0, exc)
            self._progress.error(str(failure))
            raise failure from exc

        if meta is None:
            raise EventNotFoundError(event_id)
        return self._with_presence(meta, raw), self._parse(meta, raw)

    async def _fetch_page_results(
        self, events: list[EventMeta]
    ) -> list[list[dict[str, Any]] | None]:
        semaphore = asyncio.Semaphore(self._fetch_concurrency)

        async def fetch(meta: EventMeta) -> list[dict[str, Any]] | None:
            async with semaphore:
                return await self._source.fetch_results(meta.event_id)

        try:
            async with asyncio.TaskGroup() as group:
                tasks = [group.create_task(fetch(meta)) for meta in events]
        except ExceptionGroup as failures:
            # Siblings are already cancelled; surface the first real cause.
            raise failures.exceptions[0] from failures
        return [task.result() for task in tasks]

    async def results_present(self, events: list[EventMeta]) -> dict[str, bool]:
        """Report which of ``events`` have an uploaded result set.

        Raises:
            PartitionReadFailure: when a result set cannot be fetched.
        """
        try:
            payloads = await self._fetch_page_results(events)
        except Exception as exc:
            failure = PartitionReadFailure("status", 0, exc)
            self._progress.error(str(failure))
            raise failure from exc
        return {meta.event_id: raw is not None for meta, raw in zip(events, payloads)}

    @staticmethod
    def _with_presence(meta: EventMeta, raw: list[Any] | None) -> EventMeta:
        if raw is None:
            return meta.model_copy(update={"has_results": False})
        return meta

    def _parse(self, meta: EventMeta, raw: list[Any] | None) -> list[RawResultRecord]:
        records, skipped = parse_result_set(meta, raw)
        self.stats.events += 1
        self.stats.records += len(records)
        self.stats.skipped_records += len(skipped)
        self.stats.skipped.extend(skipped)
        for error in skipped:
            logger.warning(str(error))
        return records


def _partition_label(since: date | None, until: date | None) -> str:
    if since is None and until is None:
        return "all"
    return f"{since.isoformat() if since else '*'}..{until.isoformat() if until else '*'}"


__all__ = ["EventBatch", "RawResultReader", "ReadStats", "parse_result_set"]
