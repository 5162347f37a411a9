"""Tests for the processed-event ledger."""

from __future__ import annotations

from datetime import UTC, date, datetime

import pytest

from records_engine.schemas.control import ProcessedEvent, RecordTarget
from records_engine.services.ledger import ProcessedEventLedger
from records_engine.services.persistence import BatchedPersistenceWriter
from tests.support.in_memory import InMemoryDocumentStore


def _event(event_id: str, processed_at: datetime) -> ProcessedEvent:
    return ProcessedEvent(
        event_id=event_id,
        event_name=f"Event {event_id}",
        event_date=date(2024, 1, 1),
        processed_at=processed_at,
        fighter_count=2,
    )


def _ledger(store: InMemoryDocumentStore, target: RecordTarget) -> ProcessedEventLedger:
    return ProcessedEventLedger(store, BatchedPersistenceWriter(store, batch_size=2), target)


@pytest.mark.asyncio
async def test_record_writes_only_new_entries(store: InMemoryDocumentStore) -> None:
    ledger = _ledger(store, RecordTarget.FIGHTERS)
    first_seen = datetime(2024, 1, 2, tzinfo=UTC)
    later = datetime(2024, 6, 1, tzinfo=UTC)

    assert await ledger.record([_event("e1", first_seen)]) == 1
    assert await ledger.record([_event("e1", later), _event("e2", later)]) == 1

    events = {event.event_id: event for event in await ledger.list_events()}
    assert set(events) == {"e1", "e2"}
    assert events["e1"].processed_at == first_seen
    assert ledger.collection == "processed_events_fighters"


@pytest.mark.asyncio
async def test_filter_unprocessed_keeps_input_order(store: InMemoryDocumentStore) -> None:
    ledger = _ledger(store, RecordTarget.CLUBS)
    await ledger.record([_event("e2", datetime(2024, 1, 1, tzinfo=UTC))])

    assert await ledger.filter_unprocessed(["e3", "e2", "e1", "e3"]) == ["e3", "e1"]
    assert await ledger.contains("e2")
    assert not await ledger.contains("e1")


@pytest.mark.asyncio
async def test_ledgers_are_scoped_per_target(store: InMemoryDocumentStore) -> None:
    fighters = _ledger(store, RecordTarget.FIGHTERS)
    clubs = _ledger(store, RecordTarget.CLUBS)

    await fighters.record([_event("e1", datetime(2024, 1, 1, tzinfo=UTC))])

    assert await fighters.contains("e1")
    assert not await clubs.contains("e1")
