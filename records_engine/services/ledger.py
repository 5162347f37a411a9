"""Per-target record of events already folded into the aggregate."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from records_engine.db.repositories.document_store import DocumentStore
from records_engine.schemas.control import ProcessedEvent, RecordTarget
from records_engine.services.persistence import BatchedPersistenceWriter

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ProcessedEventLedger:
    """One write-once :class:`ProcessedEvent` document per event and target."""

    store: DocumentStore
    writer: BatchedPersistenceWriter
    target: RecordTarget

    @property
    def collection(self) -> str:
        return self.target.ledger_collection

    async def contains(self, event_id: str) -> bool:
        return await self.store.get(self.collection, event_id) is not None

    async def filter_unprocessed(self, event_ids: Iterable[str]) -> list[str]:
        """Return the ids from ``event_ids`` with no ledger entry, in input order."""
        candidates = list(dict.fromkeys(event_ids))
        known = await self.store.get_many(self.collection, candidates)
        return [event_id for event_id in candidates if event_id not in known]

    async def record(self, events: Iterable[ProcessedEvent]) -> int:
        """Write entries for events not yet in the ledger.

        Existing entries are left untouched so the original ``processed_at``
        survives re-runs.
        """
        pending = {event.event_id: event for event in events}
        if not pending:
            return 0
        fresh_ids = set(await self.filter_unprocessed(pending))
        fresh = [event for event_id, event in pending.items() if event_id in fresh_ids]
        written = await self.writer.commit(self.collection, fresh, key=lambda event: event.event_id)
        if written:
            logger.info(f"Recorded {written} processed events for {self.target.value}")
        return written

    async def list_events(self) -> list[ProcessedEvent]:
        keys = await self.store.list_keys(self.collection)
        documents = await self.store.get_many(self.collection, keys)
        return [ProcessedEvent.model_validate(documents[key]) for key in keys if key in documents]


__all__ = ["ProcessedEventLedger"]
