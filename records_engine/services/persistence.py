"""Bounded-size batched writes into the aggregate store."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, TypeVar

from pydantic import BaseModel

from records_engine.db.repositories.document_store import Document, DocumentStore
from records_engine.errors import WriteBatchFailure
from records_engine.services.progress import ProgressReporter
from records_engine.settings import DEFAULT_WRITE_BATCH_SIZE, MAX_WRITE_BATCH_SIZE

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT")


def to_document(record: BaseModel | Mapping[str, Any]) -> Document:
    if isinstance(record, BaseModel):
        return record.model_dump(mode="json")
    return dict(record)


@dataclass(slots=True)
class BatchedPersistenceWriter:
    """Commit documents in sequential chunks of at most ``batch_size``.

    Each chunk is one atomic merge-write. A failed chunk stops the run; chunks
    committed before it stay durable, so callers treat the writer as
    at-least-once per chunk and retry the ``pending_keys`` of the failure.
    """

    store: DocumentStore
    batch_size: int = DEFAULT_WRITE_BATCH_SIZE
    progress: ProgressReporter = field(default_factory=ProgressReporter)

    def __post_init__(self) -> None:
        if not 1 <= self.batch_size <= MAX_WRITE_BATCH_SIZE:
            raise ValueError(
                f"batch_size must be between 1 and {MAX_WRITE_BATCH_SIZE}, received {self.batch_size}"
            )

    async def commit(
        self,
        collection: str,
        records: Iterable[RecordT],
        *,
        key: Callable[[RecordT], str],
    ) -> int:
        """Merge-write ``records`` into ``collection`` and return how many landed."""
        documents: dict[str, Document] = {}
        for record in records:
            documents[key(record)] = to_document(record)  # type: ignore[arg-type]

        keys = list(documents)
        total = len(keys)
        if total == 0:
            return 0

        chunk_count = (total + self.batch_size - 1) // self.batch_size
        written = 0
        for chunk_index in range(chunk_count):
            chunk_keys = keys[chunk_index * self.batch_size : (chunk_index + 1) * self.batch_size]
            try:
                await self.store.merge_batch(
                    collection, {chunk_key: documents[chunk_key] for chunk_key in chunk_keys}
                )
            except Exception as exc:
                failure = WriteBatchFailure(
                    collection,
                    chunk_index,
                    written=written,
                    pending_keys=keys[written:],
                    cause=exc,
                )
                self.progress.error(str(failure))
                raise failure from exc

            written += len(chunk_keys)
            self.progress(
                f"Committed batch {chunk_index + 1}/{chunk_count} to {collection} "
                f"({written}/{total} documents)"
            )

        return written

    async def overwrite(
        self, collection: str, key: str, document: BaseModel | Mapping[str, Any]
    ) -> None:
        """Replace a single control document wholesale."""
        await self.store.overwrite(collection, key, to_document(document))


__all__ = ["BatchedPersistenceWriter", "to_document"]
