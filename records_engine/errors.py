"""Exception taxonomy shared by the aggregation pipeline.

Every error carries an :class:`ErrorType` plus a ``retryable`` flag so the
operator-facing progress channel can tell a transient read/write failure apart
from a conflict that must be resolved by hand.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum


class ErrorType(str, Enum):
    """Categories of failures raised by the engine."""

    SKIPPABLE_RECORD = "skippable_record"
    PARTITION_READ = "partition_read"
    WRITE_BATCH = "write_batch"
    CONCURRENT_RUN = "concurrent_run"
    NOT_FOUND = "not_found"


class RecordsEngineError(Exception):
    """Base class for engine failures."""

    error_type: ErrorType
    retryable: bool = False


class SkippableRecordError(RecordsEngineError):
    """A raw record that cannot be folded into the aggregate.

    Raised at the ingestion boundary, caught by the reader, logged and counted.
    The run always continues.
    """

    error_type = ErrorType.SKIPPABLE_RECORD

    def __init__(self, reason: str, *, event_id: str | None = None, raw: object = None) -> None:
        self.reason = reason
        self.event_id = event_id
        self.raw = raw
        location = f" in event {event_id}" if event_id else ""
        super().__init__(f"Skipped raw record{location}: {reason}")


class PartitionReadFailure(RecordsEngineError):
    """A page of the event source could not be read."""

    error_type = ErrorType.PARTITION_READ
    retryable = True

    def __init__(self, partition: str, page_index: int, cause: BaseException) -> None:
        self.partition = partition
        self.page_index = page_index
        self.cause = cause
        super().__init__(
            f"Failed to read page {page_index} of partition {partition}: {cause}"
        )


class WriteBatchFailure(RecordsEngineError):
    """A chunk could not be committed to the aggregate store.

    ``written`` counts the documents committed by earlier chunks; those stay
    durable. ``pending_keys`` lists every key that was not written so a caller
    can retry only the remainder.
    """

    error_type = ErrorType.WRITE_BATCH
    retryable = True

    def __init__(
        self,
        collection: str,
        chunk_index: int,
        *,
        written: int,
        pending_keys: Sequence[str],
        cause: BaseException,
    ) -> None:
        self.collection = collection
        self.chunk_index = chunk_index
        self.written = written
        self.pending_keys = list(pending_keys)
        self.cause = cause
        super().__init__(
            f"Failed to commit chunk {chunk_index} to {collection} "
            f"({written} documents already written, {len(self.pending_keys)} pending): {cause}"
        )


class ConcurrentRunConflict(RecordsEngineError):
    """Another run already holds the lock for the target collection."""

    error_type = ErrorType.CONCURRENT_RUN

    def __init__(self, target: str) -> None:
        self.target = target
        super().__init__(
            f"Another aggregation run is already active for target '{target}'. "
            "Wait for it to finish or clear the lock after confirming it crashed."
        )


class EventNotFoundError(RecordsEngineError):
    """The single-event path was asked for an event the source does not know."""

    error_type = ErrorType.NOT_FOUND

    def __init__(self, event_id: str) -> None:
        self.event_id = event_id
        super().__init__(f"Event {event_id} not found in the event source")


__all__ = [
    "ConcurrentRunConflict",
    "ErrorType",
    "EventNotFoundError",
    "PartitionReadFailure",
    "RecordsEngineError",
    "SkippableRecordError",
    "WriteBatchFailure",
]
