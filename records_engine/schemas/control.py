"""Control and audit documents driving the merge state machine."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class RecordTarget(str, Enum):
    """Aggregate families maintained by the engine."""

    FIGHTERS = "fighters"
    CLUBS = "clubs"

    @property
    def current_collection(self) -> str:
        return f"{self.value[:-1]}_records"

    @property
    def baseline_collection(self) -> str:
        return f"{self.current_collection}_baseline"

    @property
    def ledger_collection(self) -> str:
        return f"processed_events_{self.value}"


class BaselineState(str, Enum):
    NO_BASELINE = "no_baseline"
    BASELINE_CURRENT = "baseline_current"
    BASELINE_STALE = "baseline_stale"


RunMode = Literal["baseline_rebuild", "current_merge", "single_event", "pending_scan"]


class ProcessedEvent(BaseModel):
    """Audit entry written the first time an event is folded into a target."""

    event_id: str
    event_name: str
    event_date: date
    processed_at: datetime
    fighter_count: int = 0


class BaselineMetadata(BaseModel):
    """Describes what the stored baseline for one target contains."""

    target: RecordTarget
    years: list[str] = Field(default_factory=list)
    record_count: int = 0
    fighter_count: int = 0
    rebuilt_at: datetime
    current_merged_at: datetime | None = None
    current_year_merged: str | None = None
    stale: bool = False


class RunReport(BaseModel):
    """Summary returned by every controller operation."""

    target: RecordTarget
    mode: RunMode
    events_processed: int = 0
    events_skipped: int = 0
    records_written: int = 0
    skipped_records: int = 0
    skipped_clubs: int = 0
    years: list[str] = Field(default_factory=list)
    messages: list[str] = Field(default_factory=list)


class EventStatus(BaseModel):
    """Where one recent event stands for a target."""

    event_id: str
    name: str
    date: date
    has_results: bool
    is_processed: bool


class EventStatusReport(BaseModel):
    """Recent events split into processed, ready and awaiting results."""

    target: RecordTarget
    events: list[EventStatus] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.events)

    @property
    def processed(self) -> int:
        return sum(1 for event in self.events if event.is_processed)

    @property
    def unprocessed_with_results(self) -> list[EventStatus]:
        return [event for event in self.events if not event.is_processed and event.has_results]

    @property
    def needs_results(self) -> list[EventStatus]:
        return [event for event in self.events if not event.is_processed and not event.has_results]


__all__ = [
    "BaselineMetadata",
    "BaselineState",
    "EventStatus",
    "EventStatusReport",
    "ProcessedEvent",
    "RecordTarget",
    "RunMode",
    "RunReport",
]
