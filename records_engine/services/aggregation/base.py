"""Bookkeeping shared by the fighter and club accumulators."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from records_engine.schemas.control import ProcessedEvent
from records_engine.schemas.results import EventMeta


def appearance_stamp(meta: EventMeta) -> str:
    """Sortable ``date|event_id`` stamp ordering appearances oldest to newest."""
    return f"{meta.date.isoformat()}|{meta.event_id}"


def supersedes(
    stamp: str, value: Any, current_stamp: str | None, current_value: Any
) -> bool:
    """Whether ``value`` seen at ``stamp`` replaces the value held at ``current_stamp``.

    The newer stamp wins. Two values from the same appearance are ordered by
    their text so the outcome never depends on fold order.
    """
    if current_stamp is None or stamp > current_stamp:
        return True
    return stamp == current_stamp and str(value) > str(current_value)


@dataclass(slots=True)
class EventContributions:
    """Which events a fold has seen and how many distinct fighters each added.

    Only events that carried a result set are tracked; events still waiting
    for results stay out of the processed-event ledger.
    """

    events: dict[str, EventMeta] = field(default_factory=dict)
    fighters: dict[str, set[str]] = field(default_factory=dict)

    def touch(self, meta: EventMeta) -> set[str]:
        self.events.setdefault(meta.event_id, meta)
        return self.fighters.setdefault(meta.event_id, set())

    def absorb(self, other: EventContributions) -> None:
        for event_id, meta in other.events.items():
            self.events.setdefault(event_id, meta)
            self.fighters.setdefault(event_id, set()).update(other.fighters.get(event_id, ()))

    def to_processed_events(self, processed_at: datetime) -> list[ProcessedEvent]:
        return [
            ProcessedEvent(
                event_id=meta.event_id,
                event_name=meta.name,
                event_date=meta.date,
                processed_at=processed_at,
                fighter_count=len(self.fighters.get(event_id, ())),
            )
            for event_id, meta in sorted(self.events.items())
        ]


__all__ = ["EventContributions", "appearance_stamp", "supersedes"]
