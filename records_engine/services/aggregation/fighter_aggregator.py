"""Fold raw results into one career record per competitor identifier.

Identity fields (names, club, contact and demographics) resolve field by field
to the newest non-empty value, judged by the ``date|event_id`` stamp of the
appearance that supplied it. The stamps travel with the record so merges apply
the same rule as a single pass.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Final

from records_engine.errors import SkippableRecordError
from records_engine.schemas.records import FighterFightEntry, FighterRecord
from records_engine.schemas.results import EventMeta, RawResultRecord
from records_engine.services.aggregation.base import (
    EventContributions,
    appearance_stamp,
    supersedes,
)
from records_engine.services.aggregation.outcomes import apply_outcome, normalize_result
from records_engine.utils.identifiers import build_search_keywords

logger = logging.getLogger(__name__)

IDENTITY_FIELDS: Final[tuple[str, ...]] = (
    "first",
    "last",
    "club_name",
    "email",
    "gender",
    "age",
    "dob",
)


def fight_sort_key(entry: FighterFightEntry) -> tuple[date, str]:
    return (entry.date, entry.event_id)


def identity_values(raw: RawResultRecord) -> dict[str, Any]:
    """Identity fields of one appearance, names and club upper-cased."""
    return {
        "first": raw.first.upper(),
        "last": raw.last.upper(),
        "club_name": raw.club_name.upper() if raw.club_name else None,
        "email": raw.email,
        "gender": raw.gender,
        "age": raw.age,
        "dob": raw.dob,
    }


def claim_identity(record: FighterRecord, values: Mapping[str, Any], stamp: str) -> None:
    """Adopt each non-empty value of ``values`` that is newer than the one held."""
    for name, value in values.items():
        if value is None or value == "":
            continue
        current_stamp = record.identity_stamps.get(name)
        if supersedes(stamp, value, current_stamp, getattr(record, name)):
            setattr(record, name, value)
            record.identity_stamps[name] = stamp


def fighter_fight_entry(meta: EventMeta, raw: RawResultRecord) -> FighterFightEntry:
    return FighterFightEntry(
        event_id=meta.event_id,
        event_name=meta.name,
        date=meta.date,
        result=normalize_result(raw.result),
        bout_type=raw.bout_type,
        weight_class=raw.weight_class,
        opponent_id=raw.opponent_id,
        skills=raw.skills.model_copy(),
    )


def apply_fighter_fight(record: FighterRecord, entry: FighterFightEntry) -> None:
    """Append ``entry`` and fold it into the record's counters and sets."""
    record.fights.append(entry)
    apply_outcome(record, entry.result, entry.bout_type)
    record.skills.add(entry.skills)

    if entry.weight_class is not None and entry.weight_class not in record.weight_classes:
        record.weight_classes.append(entry.weight_class)
    if entry.event_id not in record.events:
        record.events.append(entry.event_id)

    year = f"{entry.date.year:04d}"
    if record.first_year is None or year < record.first_year:
        record.first_year = year


def finalize_fighter_record(record: FighterRecord, *, updated_at: datetime | None = None) -> FighterRecord:
    """Sort the collections and rebuild the search keywords from the identity."""
    record.fights.sort(key=fight_sort_key)
    record.weight_classes.sort()
    record.events.sort()
    record.search_keywords = build_search_keywords(
        record.first, record.last, record.club_name, record.gender
    )
    if updated_at is not None:
        record.last_updated = updated_at
    return record


@dataclass(slots=True)
class FighterAccumulator:
    """Explicit fold state: fighter id -> :class:`FighterRecord`."""

    records: dict[str, FighterRecord] = field(default_factory=dict)
    contributions: EventContributions = field(default_factory=EventContributions)
    skipped_records: int = 0

    def __len__(self) -> int:
        return len(self.records)

    def __contains__(self, fighter_id: object) -> bool:
        return fighter_id in self.records

    def __getitem__(self, fighter_id: str) -> FighterRecord:
        return self.records[fighter_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self.records)

    def add_event(self, meta: EventMeta, results: list[RawResultRecord]) -> None:
        if not meta.has_results:
            logger.debug(f"No results found for event {meta.event_id}; leaving it unprocessed")
            return

        event_fighters = self.contributions.touch(meta)
        stamp = appearance_stamp(meta)
        for raw in results:
            fighter_id = raw.competitor_id
            if not fighter_id:
                self.skipped_records += 1
                logger.debug(
                    str(SkippableRecordError("missing competitor identifier", event_id=meta.event_id))
                )
                continue

            record = self.records.get(fighter_id)
            if record is None:
                record = self.records[fighter_id] = FighterRecord(fighter_id=fighter_id)
            claim_identity(record, identity_values(raw), stamp)
            apply_fighter_fight(record, fighter_fight_entry(meta, raw))
            event_fighters.add(fighter_id)

    def finalize(self, *, updated_at: datetime | None = None) -> dict[str, FighterRecord]:
        for record in self.records.values():
            finalize_fighter_record(record, updated_at=updated_at)
        return self.records


class FighterAggregator:
    """Pure fold of an event stream into a :class:`FighterAccumulator`."""

    async def aggregate(
        self,
        stream: AsyncIterable[tuple[EventMeta, list[RawResultRecord]]],
        *,
        into: FighterAccumulator | None = None,
    ) -> FighterAccumulator:
        accumulator = into if into is not None else FighterAccumulator()
        async for meta, results in stream:
            accumulator.add_event(meta, results)
        return accumulator


__all__ = [
    "FighterAccumulator",
    "FighterAggregator",
    "IDENTITY_FIELDS",
    "apply_fighter_fight",
    "claim_identity",
    "fight_sort_key",
    "fighter_fight_entry",
    "finalize_fighter_record",
    "identity_values",
]
