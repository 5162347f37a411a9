"""Fold raw results into club records with yearly and geographic breakdowns.

Each appearance increments the club, year, year+location and all-time location
views in the same step, so the four views agree by construction. Skill totals
are the one exception: they are derived from the fight list when the record is
finalized.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable, Iterator
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Final

from records_engine.errors import SkippableRecordError
from records_engine.schemas.records import (
    ClubFightEntry,
    ClubRecord,
    LocationStats,
    RosterEntry,
    TopLocation,
    YearStats,
)
from records_engine.schemas.results import EventMeta, RawResultRecord, SkillTallies
from records_engine.services.aggregation.base import (
    EventContributions,
    appearance_stamp,
    supersedes,
)
from records_engine.services.aggregation.outcomes import (
    apply_outcome,
    normalize_result,
    win_percentage,
)
from records_engine.settings import DEFAULT_CLUB_ID_MAX_LENGTH
from records_engine.utils.identifiers import location_key, normalize_club_id

logger = logging.getLogger(__name__)

TOP_LOCATION_MIN_FIGHTS: Final[int] = 3
TOP_LOCATION_LIMIT: Final[int] = 5
SKIPPED_CLUB_PREVIEW: Final[int] = 10


def club_fight_sort_key(entry: ClubFightEntry) -> tuple[date, str, str]:
    return (entry.date, entry.event_id, entry.fighter_id or "")


def club_fight_entry(meta: EventMeta, raw: RawResultRecord) -> ClubFightEntry:
    return ClubFightEntry(
        event_id=meta.event_id,
        event_name=meta.name,
        date=meta.date,
        fighter_id=raw.competitor_id,
        fighter_name=raw.full_name,
        result=normalize_result(raw.result),
        bout_type=raw.bout_type,
        weight_class=raw.weight_class,
        skills=raw.skills.model_copy(),
        city=meta.city,
        state=meta.state,
    )


def apply_club_fight(
    record: ClubRecord,
    entry: ClubFightEntry,
    *,
    roster_entry: RosterEntry | None = None,
) -> None:
    """Fold one appearance into every view of ``record``.

    ``roster_entry`` defaults to a bare entry built from the fight. The roster
    and each year's ``fighter_ids`` are deduplicated before counting.
    """
    year = f"{entry.date.year:04d}"
    location = location_key(entry.city, entry.state)

    year_stats = record.yearly_stats.get(year)
    if year_stats is None:
        year_stats = record.yearly_stats[year] = YearStats()
    year_location = year_stats.by_location.get(location)
    if year_location is None:
        year_location = year_stats.by_location[location] = LocationStats()
    all_time_location = record.location_stats.get(location)
    if all_time_location is None:
        all_time_location = record.location_stats[location] = LocationStats()

    record.fights.append(entry)
    for view in (year_stats, year_location, all_time_location):
        view.fights += 1
    for counters in (record, year_stats, year_location, all_time_location):
        apply_outcome(counters, entry.result, entry.bout_type)

    fighter_id = entry.fighter_id
    if fighter_id:
        if not any(member.fighter_id == fighter_id for member in record.fighters):
            record.fighters.append(
                roster_entry or RosterEntry(fighter_id=fighter_id, first=entry.fighter_name)
            )
            record.total_fighters = len(record.fighters)
        if fighter_id not in year_stats.fighter_ids:
            year_stats.fighter_ids.append(fighter_id)
            year_stats.total_fighters += 1

    if entry.event_id not in record.events:
        record.events.append(entry.event_id)
    if record.first_year is None or year < record.first_year:
        record.first_year = year


def derive_top_locations(location_stats: dict[str, LocationStats]) -> list[TopLocation]:
    """Best locations by win percentage among those with at least three fights."""
    candidates = [
        TopLocation(
            name=name,
            win_percentage=win_percentage(stats.wins, stats.losses),
            wins=stats.wins,
            losses=stats.losses,
            fights=stats.fights,
        )
        for name, stats in location_stats.items()
        if stats.fights >= TOP_LOCATION_MIN_FIGHTS
    ]
    candidates.sort(key=lambda item: (-item.win_percentage, item.name))
    return candidates[:TOP_LOCATION_LIMIT]


def finalize_club_record(record: ClubRecord, *, updated_at: datetime | None = None) -> ClubRecord:
    """Sort collections and recompute the derived fields in place."""
    record.fights.sort(key=club_fight_sort_key)
    record.events.sort()
    record.fighters.sort(key=lambda member: member.fighter_id)
    record.total_fighters = len(record.fighters)
    for year_stats in record.yearly_stats.values():
        year_stats.fighter_ids.sort()
        year_stats.total_fighters = len(year_stats.fighter_ids)
    record.yearly_stats = dict(sorted(record.yearly_stats.items()))
    record.location_stats = dict(sorted(record.location_stats.items()))
    record.skill_totals = SkillTallies.total([fight.skills for fight in record.fights])
    record.top_locations = derive_top_locations(record.location_stats)
    if updated_at is not None:
        record.last_updated = updated_at
    return record


@dataclass(slots=True)
class ClubAccumulator:
    """Explicit fold state: normalized club id -> :class:`ClubRecord`."""

    records: dict[str, ClubRecord] = field(default_factory=dict)
    contributions: EventContributions = field(default_factory=EventContributions)
    skipped_records: int = 0
    # Raw names that normalized to nothing, in first-seen order.
    skipped_clubs: dict[str, None] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.records)

    def __contains__(self, club_id: object) -> bool:
        return club_id in self.records

    def __getitem__(self, club_id: str) -> ClubRecord:
        return self.records[club_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self.records)

    def add_event(
        self,
        meta: EventMeta,
        results: list[RawResultRecord],
        *,
        max_id_length: int = DEFAULT_CLUB_ID_MAX_LENGTH,
    ) -> None:
        if not meta.has_results:
            logger.debug(f"No results found for event {meta.event_id}; leaving it unprocessed")
            return

        event_fighters = self.contributions.touch(meta)
        stamp = appearance_stamp(meta)
        for raw in results:
            if not raw.competitor_id:
                self.skipped_records += 1
                logger.debug(
                    str(SkippableRecordError("missing competitor identifier", event_id=meta.event_id))
                )
                continue
            if not raw.club_name:
                continue

            club_id = normalize_club_id(raw.club_name, max_length=max_id_length)
            if club_id is None:
                self.skipped_clubs.setdefault(raw.club_name, None)
                logger.debug(
                    str(
                        SkippableRecordError(
                            f"club name {raw.club_name!r} does not normalize", event_id=meta.event_id
                        )
                    )
                )
                continue

            record = self.records.get(club_id)
            if record is None:
                record = self.records[club_id] = ClubRecord(
                    club_id=club_id, club_name=raw.club_name, name_stamp=stamp
                )
            elif supersedes(stamp, raw.club_name, record.name_stamp, record.club_name):
                record.club_name = raw.club_name
                record.name_stamp = stamp

            apply_club_fight(
                record,
                club_fight_entry(meta, raw),
                roster_entry=RosterEntry(
                    fighter_id=raw.competitor_id,
                    first=raw.first,
                    last=raw.last,
                    email=raw.email,
                ),
            )
            event_fighters.add(raw.competitor_id)

    def skipped_club_warning(self) -> str | None:
        """Operator-facing summary of unusable club names, or ``None``."""
        if not self.skipped_clubs:
            return None
        names = list(self.skipped_clubs)
        preview = ", ".join(names[:SKIPPED_CLUB_PREVIEW])
        more = len(names) - SKIPPED_CLUB_PREVIEW
        suffix = f" and {more} more" if more > 0 else ""
        return (
            f"Warning: skipped {len(names)} club names that could not be normalized: "
            f"{preview}{suffix}"
        )

    def finalize(self, *, updated_at: datetime | None = None) -> dict[str, ClubRecord]:
        for record in self.records.values():
            finalize_club_record(record, updated_at=updated_at)
        return self.records


class ClubAggregator:
    """Pure fold of an event stream into a :class:`ClubAccumulator`."""

    def __init__(self, max_id_length: int = DEFAULT_CLUB_ID_MAX_LENGTH) -> None:
        self.max_id_length = max_id_length

    async def aggregate(
        self,
        stream: AsyncIterable[tuple[EventMeta, list[RawResultRecord]]],
        *,
        into: ClubAccumulator | None = None,
    ) -> ClubAccumulator:
        accumulator = into if into is not None else ClubAccumulator()
        async for meta, results in stream:
            accumulator.add_event(meta, results, max_id_length=self.max_id_length)
        return accumulator


__all__ = [
    "ClubAccumulator",
    "ClubAggregator",
    "apply_club_fight",
    "club_fight_entry",
    "club_fight_sort_key",
    "derive_top_locations",
    "finalize_club_record",
]
