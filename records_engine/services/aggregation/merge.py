"""Additive merge rules used by the baseline rebuild and the incremental paths.

Merging never trusts the delta's counters. The delta's fights from events the
base does not know yet are folded onto the base with the same primitive the
aggregators use, so counters, sets and nested breakdowns follow the same rules
as a single full pass. Fights of events already present in the base are
dropped, which makes ``merge(merge(base, delta), delta) == merge(base, delta)``.
"""

from __future__ import annotations

from datetime import datetime
from typing import TypeVar

from records_engine.schemas.records import ClubRecord, FighterRecord
from records_engine.services.aggregation.base import supersedes
from records_engine.services.aggregation.club_aggregator import (
    ClubAccumulator,
    apply_club_fight,
    finalize_club_record,
)
from records_engine.services.aggregation.fighter_aggregator import (
    FighterAccumulator,
    apply_fighter_fight,
    claim_identity,
    finalize_fighter_record,
)

AccumulatorT = TypeVar("AccumulatorT", FighterAccumulator, ClubAccumulator)


def _latest(first: datetime, second: datetime) -> datetime:
    return first if first >= second else second


def merge_fighter_records(
    base: FighterRecord, delta: FighterRecord, *, in_place: bool = False
) -> FighterRecord:
    """Return ``base`` with the unseen part of ``delta`` folded on top."""
    merged = base if in_place else base.model_copy(deep=True)
    known_events = set(base.events)
    fresh = [fight for fight in delta.fights if fight.event_id not in known_events]

    for name, stamp in delta.identity_stamps.items():
        claim_identity(merged, {name: getattr(delta, name)}, stamp)

    for fight in fresh:
        apply_fighter_fight(merged, fight.model_copy(deep=True))

    return finalize_fighter_record(
        merged, updated_at=_latest(base.last_updated, delta.last_updated)
    )


def merge_club_records(
    base: ClubRecord, delta: ClubRecord, *, in_place: bool = False
) -> ClubRecord:
    """Return ``base`` with the unseen part of ``delta`` folded on top.

    Counters are summed, the roster and yearly ``fighter_ids`` are unioned and
    the year/location maps are merged key-wise, all through
    :func:`apply_club_fight`. The display name is the spelling of the newest
    appearance on either side.
    """
    merged = base if in_place else base.model_copy(deep=True)
    if delta.name_stamp is not None and supersedes(
        delta.name_stamp, delta.club_name, merged.name_stamp, merged.club_name
    ):
        merged.club_name = delta.club_name
        merged.name_stamp = delta.name_stamp
    known_events = set(base.events)
    roster = {member.fighter_id: member for member in delta.fighters}

    for fight in delta.fights:
        if fight.event_id in known_events:
            continue
        member = roster.get(fight.fighter_id) if fight.fighter_id else None
        apply_club_fight(
            merged,
            fight.model_copy(deep=True),
            roster_entry=member.model_copy() if member is not None else None,
        )

    return finalize_club_record(
        merged, updated_at=_latest(base.last_updated, delta.last_updated)
    )


def merge_accumulators(into: AccumulatorT, other: AccumulatorT) -> AccumulatorT:
    """Merge every record of ``other`` into ``into`` and return ``into``."""
    if isinstance(into, FighterAccumulator) and isinstance(other, FighterAccumulator):
        for fighter_id, record in other.records.items():
            existing = into.records.get(fighter_id)
            if existing is None:
                into.records[fighter_id] = record
            else:
                merge_fighter_records(existing, record, in_place=True)
    elif isinstance(into, ClubAccumulator) and isinstance(other, ClubAccumulator):
        for club_id, record in other.records.items():
            existing = into.records.get(club_id)
            if existing is None:
                into.records[club_id] = record
            else:
                merge_club_records(existing, record, in_place=True)
        for name in other.skipped_clubs:
            into.skipped_clubs.setdefault(name, None)
    else:
        raise TypeError(
            f"Cannot merge {type(other).__name__} into {type(into).__name__}"
        )

    into.skipped_records += other.skipped_records
    into.contributions.absorb(other.contributions)
    return into


__all__ = ["merge_accumulators", "merge_club_records", "merge_fighter_records"]
