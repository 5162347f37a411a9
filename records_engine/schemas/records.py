"""Pydantic models for the aggregated fighter and club documents."""

from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Final

from pydantic import BaseModel, Field

from records_engine.schemas.results import BoutCategory, SkillTallies

# Stored when a bout was recorded without an outcome code. The fight still counts
# towards fight totals but no outcome counter moves.
UNKNOWN_RESULT: Final[str] = "Unknown"

OUTCOME_FIELDS: Final[tuple[str, ...]] = (
    "wins",
    "losses",
    "nc",
    "dq",
    "tournament_wins",
    "tournament_losses",
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class OutcomeCounters(BaseModel):
    """Win/loss counters kept separately for standard and tournament bouts."""

    wins: int = 0
    losses: int = 0
    nc: int = 0
    dq: int = 0
    tournament_wins: int = 0
    tournament_losses: int = 0

    def add_counters(self, other: OutcomeCounters) -> None:
        for name in OUTCOME_FIELDS:
            setattr(self, name, getattr(self, name) + getattr(other, name))

    def counters(self) -> dict[str, int]:
        return {name: getattr(self, name) for name in OUTCOME_FIELDS}


class LocationStats(OutcomeCounters):
    """Outcome counters plus fight count for one ``"City, State"`` bucket."""

    fights: int = 0

    def add_stats(self, other: LocationStats) -> None:
        self.add_counters(other)
        self.fights += other.fights


class YearStats(LocationStats):
    """One calendar year of club activity."""

    total_fighters: int = 0
    fighter_ids: list[str] = Field(default_factory=list)
    by_location: dict[str, LocationStats] = Field(default_factory=dict)


class TopLocation(BaseModel):
    name: str
    win_percentage: float
    wins: int
    losses: int
    fights: int


class FighterFightEntry(BaseModel):
    """A single appearance of a fighter on an event card."""

    event_id: str
    event_name: str
    date: date
    result: str = UNKNOWN_RESULT
    bout_type: BoutCategory = "standard"
    weight_class: float | None = None
    opponent_id: str | None = None
    skills: SkillTallies = Field(default_factory=SkillTallies)


class FighterRecord(OutcomeCounters):
    """Career aggregate for one competitor identifier."""

    fighter_id: str
    first: str = ""
    last: str = ""
    club_name: str | None = None
    email: str | None = None
    gender: str | None = None
    age: int | None = None
    dob: str | None = None
    skills: SkillTallies = Field(default_factory=SkillTallies)
    weight_classes: list[float] = Field(default_factory=list)
    events: list[str] = Field(default_factory=list)
    fights: list[FighterFightEntry] = Field(default_factory=list)
    search_keywords: list[str] = Field(default_factory=list)
    # Identity field -> appearance stamp of the value currently held.
    identity_stamps: dict[str, str] = Field(default_factory=dict)
    first_year: str | None = None
    last_updated: datetime = Field(default_factory=_utcnow)


class RosterEntry(BaseModel):
    fighter_id: str
    first: str = ""
    last: str = ""
    email: str | None = None


class ClubFightEntry(BaseModel):
    """A single fighter appearance credited to a club."""

    event_id: str
    event_name: str
    date: date
    fighter_id: str | None = None
    fighter_name: str = ""
    result: str = UNKNOWN_RESULT
    bout_type: BoutCategory = "standard"
    weight_class: float | None = None
    skills: SkillTallies = Field(default_factory=SkillTallies)
    city: str = "Unknown"
    state: str = "Unknown"


class ClubRecord(OutcomeCounters):
    """Aggregate for one normalized club identifier with nested breakdowns."""

    club_id: str
    club_name: str
    # Appearance stamp of the spelling held in ``club_name``.
    name_stamp: str | None = None
    total_fighters: int = 0
    skill_totals: SkillTallies = Field(default_factory=SkillTallies)
    fighters: list[RosterEntry] = Field(default_factory=list)
    events: list[str] = Field(default_factory=list)
    fights: list[ClubFightEntry] = Field(default_factory=list)
    yearly_stats: dict[str, YearStats] = Field(default_factory=dict)
    location_stats: dict[str, LocationStats] = Field(default_factory=dict)
    top_locations: list[TopLocation] = Field(default_factory=list)
    first_year: str | None = None
    last_updated: datetime = Field(default_factory=_utcnow)


__all__ = [
    "ClubFightEntry",
    "ClubRecord",
    "FighterFightEntry",
    "FighterRecord",
    "LocationStats",
    "OUTCOME_FIELDS",
    "OutcomeCounters",
    "RosterEntry",
    "TopLocation",
    "UNKNOWN_RESULT",
    "YearStats",
]
