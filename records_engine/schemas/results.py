"""Pydantic models describing raw bout results read from the event source.

The upstream documents are loosely shaped: skill counters may be missing or
``null``, names may be absent, and outcome codes arrive in any case. All
defaulting happens here, once, so the aggregators can rely on concrete values.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Final, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from records_engine.utils.identifiers import location_key

# Named skill-tally counters recorded by judges for every bout.
SKILL_FIELDS: Final[tuple[str, ...]] = (
    "bodykick",
    "boxing",
    "clinch",
    "defense",
    "footwork",
    "headkick",
    "kicks",
    "knees",
    "legkick",
    "ringawareness",
)

BoutCategory = Literal["standard", "tournament"]


class SkillTallies(BaseModel):
    """Fixed set of non-negative skill counters."""

    bodykick: float = Field(default=0, ge=0)
    boxing: float = Field(default=0, ge=0)
    clinch: float = Field(default=0, ge=0)
    defense: float = Field(default=0, ge=0)
    footwork: float = Field(default=0, ge=0)
    headkick: float = Field(default=0, ge=0)
    kicks: float = Field(default=0, ge=0)
    knees: float = Field(default=0, ge=0)
    legkick: float = Field(default=0, ge=0)
    ringawareness: float = Field(default=0, ge=0)

    @field_validator(*SKILL_FIELDS, mode="before")
    @classmethod
    def _none_as_zero(cls, value: Any) -> Any:
        if value is None or value == "":
            return 0
        return value

    def add(self, other: SkillTallies) -> None:
        """Accumulate ``other`` into this instance in place."""

        for name in SKILL_FIELDS:
            setattr(self, name, getattr(self, name) + getattr(other, name))

    @classmethod
    def total(cls, tallies: list[SkillTallies]) -> SkillTallies:
        """Return the field-wise sum of ``tallies``."""

        summed = cls()
        for entry in tallies:
            summed.add(entry)
        return summed


class EventMeta(BaseModel):
    """Event metadata attached to every result set."""

    model_config = ConfigDict(populate_by_name=True)

    event_id: str
    name: str = Field(default="Unknown Event", alias="event_name")
    date: date
    city: str = "Unknown"
    state: str = "Unknown"
    # False when the event exists but no result set has been uploaded yet.
    has_results: bool = Field(default=True, exclude=True)

    @field_validator("name", "city", "state", mode="before")
    @classmethod
    def _blank_as_unknown(cls, value: Any, info: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return "Unknown Event" if info.field_name == "name" else "Unknown"
        return value

    @property
    def year(self) -> str:
        return f"{self.date.year:04d}"

    @property
    def location_key(self) -> str:
        return location_key(self.city, self.state)


class RawResultRecord(BaseModel):
    """One competitor's outcome in one event, as produced by the results desk."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    competitor_id: str | None = Field(default=None, alias="pmt_id")
    first: str = ""
    last: str = ""
    club_name: str | None = Field(default=None, alias="gym")
    result: str | None = None
    bout_type: BoutCategory = "standard"
    weight_class: float | None = Field(default=None, alias="weightclass")
    opponent_id: str | None = None
    email: str | None = None
    gender: str | None = None
    age: int | None = None
    dob: str | None = None
    skills: SkillTallies = Field(default_factory=SkillTallies)

    @model_validator(mode="before")
    @classmethod
    def _collect_skill_fields(cls, data: Any) -> Any:
        """Move the flat upstream skill counters into the nested ``skills`` model."""

        if not isinstance(data, dict) or "skills" in data:
            return data
        payload = dict(data)
        payload["skills"] = {name: payload.pop(name, None) for name in SKILL_FIELDS}
        return payload

    @field_validator("competitor_id", "opponent_id", "email", "club_name", mode="before")
    @classmethod
    def _strip_optional(cls, value: Any) -> Any:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("first", "last", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> Any:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("result", mode="before")
    @classmethod
    def _upper_result(cls, value: Any) -> Any:
        if value is None:
            return None
        text = str(value).strip().upper()
        return text or None

    @field_validator("bout_type", mode="before")
    @classmethod
    def _coerce_bout_type(cls, value: Any) -> str:
        if isinstance(value, str) and value.strip().lower() == "tournament":
            return "tournament"
        return "standard"

    @field_validator("weight_class", mode="before")
    @classmethod
    def _blank_weight_class(cls, value: Any) -> Any:
        if value in (None, "", 0, "0"):
            return None
        return value

    @field_validator("age", mode="before")
    @classmethod
    def _lenient_age(cls, value: Any) -> Any:
        """Unreadable ages become ``None`` instead of rejecting the result."""

        if value is None or isinstance(value, bool):
            return None
        try:
            return int(float(str(value).strip()))
        except (TypeError, ValueError, OverflowError):
            return None

    @field_validator("gender", mode="before")
    @classmethod
    def _lenient_gender(cls, value: Any) -> Any:
        if isinstance(value, (str, int, float)) and not isinstance(value, bool):
            return str(value).strip() or None
        return None

    @field_validator("dob", mode="before")
    @classmethod
    def _lenient_dob(cls, value: Any) -> Any:
        if isinstance(value, (date, datetime)):
            return value.isoformat()
        if isinstance(value, str):
            return value.strip() or None
        return None

    @property
    def full_name(self) -> str:
        return f"{self.first} {self.last}".strip().upper()


__all__ = [
    "BoutCategory",
    "EventMeta",
    "RawResultRecord",
    "SKILL_FIELDS",
    "SkillTallies",
]
