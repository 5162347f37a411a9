"""Pydantic schemas for raw results, aggregated records and control documents."""

from records_engine.schemas.control import (  # noqa: F401
    BaselineMetadata,
    BaselineState,
    ProcessedEvent,
    RecordTarget,
    RunReport,
)
from records_engine.schemas.records import (  # noqa: F401
    ClubFightEntry,
    ClubRecord,
    FighterFightEntry,
    FighterRecord,
    LocationStats,
    OutcomeCounters,
    RosterEntry,
    TopLocation,
    YearStats,
)
from records_engine.schemas.results import (  # noqa: F401
    SKILL_FIELDS,
    EventMeta,
    RawResultRecord,
    SkillTallies,
)
