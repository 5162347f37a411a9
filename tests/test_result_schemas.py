"""Tests for ingestion-boundary defaulting of raw results and event metadata."""

from __future__ import annotations

from datetime import date

import pytest
from pydantic import ValidationError

from records_engine.schemas.results import SKILL_FIELDS, EventMeta, RawResultRecord, SkillTallies


def test_raw_result_maps_upstream_field_names() -> None:
    record = RawResultRecord.model_validate(
        {
            "pmt_id": " abc123 ",
            "first": "jane",
            "last": "doe",
            "gym": "Club X",
            "result": "w",
            "bout_type": "Tournament",
            "weightclass": "135",
            "opponent_id": "xyz",
            "email": "jane@example.com",
            "boxing": 3,
            "knees": None,
        }
    )

    assert record.competitor_id == "abc123"
    assert record.club_name == "Club X"
    assert record.result == "W"
    assert record.bout_type == "tournament"
    assert record.weight_class == 135.0
    assert record.opponent_id == "xyz"
    assert record.skills.boxing == 3
    assert record.skills.knees == 0
    assert record.full_name == "JANE DOE"


def test_raw_result_defaults_missing_fields_once() -> None:
    record = RawResultRecord.model_validate({"pmt_id": "p1"})

    assert record.first == ""
    assert record.club_name is None
    assert record.result is None
    assert record.bout_type == "standard"
    assert record.weight_class is None
    assert all(getattr(record.skills, name) == 0 for name in SKILL_FIELDS)


@pytest.mark.parametrize("bout_type", [None, "", "standard", "exhibition", "SMOKER"])
def test_anything_but_tournament_is_a_standard_bout(bout_type: str | None) -> None:
    record = RawResultRecord.model_validate({"pmt_id": "p1", "bout_type": bout_type})

    assert record.bout_type == "standard"


@pytest.mark.parametrize("blank", [None, "", "   "])
def test_blank_identifier_and_result_become_none(blank: str | None) -> None:
    record = RawResultRecord.model_validate({"pmt_id": blank, "result": blank})

    assert record.competitor_id is None
    assert record.result is None


def test_negative_skill_tally_is_rejected() -> None:
    with pytest.raises(ValidationError):
        RawResultRecord.model_validate({"pmt_id": "p1", "boxing": -1})


def test_skill_tallies_total_sums_fieldwise() -> None:
    total = SkillTallies.total([SkillTallies(boxing=1, kicks=2), SkillTallies(boxing=4)])

    assert total.boxing == 5
    assert total.kicks == 2
    assert total.clinch == 0


def test_event_meta_defaults_location_and_derives_keys() -> None:
    meta = EventMeta.model_validate(
        {"event_id": "e1", "event_name": "", "date": "2024-03-09", "city": None}
    )

    assert meta.name == "Unknown Event"
    assert meta.date == date(2024, 3, 9)
    assert meta.year == "2024"
    assert meta.location_key == "Unknown, Unknown"


@pytest.mark.parametrize(
    ("extra", "field", "expected"),
    [
        ({"age": "N/A"}, "age", None),
        ({"age": "27"}, "age", 27),
        ({"age": 31.0}, "age", 31),
        ({"gender": 1}, "gender", "1"),
        ({"gender": {"code": "F"}}, "gender", None),
        ({"dob": {"seconds": 946684800}}, "dob", None),
        ({"dob": date(2000, 1, 1)}, "dob", "2000-01-01"),
    ],
)
def test_unreadable_demographics_default_instead_of_rejecting(
    extra: dict[str, object], field: str, expected: object
) -> None:
    record = RawResultRecord.model_validate({"pmt_id": "p1", "result": "W", **extra})

    assert getattr(record, field) == expected
    assert record.result == "W"
