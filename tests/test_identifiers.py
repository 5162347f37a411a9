"""Tests for club identifier normalization and keyword helpers."""

from __future__ import annotations

import pytest

from records_engine.utils.identifiers import (
    build_search_keywords,
    location_key,
    normalize_club_id,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Club X", "CLUB_X"),
        ("  Tiger Muay Thai  ", "TIGER_MUAY_THAI"),
        ("Smith & Sons / Austin", "SMITH_SONS_AUSTIN"),
        ("A - B", "A_B"),
        ("O'Malley's Gym (North)", "O_MALLEY_S_GYM_NORTH_"),
        ("Café Boxe", "CAF_BOXE"),
        ("kru.dojo #1", "KRU_DOJO_1"),
        ("tab\tseparated\nname", "TAB_SEPARATED_NAME"),
    ],
)
def test_normalize_club_id_examples(raw: str, expected: str) -> None:
    assert normalize_club_id(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "   ", "&&&", "###   ***", "é"])
def test_normalize_club_id_returns_none_when_nothing_usable_remains(raw: str | None) -> None:
    assert normalize_club_id(raw) is None


def test_normalize_club_id_rejects_names_over_the_length_cap() -> None:
    assert normalize_club_id("A" * 256) == "A" * 256
    assert normalize_club_id("A" * 257) is None
    assert normalize_club_id("ABCDE", max_length=4) is None


@pytest.mark.parametrize(
    "raw",
    [
        "Club X",
        "A - B",
        "__lead__trail__",
        "Smith & Sons / Austin",
        "x_-_y",
        "Gym (Team) {Elite} <Pro>",
        "mixed Case  spaces",
    ],
)
def test_normalize_club_id_is_idempotent(raw: str) -> None:
    once = normalize_club_id(raw)

    assert once is not None
    assert normalize_club_id(once) == once
    assert normalize_club_id(raw) == once


def test_build_search_keywords_splits_and_lowercases() -> None:
    keywords = build_search_keywords("JANE", "DOE", "CLUB X", None, "female")

    assert keywords == sorted(keywords)
    assert {"jane", "doe", "club x", "club", "x", "female"} == set(keywords)


def test_location_key_defaults_missing_parts() -> None:
    assert location_key("Austin", "TX") == "Austin, TX"
    assert location_key(None, "") == "Unknown, Unknown"
