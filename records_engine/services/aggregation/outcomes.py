"""Outcome-code classification shared by the fighter and club folds."""

from __future__ import annotations

from typing import Final

from records_engine.schemas.records import UNKNOWN_RESULT, OutcomeCounters

_STANDARD_OUTCOMES: Final[dict[str, str]] = {
    "W": "wins",
    "L": "losses",
    "NC": "nc",
    "DQ": "dq",
}

# Tournament brackets only record a winner and a loser.
_TOURNAMENT_OUTCOMES: Final[dict[str, str]] = {
    "W": "tournament_wins",
    "L": "tournament_losses",
}


def normalize_result(result: str | None) -> str:
    """Upper-case an outcome code, mapping a missing code to ``"Unknown"``."""
    if result is None:
        return UNKNOWN_RESULT
    text = result.strip().upper()
    return text or UNKNOWN_RESULT


def outcome_field(result: str | None, bout_type: str) -> str | None:
    """Return the counter a result increments, or ``None`` when none applies.

    Matching is exact after upper-casing; unrecognized codes (including
    ``NC``/``DQ`` on tournament bouts) do not count.
    """
    if result is None:
        return None
    table = _TOURNAMENT_OUTCOMES if bout_type == "tournament" else _STANDARD_OUTCOMES
    return table.get(result.strip().upper())


def apply_outcome(
    counters: OutcomeCounters, result: str | None, bout_type: str, *, amount: int = 1
) -> bool:
    """Increment the counter matching ``result`` and report whether one moved."""
    name = outcome_field(result, bout_type)
    if name is None:
        return False
    setattr(counters, name, getattr(counters, name) + amount)
    return True


def win_percentage(wins: int, losses: int) -> float:
    decided = wins + losses
    if decided == 0:
        return 0.0
    return wins / decided * 100


__all__ = ["apply_outcome", "normalize_result", "outcome_field", "win_percentage"]
