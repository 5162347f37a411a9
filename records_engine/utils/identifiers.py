"""Helpers that turn free-text names into stable storage keys."""

import re

from records_engine.settings import DEFAULT_CLUB_ID_MAX_LENGTH

_SPECIAL_CHARACTERS = re.compile(r"[&/\\#,+()$~%.'\":*?<>{}]")
_WHITESPACE = re.compile(r"\s+")
_REPEATED_UNDERSCORES = re.compile(r"_+")
_DISALLOWED = re.compile(r"[^A-Za-z0-9_]")


def normalize_club_id(
    raw_name: str | None, *, max_length: int = DEFAULT_CLUB_ID_MAX_LENGTH
) -> str | None:
    """
    Convert a free-text club name into a storage-safe identifier.

    The name is trimmed, punctuation and whitespace runs become underscores,
    anything left that is not an ASCII letter, digit or underscore is dropped,
    repeated underscores collapse, and the result is upper-cased. Collapsing
    runs last so that ``normalize_club_id(normalize_club_id(x)) ==
    normalize_club_id(x)`` (``"A - B"`` becomes ``A_B``, never ``A__B``).

    Args:
        raw_name: Club name exactly as typed on the registration form.
        max_length: Longest identifier accepted.

    Returns:
        The normalized identifier, or ``None`` when nothing but underscores
        remains or the identifier exceeds ``max_length``. Callers must skip the record.
    """
    if not raw_name:
        return None

    sanitized = raw_name.strip()
    sanitized = _SPECIAL_CHARACTERS.sub("_", sanitized)
    sanitized = _WHITESPACE.sub("_", sanitized)
    sanitized = _DISALLOWED.sub("", sanitized)
    sanitized = _REPEATED_UNDERSCORES.sub("_", sanitized).upper()

    if not sanitized.strip("_") or len(sanitized) > max_length:
        return None
    return sanitized


def build_search_keywords(*fields: str | None) -> list[str]:
    """Return sorted lower-cased tokens for each field and each of its words."""
    keywords: set[str] = set()
    for field in fields:
        if not field:
            continue
        lowered = field.lower().strip()
        if not lowered:
            continue
        keywords.add(lowered)
        keywords.update(word for word in lowered.split() if word)
    return sorted(keywords)


def location_key(city: str | None, state: str | None) -> str:
    """Build the ``"City, State"`` key used by the location breakdowns."""
    return f"{city or 'Unknown'}, {state or 'Unknown'}"
