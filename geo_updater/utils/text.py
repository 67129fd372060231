"""Text processing utility functions for the data updater."""

import re

# Names matching this (Postgres regex) still need transliteration
NON_LATIN_NAME_PATTERN = "[^A-Za-z0-9 .-]"

_NON_IDENTIFIER_RE = re.compile(r"[^a-zA-Z0-9_]")
_MULTI_UNDERSCORE_RE = re.compile(r"_+")
_LATIN_LETTER_RE = re.compile(r"[A-Za-z]")
_APOSTROPHE_RE = re.compile(r"['‘’ʼ`]")
_DISALLOWED_RE = re.compile(r"[^A-Za-z0-9 .\-]")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_identifier(value: str) -> str:
    """Normalize a free-form value into a stable row identifier.

    Non-alphanumerics become underscores, runs of underscores collapse,
    and leading/trailing underscores are stripped.

    Args:
        value: Raw identifier (postal code, name_countrycode, ...)

    Returns:
        Normalized identifier, or empty string if nothing usable remains
    """
    if not value:
        return ""
    value = _NON_IDENTIFIER_RE.sub("_", value)
    value = _MULTI_UNDERSCORE_RE.sub("_", value)
    return value.strip("_")


def contains_latin(value: str | None) -> bool:
    """True if the string has at least one ASCII Latin letter."""
    return bool(value) and _LATIN_LETTER_RE.search(value) is not None


def clean_latin(value: str) -> str:
    """Drop characters outside the allowed Latin set and collapse whitespace.

    Apostrophes are removed outright ("St. John's" -> "St. Johns"); any other
    disallowed character becomes a space.
    """
    value = _APOSTROPHE_RE.sub("", value)
    value = _DISALLOWED_RE.sub(" ", value)
    return _WHITESPACE_RE.sub(" ", value).strip()
