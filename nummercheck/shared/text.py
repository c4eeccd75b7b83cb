"""Text normalization helpers shared by the webhook and status paths."""

import re
import unicodedata
from collections.abc import Mapping
from typing import Any

_BYTE_QUOTING = re.compile(r"^b?['\"]|['\"]$")
_WHITESPACE = re.compile(r"\s+")
_EDGE_NON_WORD = re.compile(r"^[\W_]+|[\W_]+$")
_PUNCTUATION = re.compile(r"[^\w\s]|_")

GENERIC_CALLER_LABELS = (
    "onbekende beller",
    "unknown caller",
    "unknown",
    "n.v.t",
    "nvt",
    "n/a",
    "not available",
    "niet beschikbaar",
    "niet bekend",
    "geen naam",
    "unknown person",
    "unknown name",
    "business",
    "company",
    "organization",
    "organisation",
    "bedrijf",
    "bedrijfsnaam",
    "company name",
    "anonymous",
    "anoniem",
    "private caller",
    "private number",
)


def normalize_status(value: Any) -> str:
    """Normalize a vendor status or event string for keyword matching.

    Upstream sometimes serializes statuses as Python byte-string
    literals (``b'completed'``); the quoting is stripped here so that
    every comparison downstream sees plain text.

    Args:
        value: Raw status, event name, bytes, or None.

    Returns:
        Trimmed, lowercased status text; empty string for None.
    """
    if value is None:
        return ""
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    text = str(value).strip()
    return _BYTE_QUOTING.sub("", text).strip().lower()


def _label_key(value: str) -> str:
    folded = unicodedata.normalize("NFKC", value).casefold()
    stripped = _PUNCTUATION.sub("", folded)
    return _WHITESPACE.sub(" ", stripped).strip()


_GENERIC_KEYS = frozenset(_label_key(label) for label in GENERIC_CALLER_LABELS)


def is_generic_label(value: str) -> bool:
    """Check whether a name is a placeholder such as "Unknown" or "N/A".

    Args:
        value: Candidate caller name.

    Returns:
        True when the name matches the generic-label denylist after
        Unicode folding, case-folding, and punctuation stripping.
    """
    return _label_key(value) in _GENERIC_KEYS


def clean_caller_name(value: Any) -> str | None:
    """Collapse whitespace and trim punctuation around a caller name.

    Args:
        value: Raw name candidate.

    Returns:
        Cleaned name, or None if not a string or shorter than 2 chars.
    """
    if not isinstance(value, str):
        return None
    collapsed = _WHITESPACE.sub(" ", unicodedata.normalize("NFKC", value)).strip()
    trimmed = _EDGE_NON_WORD.sub("", collapsed)
    if len(trimmed) < 2:
        return None
    return trimmed


def pick_string(*values: Any) -> str | None:
    """Return the first string whose trimmed length exceeds one character.

    Args:
        *values: Candidates in priority order.

    Returns:
        The trimmed winning string, or None.
    """
    for value in values:
        if isinstance(value, str) and len(value.strip()) > 1:
            return value.strip()
    return None


def as_mapping(value: Any) -> dict[str, Any]:
    """Coerce an arbitrary JSON value to a dict.

    Args:
        value: Parsed JSON value.

    Returns:
        The value itself when it is a mapping, else an empty dict.
    """
    if isinstance(value, Mapping):
        return dict(value)
    return {}


def to_bool(value: Any) -> bool | None:
    """Interpret a boolean that may arrive as "true"/"false" text.

    Args:
        value: Raw flag.

    Returns:
        The boolean, or None when the value is not recognizably boolean.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return None
