"""Phone number validation and normalization."""

import re
from dataclasses import dataclass

from nummercheck.shared.errors import InvalidPhoneNumber

_SEPARATORS = re.compile(r"[\s\-().]")
_INTERNATIONAL = re.compile(r"^(\+|00)\d{6,15}$")
_NATIONAL = re.compile(r"^0\d{6,15}$")

MIN_INPUT_LENGTH = 6
MAX_INPUT_LENGTH = 20


@dataclass(frozen=True)
class ParsedPhoneNumber:
    """A validated phone number.

    Attributes:
        raw: Input as supplied, trimmed.
        normalized: Digits with an optional leading "+".
    """

    raw: str
    normalized: str


def validate_phone_number(value: str) -> bool:
    """Check whether input looks like a dialable phone number.

    Args:
        value: User or provider supplied number.

    Returns:
        True for international (+ or 00) and national (0) formats.
    """
    trimmed = value.strip()
    if not MIN_INPUT_LENGTH <= len(trimmed) <= MAX_INPUT_LENGTH:
        return False
    compact = _SEPARATORS.sub("", trimmed)
    return bool(_INTERNATIONAL.match(compact) or _NATIONAL.match(compact))


def parse_phone_number(value: str) -> ParsedPhoneNumber:
    """Normalize a phone number to its canonical storage form.

    Args:
        value: User or provider supplied number.

    Returns:
        ParsedPhoneNumber with "00" prefixes rewritten to "+".

    Raises:
        InvalidPhoneNumber: If the input is not a valid number.
    """
    if not isinstance(value, str) or not validate_phone_number(value):
        raise InvalidPhoneNumber(f"invalid phone number: {value!r}")
    compact = _SEPARATORS.sub("", value.strip())
    if compact.startswith("00"):
        compact = "+" + compact[2:]
    return ParsedPhoneNumber(raw=value.strip(), normalized=compact)
