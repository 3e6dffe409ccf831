"""Composite identifiers: two backend coordinates packed into one opaque token."""

import re

DRAFT_PREFIX = "Draft: "

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def _to_int(text: str) -> int:
    # leading digits only, so "12abc" reads as 12; anything else is 0
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else 0


def encode_composite_id(primary: int, secondary: int | str) -> str:
    return f"{primary}:{secondary}"


def decode_composite_id(token: str) -> tuple[int, str]:
    """Split ``"{primary}:{secondary}"`` without ever raising.

    A token with no delimiter decodes to ``(0, token)``; a non-numeric
    primary decodes to ``0``.
    """
    primary, sep, secondary = token.partition(":")
    if not sep:
        return 0, token
    return _to_int(primary), secondary


def decode_numeric_composite_id(token: str) -> tuple[int, int]:
    """Like :func:`decode_composite_id` with a numeric secondary (0 when not numeric)."""
    primary, secondary = decode_composite_id(token)
    return primary, _to_int(secondary)


def add_draft_prefix(title: str) -> str:
    if title.startswith(DRAFT_PREFIX):
        return title
    return f"{DRAFT_PREFIX}{title}"


def strip_draft_prefix(title: str) -> str:
    return title.removeprefix(DRAFT_PREFIX)


def stable_numeric_id(text: str) -> int:
    """Derive a stable non-negative int from a string id (UUID, GUID).

    Uses the 32-bit ``s[0]*31^(n-1) + ... + s[n-1]`` string hash so the same
    id always maps to the same number across processes.
    """
    value = 0
    for char in text:
        value = (value * 31 + ord(char)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return abs(value)
