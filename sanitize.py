"""
Input sanitizers shared by request parsing and review metadata writes.
"""
import math
import re
from typing import Any, List

_TAGS = re.compile(r"<[^>]*>", re.DOTALL)
_OCTETS = re.compile(r"%[a-fA-F0-9]{2}")
_WHITESPACE = re.compile(r"\s+")
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def sanitize_text(value: Any) -> str:
    """Strip tags and percent-encoded octets, collapse whitespace, trim."""
    if value is None:
        return ""
    text = str(value)
    text = _TAGS.sub("", text)
    text = _OCTETS.sub("", text)
    text = _WHITESPACE.sub(" ", text)
    return text.strip()


def absint(value: Any) -> int:
    """Non-negative integer from anything; unparseable input gives 0.

    Strings are read up to the first non-digit, so "12abc" -> 12 and "4.7" -> 4.
    """
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return abs(value)
    if isinstance(value, float):
        return abs(int(value)) if math.isfinite(value) else 0
    if isinstance(value, str):
        match = _LEADING_INT.match(value)
        return abs(int(match.group(1))) if match else 0
    return 0


def sanitize_id_list(value: Any) -> str:
    """Normalize a comma-separated id list, dropping empty, zero and non-numeric tokens."""
    if not isinstance(value, str):
        return ""
    ids = [absint(token) for token in value.split(",")]
    return ",".join(str(i) for i in ids if i)


def parse_id_list(value: str) -> List[int]:
    return [int(token) for token in sanitize_id_list(value).split(",") if token]
