"""Per-type acceptance rules for regex candidates.

A regex match is only a candidate: these checks drop the obvious false
positives (invalid card numbers, blocked SSNs, capitalised phrases that
are not names) before an entity leaves the pattern layer.
"""

from __future__ import annotations
import logging
import re
from typing import Callable

import pendulum

logger = logging.getLogger(__name__)

_NON_DIGIT = re.compile(r"\D")

# Fixed confidence per entity type (not derived from the matched text)
BASE_SCORES: dict[str, float] = {
    "ssn": 0.95,
    "email": 0.9,
    "cc": 0.9,
    "phone": 0.85,
    "date": 0.8,
    "name": 0.7,
}
DEFAULT_SCORE = 0.5

NAME_STOP_WORDS = frozenset({
    "the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
    "this", "that", "these", "those", "a", "an", "is", "are", "was", "were",
    "be", "been", "being", "have", "has", "had", "do", "does", "did", "will",
    "would", "could", "should", "may", "might", "can", "must",
})

_BLOCKED_SSNS = frozenset({"000000000", "123456789"})


def digits_of(text: str) -> str:
    return _NON_DIGIT.sub("", text)


def base_score(entity_type: str) -> float:
    return BASE_SCORES.get(entity_type, DEFAULT_SCORE)


def validate_email(text: str) -> bool:
    parts = text.split("@")
    if len(parts) != 2:
        return False
    local, domain = parts
    return bool(local) and bool(domain) and "." in domain


def validate_phone(text: str) -> bool:
    return len(digits_of(text)) in (10, 11)


def validate_ssn(text: str) -> bool:
    digits = digits_of(text)
    if len(digits) != 9 or digits in _BLOCKED_SSNS:
        return False
    return digits[:3] != "000" and digits[3:5] != "00" and digits[5:] != "0000"


def luhn_check(digits: str) -> bool:
    """Standard mod-10 check, doubling every second digit from the right."""
    total = 0
    for i, ch in enumerate(reversed(digits)):
        d = int(ch)
        if i % 2 == 1:
            d *= 2
            if d > 9:
                d -= 9
        total += d
    return total % 10 == 0


def validate_credit_card(text: str) -> bool:
    digits = digits_of(text)
    if not 13 <= len(digits) <= 19:
        return False
    return luhn_check(digits)


def validate_name(text: str) -> bool:
    words = text.split()
    if not 2 <= len(words) <= 4:
        return False
    return not any(w.lower() in NAME_STOP_WORDS for w in words)


def validate_date(text: str) -> bool:
    try:
        parsed = pendulum.parse(text, strict=False)
    except (ValueError, OverflowError):
        return False
    year = getattr(parsed, "year", None)
    if year is None:
        # Durations and bare times carry no calendar year
        return False
    return 1900 <= year <= pendulum.now().year + 10


_VALIDATORS: dict[str, Callable[[str], bool]] = {
    "email": validate_email,
    "phone": validate_phone,
    "ssn": validate_ssn,
    "cc": validate_credit_card,
    "name": validate_name,
    "date": validate_date,
}


def validate(entity_type: str, text: str) -> bool:
    """Return True if *text* is acceptable as an entity of *entity_type*.

    Unknown types are accepted unconditionally.
    """
    check = _VALIDATORS.get(entity_type)
    if check is None:
        return True
    ok = check(text)
    if not ok:
        logger.debug("Rejected %s candidate (%d chars)", entity_type, len(text))
    return ok
