"""Pattern layer: fast regex rules for structured PII.

This is the local detector: it needs no service and is the fallback
whenever the remote detector is missing or failing.  Every match is
checked by ``validators`` and the survivors are de-overlapped.
"""

from __future__ import annotations
import logging
import re

from . import validators
from .overlap import resolve_overlaps
from .types import PATTERN, Entity

logger = logging.getLogger(__name__)

# Each rule: (entity_type, compiled_regex, score)
Rule = tuple[str, re.Pattern, float]

_MONTHS = r"(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*"

DEFAULT_RULES: list[Rule] = [
    ("email", re.compile(
        r"\b[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}\b"
    ), validators.base_score("email")),

    # North American numbers, optional +1, optional parentheses
    ("phone", re.compile(
        r"(?:\+?1[\-.\s]?)?\(?\d{3}\)?[\-.\s]?\d{3}[\-.\s]?\d{4}\b"
    ), validators.base_score("phone")),

    ("ssn", re.compile(
        r"\b(?:\d{3}[\-.\s]?\d{2}[\-.\s]?\d{4}|\d{9})\b"
    ), validators.base_score("ssn")),

    ("cc", re.compile(
        r"\b(?:\d{4}[\-.\s]?\d{4}[\-.\s]?\d{4}[\-.\s]?\d{4}|\d{13,19})\b"
    ), validators.base_score("cc")),

    # Two or three capitalised words
    ("name", re.compile(
        r"\b[A-Z][a-z]+ [A-Z][a-z]+(?:\s[A-Z][a-z]+)?\b"
    ), validators.base_score("name")),

    ("date", re.compile(
        r"\b(?:\d{1,2}[\-/]\d{1,2}[\-/]\d{2,4}"
        r"|\d{2,4}[\-/]\d{1,2}[\-/]\d{1,2}"
        rf"|{_MONTHS}\s+\d{{1,2}},?\s+\d{{2,4}})\b",
        re.IGNORECASE,
    ), validators.base_score("date")),
]

# Opt-in rules, not part of the default table
EXTRA_RULES: dict[str, Rule] = {
    "url": ("url", re.compile(
        r"\bhttps?://[^\s<>\"'\])]+"
    ), 0.6),
    "address": ("address", re.compile(
        r"\b\d{1,5}\s+(?:[A-Z][a-z]+\s+){1,3}"
        r"(?:Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd|Lane|Ln|Drive|Dr|Court|Ct|Way)\b\.?"
    ), 0.6),
}


class PatternDetector:
    """Regex detector over a fixed rule table.

    ``add_rule`` extends the table (address and URL rules live in
    ``EXTRA_RULES``) without changing callers.
    """

    def __init__(self, rules: list[Rule] | None = None) -> None:
        self._rules: list[Rule] = list(rules if rules is not None else DEFAULT_RULES)

    @property
    def entity_types(self) -> list[str]:
        return [entity_type for entity_type, _, _ in self._rules]

    def add_rule(self, entity_type: str, pattern: str | re.Pattern, score: float | None = None) -> None:
        compiled = re.compile(pattern) if isinstance(pattern, str) else pattern
        self._rules.append((
            entity_type,
            compiled,
            score if score is not None else validators.base_score(entity_type),
        ))

    def analyze(self, text: str) -> list[Entity]:
        """Return validated, sorted, non-overlapping entities.  Never raises."""
        if not isinstance(text, str) or not text:
            return []
        try:
            return resolve_overlaps(self._scan(text))
        except Exception:
            logger.exception("Pattern detection failed; returning no entities")
            return []

    def _scan(self, text: str) -> list[Entity]:
        candidates: list[Entity] = []
        for entity_type, pattern, score in self._rules:
            for m in pattern.finditer(text):
                if m.end() <= m.start():
                    continue
                if not validators.validate(entity_type, m.group()):
                    continue
                candidates.append(Entity(
                    entity_type=entity_type,
                    start=m.start(),
                    end=m.end(),
                    text=m.group(),
                    score=score,
                    detection_method=PATTERN,
                ))
        logger.debug("Pattern scan produced %d candidates", len(candidates))
        return candidates


def scan_patterns(text: str) -> list[Entity]:
    """Run the default rule table against text."""
    return PatternDetector().analyze(text)
