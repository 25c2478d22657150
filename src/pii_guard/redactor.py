"""Redactor — the main API.  Detect, filter, then tokenize.

Usage:
    from pii_guard import Redactor, SessionTokenizer

    tokenizer = SessionTokenizer()   # one per chat surface
    redactor = Redactor()            # reusable

    result = redactor.redact("Email me at john@acme.com", tokenizer)
    print(result.text)               # "Email me at [EMAIL:EMAIL_ADDRESS_EM...]"

    print(tokenizer.detokenize(result.text))  # "Email me at john@acme.com"
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Callable

from .detector import UnifiedDetector
from .overlap import resolve_overlaps
from .patterns import EXTRA_RULES
from .tokenizer import SessionTokenizer
from .types import Entity, RedactedMessage

logger = logging.getLogger(__name__)


@dataclass
class RedactorConfig:
    """Configuration for the Redactor."""
    language: str = "en"
    combine_results: bool = False     # run remote and pattern together
    custom_scanners: list[Callable[[str], list[Entity]]] = field(default_factory=list)
    # Entity types to always skip (e.g. don't redact dates)
    skip_types: set[str] = field(default_factory=set)
    # Allow-list: values that should NEVER be redacted
    allow_list: set[str] = field(default_factory=set)
    # Opt-in pattern rules from patterns.EXTRA_RULES (e.g. "url", "address")
    extra_rules: list[str] = field(default_factory=list)


class Redactor:
    """Detection plus tokenization for one message at a time.

    The detector is shared; the tokenizer is passed per call because it
    belongs to the caller's session.
    """

    def __init__(
        self,
        config: RedactorConfig | None = None,
        detector: UnifiedDetector | None = None,
    ) -> None:
        self.config = config or RedactorConfig()
        self.detector = detector or UnifiedDetector(
            combine=self.config.combine_results,
            language=self.config.language,
        )
        if self.config.extra_rules:
            for name in self.config.extra_rules:
                entity_type, pattern, score = EXTRA_RULES[name]
                self.detector.pattern_detector.add_rule(entity_type, pattern, score)

    def redact(self, text: str, tokenizer: SessionTokenizer) -> RedactedMessage:
        """Tokenize PII in text, storing mappings in the tokenizer.

        Malformed or empty input comes back unchanged.
        """
        if not isinstance(text, str) or not text:
            return RedactedMessage(text=text)

        outcome = self.detector.detect(text)
        matches = list(outcome.entities)

        for scanner in self.config.custom_scanners:
            try:
                matches.extend(scanner(text))
            except Exception:
                logger.exception("Custom scanner %r failed", scanner)

        filtered = [
            m for m in matches
            if m.entity_type not in self.config.skip_types
            and m.text not in self.config.allow_list
            and 0 <= m.start < m.end <= len(text)
        ]
        filtered = resolve_overlaps(filtered)

        tokenized = tokenizer.tokenize(text, filtered)
        token_map = {
            tokenizer.token_for(m.entity_type, text[m.start:m.end]): text[m.start:m.end]
            for m in filtered
        }
        if filtered:
            logger.info(
                "Redacted %d entities (%s) via %s",
                len(filtered),
                ",".join(sorted({m.entity_type for m in filtered})),
                outcome.method,
            )
        return RedactedMessage(
            text=tokenized,
            entities=filtered,
            token_map=token_map,
            detection_method=outcome.method,
            fallback_reason=outcome.fallback_reason,
        )

    def redact_messages(
        self,
        messages: list[dict],
        tokenizer: SessionTokenizer,
        *,
        content_key: str = "content",
    ) -> list[dict]:
        """Redact PII from a list of chat messages.

        Returns new message dicts with content redacted.  Does NOT
        mutate the originals.
        """
        out: list[dict] = []
        for msg in messages:
            content = msg.get(content_key)
            if isinstance(content, str) and content:
                result = self.redact(content, tokenizer)
                out.append({**msg, content_key: result.text})
            else:
                out.append(msg)
        return out
