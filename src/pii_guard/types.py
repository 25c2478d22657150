"""Core types."""

from __future__ import annotations
from dataclasses import dataclass, field, replace


# Detection methods
PATTERN = "pattern"
REMOTE = "remote"
REMOTE_FALLBACK = "remote_fallback"

# Fallback reasons
SERVICE_UNAVAILABLE = "service_unavailable"
REMOTE_ERROR = "remote_error"


@dataclass(frozen=True, slots=True)
class Entity:
    """A single detected PII span."""
    entity_type: str       # e.g. "email", "name", "cc"
    start: int
    end: int               # half-open
    text: str
    score: float           # 0.0–1.0 confidence
    detection_method: str = PATTERN
    recognizer: str | None = None
    fallback_reason: str | None = None

    def tagged(self, method: str, reason: str | None = None) -> Entity:
        return replace(self, detection_method=method, fallback_reason=reason)


@dataclass(slots=True)
class DetectionOutcome:
    """Result of one detection call: which path produced the entities and why."""
    entities: list[Entity] = field(default_factory=list)
    method: str = PATTERN
    fallback_reason: str | None = None

    @classmethod
    def success(cls, entities: list[Entity], method: str = REMOTE) -> DetectionOutcome:
        return cls(entities=[e.tagged(method) for e in entities], method=method)

    @classmethod
    def fallback(cls, entities: list[Entity], reason: str) -> DetectionOutcome:
        return cls(
            entities=[e.tagged(REMOTE_FALLBACK, reason) for e in entities],
            method=REMOTE_FALLBACK,
            fallback_reason=reason,
        )

    @property
    def degraded(self) -> bool:
        return self.method == REMOTE_FALLBACK


@dataclass(frozen=True, slots=True)
class ExtractedToken:
    """A token found in text by SessionTokenizer.extract_tokens."""
    token: str
    type: str              # lower-cased type code, e.g. "email"
    label: str             # semantic label, e.g. "EMAIL_ADDRESS"
    synthetic_id: str      # e.g. "EM4K2Q"
    start: int
    end: int


@dataclass(slots=True)
class RedactedMessage:
    """Result of redacting a message."""
    text: str                                   # tokenized text
    entities: list[Entity] = field(default_factory=list)
    token_map: dict[str, str] = field(default_factory=dict)  # token → original
    detection_method: str = PATTERN
    fallback_reason: str | None = None

    @property
    def pii_detected(self) -> bool:
        return bool(self.entities)
