"""SessionTokenizer — session-scoped bidirectional mapping between PII and tokens.

Design goals:
  - Deterministic: same (type, value) always maps to the same token within a session
  - Session-salted: the session id is part of the hash, so two sessions
    disagree on the token for the same value
  - Lossless: every minted token maps back to exactly one original value

Token format: [TYPE:LABEL_PPXXXX], e.g. [EMAIL:EMAIL_ADDRESS_EM4K2Q]
"""

from __future__ import annotations
import hashlib
import logging
import re
import secrets
import threading
from typing import Any, Iterable

from .overlap import resolve_overlaps
from .types import Entity, ExtractedToken

logger = logging.getLogger(__name__)

_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
_ID_LENGTH = 4

SEMANTIC_LABELS: dict[str, str] = {
    "name": "PERSON_NAME",
    "email": "EMAIL_ADDRESS",
    "phone": "PHONE_NUMBER",
    "ssn": "SSN_NUMBER",
    "cc": "CREDIT_CARD",
    "address": "STREET_ADDRESS",
    "date": "DATE_VALUE",
    "url": "URL_LINK",
}
DEFAULT_LABEL = "PII_TOKEN"

ID_PREFIXES: dict[str, str] = {
    "name": "NM",
    "email": "EM",
    "phone": "PH",
    "ssn": "SS",
    "cc": "CC",
    "address": "AD",
    "date": "DT",
    "url": "UR",
}
DEFAULT_PREFIX = "TK"

_TYPE_CODE_CHARS = re.compile(r"[^A-Z0-9_]")


def new_session_id() -> str:
    return secrets.token_hex(12)


def type_code(entity_type: str) -> str:
    """Upper-cased code used in the token, e.g. "cc" -> "CC"."""
    code = _TYPE_CODE_CHARS.sub("_", entity_type.upper())
    return code or "PII"


def synthetic_id(entity_type: str, original: str, session_id: str, probe: int = 0) -> str:
    """Two-letter type prefix plus four characters from a hash of the triple."""
    key = f"{entity_type}:{original}:{session_id}"
    if probe:
        key = f"{key}:{probe}"
    value = int.from_bytes(hashlib.sha256(key.encode("utf-8")).digest()[:8], "big")
    chars = []
    for _ in range(_ID_LENGTH):
        value, idx = divmod(value, len(_ALPHABET))
        chars.append(_ALPHABET[idx])
    return ID_PREFIXES.get(entity_type, DEFAULT_PREFIX) + "".join(chars)


def format_token(entity_type: str, sid: str) -> str:
    label = SEMANTIC_LABELS.get(entity_type, DEFAULT_LABEL)
    return f"[{type_code(entity_type)}:{label}_{sid}]"


def token_pattern(codes: Iterable[str]) -> re.Pattern:
    """Token grammar restricted to the given type codes."""
    alternatives = "|".join(sorted((re.escape(c) for c in set(codes)), key=len, reverse=True))
    return re.compile(
        rf"\[({alternatives}):([A-Z][A-Z_]*?)_([A-Z]{{2}}[A-Z0-9]{{{_ID_LENGTH}}})\]"
    )


DEFAULT_CODES = frozenset(type_code(t) for t in SEMANTIC_LABELS)


class SessionTokenizer:
    """Reversible PII ↔ token store, scoped to one session.

    One instance per input surface (chat tab, panel, conversation).  The
    mapping only grows until ``clear()``, which also rotates the session id
    and so invalidates every token issued before.
    """

    def __init__(self, session_id: str | None = None) -> None:
        self._session_id = session_id or new_session_id()
        self._forward: dict[tuple[str, str], str] = {}   # ("email", "a@b.com") → token
        self._reverse: dict[str, str] = {}               # token → "a@b.com"
        self._codes: set[str] = set(DEFAULT_CODES)
        self._pattern = token_pattern(self._codes)
        self._lock = threading.Lock()

    @classmethod
    def restore(cls, session_id: str, mappings: dict[str, str]) -> SessionTokenizer:
        """Rebuild a session from a ``mappings()`` snapshot (token → original)."""
        tokenizer = cls(session_id)
        for token, original in mappings.items():
            m = re.fullmatch(r"\[([A-Z0-9_]+):[A-Z_]+_[A-Z]{2}[A-Z0-9]{4}\]", token)
            if m is None:
                logger.warning("Skipping malformed token in snapshot")
                continue
            entity_type = m.group(1).lower()
            tokenizer._store(entity_type, original, token)
        return tokenizer

    @property
    def session_id(self) -> str:
        return self._session_id

    # ------------------------------------------------------------------
    # Core API
    # ------------------------------------------------------------------

    def token_for(self, entity_type: str, original: str) -> str:
        """Return the existing token or mint one for this value."""
        with self._lock:
            key = (entity_type, original)
            token = self._forward.get(key)
            if token is not None:
                return token

            probe = 0
            token = format_token(entity_type, synthetic_id(entity_type, original, self._session_id))
            while token in self._reverse:
                # Hash collision with a different value in this session
                probe += 1
                token = format_token(
                    entity_type, synthetic_id(entity_type, original, self._session_id, probe)
                )
            self._store(entity_type, original, token)
            return token

    def tokenize(self, text: str, entities: list[Entity]) -> str:
        """Replace entity spans with tokens, right to left."""
        if not isinstance(text, str) or not entities:
            return text

        cleaned = [e for e in resolve_overlaps(entities) if 0 <= e.start < e.end <= len(text)]
        if len(cleaned) != len(entities):
            logger.debug(
                "Overlap resolution kept %d of %d entities", len(cleaned), len(entities)
            )

        result = text
        for entity in sorted(cleaned, key=lambda e: e.start, reverse=True):
            original = text[entity.start:entity.end]
            token = self.token_for(entity.entity_type, original)
            result = result[:entity.start] + token + result[entity.end:]
        return result

    def detokenize(self, text: str) -> str:
        """Replace known tokens with their originals; unknown tokens stay verbatim."""
        if not isinstance(text, str) or not text:
            return text
        return self._pattern.sub(lambda m: self._reverse.get(m.group(0), m.group(0)), text)

    def extract_tokens(self, text: str) -> list[ExtractedToken]:
        if not isinstance(text, str) or not text:
            return []
        return [
            ExtractedToken(
                token=m.group(0),
                type=m.group(1).lower(),
                label=m.group(2),
                synthetic_id=m.group(3),
                start=m.start(),
                end=m.end(),
            )
            for m in self._pattern.finditer(text)
        ]

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def size(self) -> int:
        return len(self._reverse)

    def mappings(self) -> dict[str, str]:
        """Return a copy of the token→original mapping."""
        return dict(self._reverse)

    def stats(self) -> dict[str, Any]:
        return {"total_mappings": len(self._forward), "session_id": self._session_id}

    def clear(self) -> None:
        with self._lock:
            self._forward.clear()
            self._reverse.clear()
            self._codes = set(DEFAULT_CODES)
            self._pattern = token_pattern(self._codes)
            self._session_id = new_session_id()
        logger.info("Token mappings cleared, session rotated")

    # ------------------------------------------------------------------

    def _store(self, entity_type: str, original: str, token: str) -> None:
        self._forward[(entity_type, original)] = token
        self._reverse[token] = original
        code = type_code(entity_type)
        if code not in self._codes:
            self._codes.add(code)
            self._pattern = token_pattern(self._codes)
