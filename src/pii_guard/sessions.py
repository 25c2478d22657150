"""Per-surface sessions for hosts that serve several chat surfaces at once.

Each surface (browser tab, panel, conversation id) gets its own
``SessionTokenizer`` and a small activity record.  Closing a surface
drops its mappings.
"""

from __future__ import annotations
import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Any

from .redactor import Redactor
from .tokenizer import SessionTokenizer

logger = logging.getLogger(__name__)


@dataclass
class SurfaceState:
    """Activity counters for one surface."""
    created_at: float = field(default_factory=time.time)
    last_tokenization: float | None = None
    last_detokenization: float | None = None
    pii_detected_count: int = 0
    tokens_replaced_count: int = 0
    last_pii_types: list[str] = field(default_factory=list)
    last_detection_method: str | None = None
    last_fallback_reason: str | None = None


@dataclass
class Surface:
    tokenizer: SessionTokenizer
    state: SurfaceState = field(default_factory=SurfaceState)


class SessionRegistry:
    """Maps surface ids to their sessions.  Owned by the integration layer."""

    def __init__(self, redactor: Redactor | None = None) -> None:
        self.redactor = redactor or Redactor()
        self._surfaces: dict[str, Surface] = {}
        self._lock = threading.Lock()

    def get(self, surface_id: str) -> Surface:
        """Return the surface, opening it on first use."""
        with self._lock:
            surface = self._surfaces.get(surface_id)
            if surface is None:
                surface = Surface(tokenizer=SessionTokenizer())
                self._surfaces[surface_id] = surface
                logger.info("Opened session for surface %s", surface_id)
            return surface

    def close(self, surface_id: str) -> bool:
        with self._lock:
            removed = self._surfaces.pop(surface_id, None)
        if removed is not None:
            logger.info("Closed session for surface %s", surface_id)
        return removed is not None

    def clear(self, surface_id: str) -> bool:
        """Drop a surface's mappings; unknown surfaces are left unopened."""
        with self._lock:
            surface = self._surfaces.get(surface_id)
        if surface is None:
            return False
        surface.tokenizer.clear()
        return True

    def surface_ids(self) -> list[str]:
        with self._lock:
            return list(self._surfaces)

    def __len__(self) -> int:
        return len(self._surfaces)

    # -- pipeline ------------------------------------------------------------

    def tokenize(self, surface_id: str, text: str) -> dict[str, Any]:
        """Detect and tokenize text for a surface.

        The response always carries usable text: on failure the input comes
        back unchanged with an ``error`` field so the UI can warn the user.
        """
        if not isinstance(text, str) or not text:
            return {"tokenized_text": text, "pii_detected": False}

        surface = self.get(surface_id)
        try:
            result = self.redactor.redact(text, surface.tokenizer)
        except Exception as exc:
            logger.exception("Tokenization failed for surface %s", surface_id)
            return {"tokenized_text": text, "pii_detected": False, "error": str(exc)}

        types = [e.entity_type for e in result.entities]
        state = surface.state
        state.last_detection_method = result.detection_method
        state.last_fallback_reason = result.fallback_reason
        if result.pii_detected:
            state.last_tokenization = time.time()
            state.pii_detected_count += len(result.entities)
            state.last_pii_types = types

        return {
            "tokenized_text": result.text,
            "pii_detected": result.pii_detected,
            "pii_count": len(result.entities),
            "pii_types": types,
            "detection_method": result.detection_method,
            "fallback_reason": result.fallback_reason,
        }

    def detokenize(self, surface_id: str, text: str) -> dict[str, Any]:
        if not isinstance(text, str) or not text:
            return {"detokenized_text": text, "tokens_found": False}

        surface = self.get(surface_id)
        tokens = surface.tokenizer.extract_tokens(text)
        if not tokens:
            return {"detokenized_text": text, "tokens_found": False}

        surface.state.last_detokenization = time.time()
        surface.state.tokens_replaced_count += len(tokens)
        return {
            "detokenized_text": surface.tokenizer.detokenize(text),
            "tokens_found": True,
            "token_count": len(tokens),
            "token_types": [t.type for t in tokens],
        }

    def status(self, surface_id: str) -> dict[str, Any]:
        with self._lock:
            surface = self._surfaces.get(surface_id)
        if surface is None:
            return {"active": False, "surface": surface_id}
        return {
            "active": True,
            "surface": surface_id,
            **surface.tokenizer.stats(),
            "state": asdict(surface.state),
        }
