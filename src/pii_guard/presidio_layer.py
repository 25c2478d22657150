"""In-process Presidio engine behind the remote detection port.

For hosts that can afford spaCy in-process instead of running the
analyzer as a separate service.  Requires the ``presidio`` extra; the
engine is only built on first use.
"""

from __future__ import annotations
import logging
from typing import TYPE_CHECKING, Any

from .errors import RemoteError, RemoteUnavailable
from .remote import INTERNAL_TO_REMOTE, RemoteDetectionPort, to_internal_type
from .types import REMOTE, Entity

if TYPE_CHECKING:
    from presidio_analyzer import AnalyzerEngine

logger = logging.getLogger(__name__)

# Presidio's full set is much larger; these are the ones with internal types
DEFAULT_ENTITIES = sorted(set(INTERNAL_TO_REMOTE.values()) - {"SSN"} | {"US_SSN"})


class PresidioEngineDetector(RemoteDetectionPort):
    """Runs a Presidio ``AnalyzerEngine`` in this process."""

    def __init__(
        self,
        *,
        language: str = "en",
        score_threshold: float = 0.5,
        entities: list[str] | None = None,
        engine: AnalyzerEngine | None = None,
    ) -> None:
        self.language = language
        self.score_threshold = score_threshold
        self.entities = entities or DEFAULT_ENTITIES
        self._engine = engine
        self._load_failed = False

    def _get_engine(self) -> AnalyzerEngine:
        """Lazy-init the analyzer engine."""
        if self._engine is None:
            from presidio_analyzer import AnalyzerEngine
            from presidio_analyzer.nlp_engine import NlpEngineProvider

            provider = NlpEngineProvider(nlp_configuration={
                "nlp_engine_name": "spacy",
                "models": [{"lang_code": self.language, "model_name": f"{self.language}_core_web_sm"}],
            })
            self._engine = AnalyzerEngine(
                nlp_engine=provider.create_engine(),
                supported_languages=[self.language],
            )
            logger.info("Presidio engine loaded for language %s", self.language)
        return self._engine

    def is_available(self) -> bool:
        if self._load_failed:
            return False
        try:
            self._get_engine()
        except (ImportError, OSError) as exc:
            logger.warning("Presidio engine unavailable: %s", exc)
            self._load_failed = True
            return False
        return True

    def detect(self, text: str, language: str | None = None) -> list[Entity]:
        if not isinstance(text, str) or not text:
            return []
        if not self.is_available():
            raise RemoteUnavailable("Presidio engine could not be loaded")

        try:
            results = self._get_engine().analyze(
                text=text,
                language=language or self.language,
                entities=self.entities,
                score_threshold=self.score_threshold,
            )
        except Exception as exc:
            raise RemoteError(f"Presidio analysis failed: {exc}") from exc

        matches: list[Entity] = []
        for r in results:
            if r.score < self.score_threshold or not 0 <= r.start < r.end <= len(text):
                continue
            metadata: dict[str, Any] = getattr(r, "recognition_metadata", None) or {}
            matches.append(Entity(
                entity_type=to_internal_type(r.entity_type),
                start=r.start,
                end=r.end,
                text=text[r.start:r.end],
                score=r.score,
                detection_method=REMOTE,
                recognizer=metadata.get("recognizer_name"),
            ))
        return sorted(matches, key=lambda m: m.start)

    def status(self) -> dict[str, Any]:
        return {
            "available": self.is_available(),
            "engine": "presidio",
            "language": self.language,
            "score_threshold": self.score_threshold,
        }
