"""Unified detector — remote first, pattern rules as the fallback.

Usage:
    detector = UnifiedDetector(remote=HttpRemoteDetector())
    outcome = detector.detect("Mail me at jane@acme.com")
    outcome.method            # "remote", or "remote_fallback" when degraded
    outcome.fallback_reason   # "service_unavailable" | "remote_error" | None

The path is chosen by the availability probe; a failing remote call is
an expected branch and comes back as a fallback outcome, never as an
exception.
"""

from __future__ import annotations
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from typing import Any

from .errors import RemoteDetectionError
from .overlap import merge_with_tolerance
from .patterns import PatternDetector
from .remote import RemoteDetectionPort
from .types import (
    PATTERN,
    REMOTE,
    REMOTE_ERROR,
    SERVICE_UNAVAILABLE,
    DetectionOutcome,
    Entity,
)

logger = logging.getLogger(__name__)


@dataclass
class DetectionMetrics:
    """Running counters.  Informational only."""
    total_detections: int = 0
    remote_success_count: int = 0
    remote_failure_count: int = 0
    pattern_fallback_count: int = 0
    average_remote_ms: float = 0.0
    average_pattern_ms: float = 0.0

    def record_remote(self, duration_ms: float) -> None:
        self.remote_success_count += 1
        self.average_remote_ms = _rolling(
            self.average_remote_ms, duration_ms, self.remote_success_count
        )

    def record_pattern(self, duration_ms: float) -> None:
        self.pattern_fallback_count += 1
        self.average_pattern_ms = _rolling(
            self.average_pattern_ms, duration_ms, self.pattern_fallback_count
        )

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        total = self.total_detections
        data["success_rate"] = self.remote_success_count / total if total else None
        data["fallback_rate"] = self.pattern_fallback_count / total if total else None
        return data


def _rolling(average: float, value: float, count: int) -> float:
    return (average * (count - 1) + value) / count


class UnifiedDetector:
    """Chooses between the remote port and the pattern detector."""

    def __init__(
        self,
        pattern_detector: PatternDetector | None = None,
        remote: RemoteDetectionPort | None = None,
        *,
        combine: bool = False,
        language: str | None = None,
        merge_tolerance: int = 2,
    ) -> None:
        self.pattern_detector = pattern_detector or PatternDetector()
        self.remote = remote
        self.combine = combine
        self.language = language
        self.merge_tolerance = merge_tolerance
        self.metrics = DetectionMetrics()

    # -- public API ----------------------------------------------------------

    def analyze(self, text: str) -> list[Entity]:
        return self.detect(text).entities

    def detect(self, text: str) -> DetectionOutcome:
        """Run the configured policy.  Never raises."""
        if not isinstance(text, str) or not text:
            return DetectionOutcome()
        if self.combine:
            return self.detect_combined(text)
        return self._detect_sequential(text)

    def detect_sequential(self, text: str) -> DetectionOutcome:
        """Remote first, pattern fallback, regardless of ``combine``."""
        if not isinstance(text, str) or not text:
            return DetectionOutcome()
        return self._detect_sequential(text)

    def _detect_sequential(self, text: str) -> DetectionOutcome:
        started = time.perf_counter()
        self.metrics.total_detections += 1

        if self.remote is None:
            return DetectionOutcome(entities=self._run_pattern(text, started))

        if not self._remote_available():
            logger.info("Remote detector unavailable, using pattern rules")
            return DetectionOutcome.fallback(
                self._run_pattern(text, started), SERVICE_UNAVAILABLE
            )

        entities = self._run_remote(text, started)
        if entities is None:
            return DetectionOutcome.fallback(
                self._run_pattern(text, started), REMOTE_ERROR
            )
        return DetectionOutcome.success(entities, REMOTE)

    def detect_combined(self, text: str) -> DetectionOutcome:
        """Run both detectors concurrently and merge.

        All remote entities are kept; pattern entities are added where they
        do not come within ``merge_tolerance`` characters of a remote one.
        """
        if not isinstance(text, str) or not text:
            return DetectionOutcome()
        if self.remote is None:
            return self._detect_sequential(text)

        started = time.perf_counter()
        self.metrics.total_detections += 1

        with ThreadPoolExecutor(max_workers=2) as pool:
            remote_future = pool.submit(self._run_remote, text, started)
            pattern_future = pool.submit(self._run_pattern, text, started)
            remote_entities = remote_future.result()
            pattern_entities = pattern_future.result()

        if remote_entities is None:
            return DetectionOutcome.fallback(pattern_entities, REMOTE_ERROR)

        merged = merge_with_tolerance(
            [e.tagged(REMOTE) for e in remote_entities],
            pattern_entities,
            tolerance=self.merge_tolerance,
        )
        logger.debug(
            "Combined detection: remote=%d pattern=%d merged=%d",
            len(remote_entities), len(pattern_entities), len(merged),
        )
        return DetectionOutcome(entities=merged, method=REMOTE)

    def close(self) -> None:
        if self.remote is not None:
            self.remote.close()

    # -- status --------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        remote_status: dict[str, Any] | None = None
        if self.remote is not None:
            try:
                remote_status = self.remote.status()
            except Exception:
                logger.exception("Remote status query failed")
                remote_status = {"available": False}
        return {
            "remote": remote_status,
            "metrics": self.metrics.as_dict(),
            "preferences": {
                "remote_first": self.remote is not None,
                "combine_results": self.combine,
                "pattern_types": self.pattern_detector.entity_types,
            },
        }

    def reset_metrics(self) -> None:
        self.metrics = DetectionMetrics()
        logger.info("Detection metrics reset")

    # -- internals -----------------------------------------------------------

    def _remote_available(self) -> bool:
        try:
            return self.remote.is_available()
        except Exception:
            logger.exception("Remote availability probe failed")
            return False

    def _run_remote(self, text: str, started: float) -> list[Entity] | None:
        """Remote entities, or None when the call failed."""
        try:
            entities = self.remote.detect(text, self.language)
        except RemoteDetectionError as exc:
            self.metrics.remote_failure_count += 1
            logger.warning("Remote detection failed, falling back: %s", exc)
            return None
        except Exception:
            self.metrics.remote_failure_count += 1
            logger.exception("Unexpected remote detector failure, falling back")
            return None
        self.metrics.record_remote((time.perf_counter() - started) * 1000)
        return entities

    def _run_pattern(self, text: str, started: float) -> list[Entity]:
        entities = self.pattern_detector.analyze(text)
        self.metrics.record_pattern((time.perf_counter() - started) * 1000)
        return [e.tagged(PATTERN) for e in entities]
