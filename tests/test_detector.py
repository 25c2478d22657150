"""Tests for the unified detector — fallback policy, combined mode, metrics."""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from pii_guard.detector import UnifiedDetector
from pii_guard.errors import RemoteTimeout, RemoteUnavailable
from pii_guard.remote import RemoteDetectionPort
from pii_guard.types import Entity

TEXT = "Hi, I'm John Smith. My email is john.smith@email.com"
EMAIL_START = TEXT.index("john.smith@")
EMAIL_END = EMAIL_START + len("john.smith@email.com")


class FakeRemote(RemoteDetectionPort):
    """Scriptable stand-in for a remote analyzer."""

    def __init__(self, *, available=True, entities=None, error=None):
        self.available = available
        self.entities = entities or []
        self.error = error
        self.detect_calls = 0

    def is_available(self):
        return self.available

    def detect(self, text, language=None):
        self.detect_calls += 1
        if self.error is not None:
            raise self.error
        return list(self.entities)


def remote_email(start=EMAIL_START, end=EMAIL_END):
    return Entity(
        entity_type="email", start=start, end=end, text=TEXT[start:end],
        score=1.0, detection_method="remote", recognizer="EmailRecognizer",
    )


# ── Sequential policy ────────────────────────────────────────────────

def test_pattern_only_without_remote():
    outcome = UnifiedDetector().detect(TEXT)
    assert outcome.method == "pattern"
    assert outcome.fallback_reason is None
    assert {e.entity_type for e in outcome.entities} == {"name", "email"}
    assert all(e.detection_method == "pattern" for e in outcome.entities)


def test_remote_success_is_tagged_remote():
    remote = FakeRemote(entities=[remote_email()])
    outcome = UnifiedDetector(remote=remote).detect(TEXT)
    assert outcome.method == "remote"
    assert not outcome.degraded
    assert [e.entity_type for e in outcome.entities] == ["email"]
    assert outcome.entities[0].detection_method == "remote"
    assert outcome.entities[0].recognizer == "EmailRecognizer"


def test_unavailable_remote_falls_back():
    remote = FakeRemote(available=False)
    outcome = UnifiedDetector(remote=remote).detect(TEXT)
    assert outcome.method == "remote_fallback"
    assert outcome.fallback_reason == "service_unavailable"
    assert outcome.degraded
    assert remote.detect_calls == 0
    assert {e.entity_type for e in outcome.entities} == {"name", "email"}
    assert all(e.detection_method == "remote_fallback" for e in outcome.entities)
    assert all(e.fallback_reason == "service_unavailable" for e in outcome.entities)


@pytest.mark.parametrize("error", [RemoteTimeout("slow"), RemoteUnavailable("down"), RuntimeError("bug")])
def test_failing_remote_falls_back(error):
    detector = UnifiedDetector(remote=FakeRemote(error=error))
    outcome = detector.detect(TEXT)
    assert outcome.method == "remote_fallback"
    assert outcome.fallback_reason == "remote_error"
    assert {e.entity_type for e in outcome.entities} == {"name", "email"}
    assert detector.metrics.remote_failure_count == 1
    assert detector.metrics.pattern_fallback_count == 1


def test_probe_exception_counts_as_unavailable():
    class BrokenProbe(FakeRemote):
        def is_available(self):
            raise RuntimeError("probe exploded")

    outcome = UnifiedDetector(remote=BrokenProbe()).detect(TEXT)
    assert outcome.fallback_reason == "service_unavailable"


def test_analyze_returns_entities_only():
    entities = UnifiedDetector().analyze(TEXT)
    assert isinstance(entities, list)
    assert all(isinstance(e, Entity) for e in entities)


@pytest.mark.parametrize("bad", ["", None, 12, b"bytes"])
def test_malformed_input_is_a_no_op(bad):
    remote = FakeRemote()
    detector = UnifiedDetector(remote=remote)
    assert detector.analyze(bad) == []
    assert remote.detect_calls == 0
    assert detector.metrics.total_detections == 0


# ── Combined mode ────────────────────────────────────────────────────

def test_combined_keeps_remote_and_adds_distant_pattern_entities():
    # Remote boundary differs by one char from the pattern email: still one entity
    remote = FakeRemote(entities=[remote_email(end=EMAIL_END - 1)])
    outcome = UnifiedDetector(remote=remote, combine=True).detect(TEXT)
    types = [(e.entity_type, e.detection_method) for e in outcome.entities]
    assert types == [("name", "pattern"), ("email", "remote")]
    assert outcome.method == "remote"


def test_combined_with_failing_remote_uses_pattern():
    remote = FakeRemote(error=RemoteTimeout("slow"))
    outcome = UnifiedDetector(remote=remote).detect_combined(TEXT)
    assert outcome.fallback_reason == "remote_error"
    assert {e.entity_type for e in outcome.entities} == {"name", "email"}


def test_combined_without_remote_is_pattern_only():
    outcome = UnifiedDetector(combine=True).detect(TEXT)
    assert outcome.method == "pattern"


# ── Metrics / status ─────────────────────────────────────────────────

def test_metrics_track_paths():
    remote = FakeRemote(entities=[remote_email()])
    detector = UnifiedDetector(remote=remote)
    detector.detect(TEXT)
    remote.available = False
    detector.detect(TEXT)

    m = detector.metrics
    assert m.total_detections == 2
    assert m.remote_success_count == 1
    assert m.pattern_fallback_count == 1
    assert m.average_remote_ms >= 0
    data = m.as_dict()
    assert data["success_rate"] == 0.5
    assert data["fallback_rate"] == 0.5


def test_status_and_reset():
    detector = UnifiedDetector(remote=FakeRemote())
    detector.detect(TEXT)
    status = detector.status()
    assert status["remote"] == {"available": True}
    assert status["preferences"]["remote_first"] is True
    assert "email" in status["preferences"]["pattern_types"]

    detector.reset_metrics()
    assert detector.metrics.total_detections == 0
    assert detector.status()["metrics"]["success_rate"] is None


# ── Shared detector ──────────────────────────────────────────────────

def test_detect_sequential_leaves_combine_flag_alone():
    seen = []

    class Spy(FakeRemote):
        def detect(self, text, language=None):
            seen.append(detector.combine)
            return super().detect(text, language)

    detector = UnifiedDetector(remote=Spy(entities=[remote_email()]), combine=True)
    outcome = detector.detect_sequential(TEXT)
    assert outcome.method == "remote"
    assert [e.entity_type for e in outcome.entities] == ["email"]
    assert seen == [True]
    assert detector.combine is True


def test_close_releases_remote():
    class Closing(FakeRemote):
        closed = False

        def close(self):
            self.closed = True

    remote = Closing()
    UnifiedDetector(remote=remote).close()
    assert remote.closed
    UnifiedDetector().close()
