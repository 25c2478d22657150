"""Tests for config loading, environment overrides and the CLI."""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import io
import json

import pytest

from pii_guard import cli
from pii_guard.config import (
    apply_env,
    build_redactor,
    build_remote,
    create_middleware,
    create_registry,
    load_config,
    load_from_yaml,
)
from pii_guard.errors import ConfigError
from pii_guard.middleware import RedactMiddleware
from pii_guard.remote import HttpRemoteDetector


# ── load_config ──────────────────────────────────────────────────────

def test_defaults_have_no_remote():
    cfg = load_config({})
    assert cfg["enabled"] is True
    assert cfg["remote_backend"] == "none"
    assert cfg["score_threshold"] == 0.5
    assert build_remote(cfg) is None


def test_nested_config():
    cfg = load_config({"pii_guard": {
        "language": "de",
        "skip_types": ["date"],
        "allow_list": ["support@example.com"],
        "extra_rules": ["url"],
        "remote": {"base_url": "http://10.0.0.5:5001", "timeout": 2, "retries": 3},
    }})
    assert cfg["language"] == "de"
    assert cfg["skip_types"] == {"date"}
    assert cfg["extra_rules"] == ["url"]
    assert cfg["remote_backend"] == "http"
    assert cfg["remote_url"] == "http://10.0.0.5:5001"
    assert cfg["timeout"] == 2.0
    assert cfg["retries"] == 3


@pytest.mark.parametrize("data", [
    {"remote": {"backend": "grpc"}},
    {"extra_rules": ["passport"]},
    {"remote": {"score_threshold": 1.5}},
    {"remote": {"timeout": 0}},
    {"remote": {"retries": 0}},
    {"remote": {"timeout": "soon"}},
])
def test_invalid_config_rejected(data):
    with pytest.raises(ConfigError):
        load_config(data)


def test_load_from_yaml(tmp_path):
    path = tmp_path / "pii_guard.yaml"
    path.write_text(
        "pii_guard:\n"
        "  combine_results: true\n"
        "  remote:\n"
        "    backend: http\n"
        "    score_threshold: 0.7\n"
    )
    cfg = load_from_yaml(path)
    assert cfg["combine_results"] is True
    assert cfg["remote_backend"] == "http"
    assert cfg["remote_url"] == "http://localhost:5001"
    assert cfg["score_threshold"] == 0.7


def test_empty_yaml_file(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_from_yaml(path)["remote_backend"] == "none"


# ── Environment ──────────────────────────────────────────────────────

def test_env_overrides():
    cfg = apply_env(load_config({}), {
        "PII_GUARD_REMOTE_URL": "http://analyzer:5001",
        "PII_GUARD_THRESHOLD": "0.8",
        "PII_GUARD_RETRIES": "4",
        "PII_GUARD_COMBINE": "true",
        "PII_GUARD_LANGUAGE": "fr",
    })
    assert cfg["remote_backend"] == "http"
    assert cfg["remote_url"] == "http://analyzer:5001"
    assert cfg["score_threshold"] == 0.8
    assert cfg["retries"] == 4
    assert cfg["combine_results"] is True
    assert cfg["language"] == "fr"


@pytest.mark.parametrize("env", [{"PII_GUARD_TIMEOUT": "fast"}, {"PII_GUARD_THRESHOLD": "2"}])
def test_bad_env_rejected(env):
    with pytest.raises(ConfigError):
        apply_env(load_config({}), env)


def test_env_does_not_mutate_input():
    cfg = load_config({})
    apply_env(cfg, {"PII_GUARD_LANGUAGE": "fr"})
    assert cfg["language"] == "en"


# ── Factories ────────────────────────────────────────────────────────

def test_build_remote_http():
    remote = build_remote({"remote": {"base_url": "http://a:1", "score_threshold": 0.6}})
    assert isinstance(remote, HttpRemoteDetector)
    assert remote.config.base_url == "http://a:1"
    assert remote.config.score_threshold == 0.6
    remote.close()


def test_build_redactor_wires_filters():
    redactor = build_redactor({"skip_types": ["email"], "extra_rules": ["url"]})
    assert redactor.config.skip_types == {"email"}
    assert "url" in redactor.detector.pattern_detector.entity_types
    assert redactor.detector.remote is None


def test_create_middleware_disabled_is_noop():
    mw = create_middleware({"enabled": False})
    assert mw.pre_send([{"role": "user", "content": "bob@x.com"}])[0]["content"] == "bob@x.com"
    assert mw.post_receive("x") == "x"
    assert mw.stats["total_mappings"] == 0


def test_create_middleware_enabled():
    mw = create_middleware({})
    assert isinstance(mw, RedactMiddleware)
    assert "bob@x.com" not in mw.redact_text("I'm bob@x.com")


def test_create_registry():
    registry = create_registry({"allow_list": ["bob@x.com"]})
    assert registry.tokenize("tab", "I'm bob@x.com")["pii_detected"] is False


# ── CLI ──────────────────────────────────────────────────────────────

@pytest.fixture
def no_env(monkeypatch):
    for name in ("PII_GUARD_REMOTE_URL", "PII_GUARD_THRESHOLD", "PII_GUARD_TIMEOUT",
                 "PII_GUARD_RETRIES", "PII_GUARD_LANGUAGE", "PII_GUARD_COMBINE"):
        monkeypatch.delenv(name, raising=False)


def run_cli(monkeypatch, capsys, argv, stdin=""):
    monkeypatch.setattr(sys, "stdin", io.StringIO(stdin))
    cli.main(argv)
    return capsys.readouterr().out


def test_cli_detect(no_env, monkeypatch, capsys):
    out = json.loads(run_cli(monkeypatch, capsys, ["detect"], "Call John Smith at (555) 123-4567"))
    assert out["detection_method"] == "pattern"
    assert [e["type"] for e in out["entities"]] == ["name", "phone"]


def test_cli_redact_then_rehydrate(no_env, monkeypatch, capsys, tmp_path):
    text = "I am john@x.com"
    snapshot = run_cli(monkeypatch, capsys, ["redact", "--session-id", "cli-test"], text)
    data = json.loads(snapshot)
    assert data["session_id"] == "cli-test"
    assert "john@x.com" not in data["text"]
    assert list(data["mappings"].values()) == ["john@x.com"]

    path = tmp_path / "session.json"
    path.write_text(snapshot)
    restored = run_cli(monkeypatch, capsys, ["rehydrate", "--map", str(path)], data["text"])
    assert restored == text


def test_cli_skip_types(no_env, monkeypatch, capsys):
    out = json.loads(run_cli(monkeypatch, capsys, ["--skip-types", "email", "redact"], "I am john@x.com"))
    assert out["text"] == "I am john@x.com"


def test_cli_status(no_env, monkeypatch, capsys):
    out = json.loads(run_cli(monkeypatch, capsys, ["status"]))
    assert out["remote"] is None
    assert out["preferences"]["remote_first"] is False


def test_cli_bad_config_exits(no_env, monkeypatch, capsys, tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("remote:\n  backend: grpc\n")
    with pytest.raises(SystemExit):
        run_cli(monkeypatch, capsys, ["--config", str(path), "status"])


def test_cli_closes_remote_client(no_env, monkeypatch, capsys):
    closed = []
    monkeypatch.setattr(HttpRemoteDetector, "is_available", lambda self: False)
    monkeypatch.setattr(HttpRemoteDetector, "close", lambda self: closed.append(self))
    out = json.loads(run_cli(
        monkeypatch, capsys, ["--remote-url", "http://analyzer.test", "redact"], "I am john@x.com",
    ))
    assert out["fallback_reason"] == "service_unavailable"
    assert "john@x.com" not in out["text"]
    assert len(closed) == 1
