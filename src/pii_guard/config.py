"""YAML/dict config loader for pii-guard.

Supports loading from a YAML file or a plain dict (for embedding
in a larger host config), with environment overrides on top.

Example YAML:

    pii_guard:
      enabled: true
      language: en
      combine_results: false
      skip_types:
        - date
      allow_list:
        - support@example.com
      extra_rules:
        - url
      remote:
        backend: http          # "none", "http" or "presidio"
        base_url: http://localhost:5001
        timeout: 5.0
        retries: 2
        score_threshold: 0.5
        health_check_interval: 30

Environment overrides: PII_GUARD_REMOTE_URL, PII_GUARD_THRESHOLD,
PII_GUARD_TIMEOUT, PII_GUARD_RETRIES, PII_GUARD_LANGUAGE, PII_GUARD_COMBINE.
"""

from __future__ import annotations
import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from .detector import UnifiedDetector
from .errors import ConfigError
from .middleware import RedactMiddleware
from .patterns import EXTRA_RULES
from .redactor import Redactor, RedactorConfig
from .remote import HttpRemoteDetector, RemoteConfig, RemoteDetectionPort
from .sessions import SessionRegistry
from .tokenizer import SessionTokenizer

REMOTE_BACKENDS = ("none", "http", "presidio")


class _NoopMiddleware:
    """Pass-through middleware when redaction is disabled."""
    def pre_send(self, messages: list[dict]) -> list[dict]:
        return messages
    def post_receive(self, text: str) -> str:
        return text
    def redact_text(self, text: str) -> str:
        return text
    def rehydrate_text(self, text: str) -> str:
        return text
    def clear(self) -> None:
        pass
    @property
    def stats(self) -> dict:
        return {"total_mappings": 0, "session_id": None, "mappings": {}}


def load_config(data: Mapping[str, Any] | None) -> dict[str, Any]:
    """Normalize a config dict (from YAML or inline)."""
    data = dict(data or {})
    # Support nested under "pii_guard" key or flat
    if "pii_guard" in data:
        data = dict(data["pii_guard"] or {})

    remote = dict(data.get("remote") or {})
    defaults = RemoteConfig()
    backend = remote.get("backend", "http" if remote.get("base_url") else "none")
    if backend not in REMOTE_BACKENDS:
        raise ConfigError(f"Unknown remote backend: {backend!r}")

    extra_rules = list(data.get("extra_rules", []))
    unknown = [r for r in extra_rules if r not in EXTRA_RULES]
    if unknown:
        raise ConfigError(f"Unknown extra rules: {', '.join(unknown)}")

    try:
        cfg = {
            "enabled": bool(data.get("enabled", True)),
            "language": data.get("language", "en"),
            "combine_results": bool(data.get("combine_results", False)),
            "skip_types": set(data.get("skip_types", [])),
            "allow_list": set(data.get("allow_list", [])),
            "extra_rules": extra_rules,
            "remote_backend": backend,
            "remote_url": remote.get("base_url", defaults.base_url),
            "timeout": float(remote.get("timeout", defaults.timeout)),
            "retries": int(remote.get("retries", defaults.retries)),
            "backoff": float(remote.get("backoff", defaults.backoff)),
            "score_threshold": float(remote.get("score_threshold", defaults.score_threshold)),
            "health_check_interval": float(
                remote.get("health_check_interval", defaults.health_check_interval)
            ),
        }
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid remote setting: {exc}") from exc

    _check_ranges(cfg)
    return cfg


def _check_ranges(cfg: dict[str, Any]) -> None:
    if not 0.0 <= cfg["score_threshold"] <= 1.0:
        raise ConfigError("score_threshold must be within [0, 1]")
    if cfg["timeout"] <= 0:
        raise ConfigError("timeout must be positive")
    if cfg["retries"] < 1:
        raise ConfigError("retries must be at least 1")


def load_from_yaml(path: str | Path) -> dict[str, Any]:
    """Load config from a YAML file."""
    with open(path) as f:
        return load_config(yaml.safe_load(f))


def apply_env(cfg: dict[str, Any], environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Overlay PII_GUARD_* environment variables on a normalized config."""
    env = os.environ if environ is None else environ
    out = dict(cfg)
    try:
        if env.get("PII_GUARD_REMOTE_URL"):
            out["remote_url"] = env["PII_GUARD_REMOTE_URL"]
            if out["remote_backend"] == "none":
                out["remote_backend"] = "http"
        if env.get("PII_GUARD_THRESHOLD"):
            out["score_threshold"] = float(env["PII_GUARD_THRESHOLD"])
        if env.get("PII_GUARD_TIMEOUT"):
            out["timeout"] = float(env["PII_GUARD_TIMEOUT"])
        if env.get("PII_GUARD_RETRIES"):
            out["retries"] = int(env["PII_GUARD_RETRIES"])
    except ValueError as exc:
        raise ConfigError(f"Invalid PII_GUARD_* environment value: {exc}") from exc
    if env.get("PII_GUARD_LANGUAGE"):
        out["language"] = env["PII_GUARD_LANGUAGE"]
    if env.get("PII_GUARD_COMBINE"):
        out["combine_results"] = env["PII_GUARD_COMBINE"].lower() in ("1", "true", "yes")
    _check_ranges(out)
    return out


def _normalized(config: Mapping[str, Any]) -> dict[str, Any]:
    return dict(config) if "remote_backend" in config else load_config(config)


def build_remote(config: Mapping[str, Any]) -> RemoteDetectionPort | None:
    cfg = _normalized(config)
    if cfg["remote_backend"] == "http":
        return HttpRemoteDetector(RemoteConfig(
            base_url=cfg["remote_url"],
            timeout=cfg["timeout"],
            retries=cfg["retries"],
            backoff=cfg["backoff"],
            language=cfg["language"],
            score_threshold=cfg["score_threshold"],
            health_check_interval=cfg["health_check_interval"],
        ))
    if cfg["remote_backend"] == "presidio":
        from .presidio_layer import PresidioEngineDetector  # optional dependency
        return PresidioEngineDetector(
            language=cfg["language"], score_threshold=cfg["score_threshold"]
        )
    return None


def build_redactor(config: Mapping[str, Any]) -> Redactor:
    """Create a redactor with detector and remote port wired from config."""
    cfg = _normalized(config)
    detector = UnifiedDetector(
        remote=build_remote(cfg),
        combine=cfg["combine_results"],
        language=cfg["language"],
    )
    redactor_config = RedactorConfig(
        language=cfg["language"],
        combine_results=cfg["combine_results"],
        skip_types=cfg["skip_types"],
        allow_list=cfg["allow_list"],
        extra_rules=cfg["extra_rules"],
    )
    return Redactor(redactor_config, detector=detector)


def create_middleware(config: Mapping[str, Any]) -> RedactMiddleware | _NoopMiddleware:
    """Create a fully configured middleware with a fresh session."""
    cfg = _normalized(config)
    if not cfg["enabled"]:
        return _NoopMiddleware()
    return RedactMiddleware(redactor=build_redactor(cfg), tokenizer=SessionTokenizer())


def create_registry(config: Mapping[str, Any]) -> SessionRegistry:
    return SessionRegistry(build_redactor(config))
