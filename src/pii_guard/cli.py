"""CLI interface for pii-guard.

Usage:
    # Detect entities (stdin: text, stdout: JSON)
    echo "Call John Smith at (555) 123-4567" | pii-guard detect

    # Tokenize text (stdin: text, stdout: JSON with text + session snapshot)
    echo "I am john@x.com" | pii-guard redact > session.json

    # Detokenize a response using the snapshot written by `redact`
    echo "Hello [EMAIL:EMAIL_ADDRESS_EM4K2Q]" | pii-guard rehydrate --map session.json

    # Detector status and configuration
    pii-guard status

Sessions live only as long as the snapshot file: there is no shared store.
"""

from __future__ import annotations
import argparse
import json
import logging
import os
import sys
from typing import Any

from .config import apply_env, build_redactor, load_config, load_from_yaml
from .errors import ConfigError
from .tokenizer import SessionTokenizer

logger = logging.getLogger(__name__)


def _entity_json(e: Any) -> dict[str, Any]:
    return {
        "type": e.entity_type,
        "start": e.start,
        "end": e.end,
        "text": e.text,
        "score": e.score,
        "detection_method": e.detection_method,
    }


def _load_cfg(args: argparse.Namespace) -> dict[str, Any]:
    cfg = load_from_yaml(args.config) if args.config else load_config({})
    cfg = apply_env(cfg)
    if args.remote_url:
        cfg["remote_url"] = args.remote_url
        cfg["remote_backend"] = "http"
    if args.threshold is not None:
        cfg["score_threshold"] = args.threshold
    if args.language:
        cfg["language"] = args.language
    if args.combine:
        cfg["combine_results"] = True
    if args.skip_types:
        cfg["skip_types"] = set(args.skip_types.split(","))
    if args.allow_list:
        cfg["allow_list"] = set(args.allow_list.split(","))
    return cfg


def _dump(data: Any) -> None:
    json.dump(data, sys.stdout, ensure_ascii=False)
    sys.stdout.write("\n")


def cmd_detect(args: argparse.Namespace) -> None:
    """Detect PII in plain text on stdin."""
    redactor = build_redactor(_load_cfg(args))
    try:
        outcome = redactor.detector.detect(sys.stdin.read())
    finally:
        redactor.detector.close()
    _dump({
        "detection_method": outcome.method,
        "fallback_reason": outcome.fallback_reason,
        "entities": [_entity_json(e) for e in outcome.entities],
    })


def cmd_redact(args: argparse.Namespace) -> None:
    """Tokenize PII in plain text on stdin."""
    redactor = build_redactor(_load_cfg(args))
    tokenizer = SessionTokenizer(args.session_id)
    try:
        result = redactor.redact(sys.stdin.read(), tokenizer)
    finally:
        redactor.detector.close()
    _dump({
        "text": result.text,
        "session_id": tokenizer.session_id,
        "detection_method": result.detection_method,
        "fallback_reason": result.fallback_reason,
        "entities": [_entity_json(e) for e in result.entities],
        "mappings": tokenizer.mappings(),
    })


def cmd_rehydrate(args: argparse.Namespace) -> None:
    """Detokenize text on stdin using a snapshot from `redact`."""
    with open(args.map) as f:
        snapshot = json.load(f)
    tokenizer = SessionTokenizer.restore(snapshot["session_id"], snapshot.get("mappings", {}))
    sys.stdout.write(tokenizer.detokenize(sys.stdin.read()))


def cmd_status(args: argparse.Namespace) -> None:
    """Print detector status and metrics."""
    redactor = build_redactor(_load_cfg(args))
    try:
        _dump(redactor.detector.status())
    finally:
        redactor.detector.close()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="pii-guard",
        description="Reversible PII tokenization for AI chat messages",
    )
    parser.add_argument("--config", help="YAML config file")
    parser.add_argument("--remote-url", help="Remote analyzer base URL")
    parser.add_argument("--threshold", type=float, default=None, help="Remote score threshold")
    parser.add_argument("--language", default=None, help="Language code")
    parser.add_argument("--combine", action="store_true", help="Merge remote and pattern results")
    parser.add_argument("--skip-types", default="", help="Comma-separated entity types to skip")
    parser.add_argument("--allow-list", default="", help="Comma-separated values to never redact")
    parser.add_argument(
        "--log-level",
        default=os.environ.get("PII_GUARD_LOG_LEVEL", "WARNING"),
        help="Logging level (stderr)",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("detect", help="Detect entities (text stdin)")
    redact = sub.add_parser("redact", help="Tokenize plain text (stdin)")
    redact.add_argument("--session-id", default=None, help="Reuse a session id")
    rehydrate = sub.add_parser("rehydrate", help="Detokenize text (stdin)")
    rehydrate.add_argument("--map", required=True, help="Snapshot JSON written by redact")
    sub.add_parser("status", help="Detector status")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    cmds = {
        "detect": cmd_detect,
        "redact": cmd_redact,
        "rehydrate": cmd_rehydrate,
        "status": cmd_status,
    }
    try:
        cmds[args.command](args)
    except ConfigError as exc:
        parser.error(str(exc))


if __name__ == "__main__":
    main()
