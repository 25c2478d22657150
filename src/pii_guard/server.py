"""HTTP sidecar server for pii-guard.

A small stdlib HTTP server on localhost that the browser integration
calls instead of running detection itself.  Each chat surface (tab,
panel) is identified by a ``surface`` id and gets its own session.

Endpoints:
    POST /tokenize     — {"surface", "text"} → tokenized text + detection info
    POST /detokenize   — {"surface", "text"} → detokenized text
    POST /clear        — {"surface"} → drop mappings, rotate session
    POST /close        — {"surface"} → forget the surface entirely
    GET  /health       — Health check
    GET  /status       — Detector status; ?surface=ID adds that surface's state

All endpoints expect/return JSON.
"""

from __future__ import annotations
import json
import logging
import os
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import parse_qs, urlparse

from .sessions import SessionRegistry

logger = logging.getLogger(__name__)

DEFAULT_PORT = int(os.environ.get("PII_GUARD_PORT", "18791"))
DEFAULT_SURFACE = "default"


class GuardServer(ThreadingHTTPServer):
    """HTTP server carrying the session registry its handlers use."""

    daemon_threads = True

    def __init__(self, address: tuple[str, int], registry: SessionRegistry) -> None:
        super().__init__(address, GuardHandler)
        self.registry = registry

    def server_close(self) -> None:
        super().server_close()
        self.registry.redactor.detector.close()


class GuardHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the pii-guard sidecar."""

    server: GuardServer

    def _read_json(self) -> dict[str, Any]:
        length = int(self.headers.get("Content-Length", 0))
        body = self.rfile.read(length).decode("utf-8")
        data = json.loads(body) if body else {}
        if not isinstance(data, dict):
            raise ValueError("request body must be a JSON object")
        return data

    def _respond(self, status: int, data: Any) -> None:
        body = json.dumps(data, ensure_ascii=False).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("%s - %s", self.address_string(), format % args)

    def do_GET(self) -> None:
        url = urlparse(self.path)
        registry = self.server.registry
        if url.path == "/health":
            self._respond(200, {"status": "ok", "sessions": len(registry)})
        elif url.path == "/status":
            data: dict[str, Any] = {"detector": registry.redactor.detector.status()}
            surface = parse_qs(url.query).get("surface", [None])[0]
            if surface:
                data["surface"] = registry.status(surface)
            self._respond(200, data)
        else:
            self._respond(404, {"error": "not found"})

    def do_POST(self) -> None:
        registry = self.server.registry
        try:
            body = self._read_json()
        except ValueError as e:
            self._respond(400, {"error": f"invalid JSON: {e}"})
            return

        surface = str(body.get("surface", DEFAULT_SURFACE))
        text = body.get("text", "")

        if self.path == "/tokenize":
            self._respond(200, registry.tokenize(surface, text))
        elif self.path == "/detokenize":
            self._respond(200, registry.detokenize(surface, text))
        elif self.path == "/clear":
            cleared = registry.clear(surface)
            self._respond(200, {"status": "cleared" if cleared else "unknown", "surface": surface})
        elif self.path == "/close":
            closed = registry.close(surface)
            self._respond(200, {"status": "closed" if closed else "unknown", "surface": surface})
        else:
            self._respond(404, {"error": "not found"})


def make_server(
    registry: SessionRegistry,
    host: str = "127.0.0.1",
    port: int = DEFAULT_PORT,
) -> GuardServer:
    return GuardServer((host, port), registry)


def serve(registry: SessionRegistry, port: int = DEFAULT_PORT) -> None:
    """Start the pii-guard HTTP sidecar."""
    server = make_server(registry, port=port)
    remote = registry.redactor.detector.remote
    logger.info("pii-guard sidecar listening on http://127.0.0.1:%d", server.server_port)
    logger.info("remote detector: %s", type(remote).__name__ if remote else "disabled")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        server.server_close()


if __name__ == "__main__":
    import argparse

    from .config import apply_env, create_registry, load_config, load_from_yaml

    parser = argparse.ArgumentParser(description="pii-guard HTTP sidecar")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--config", help="YAML config file")
    parser.add_argument("--log-level", default=os.environ.get("PII_GUARD_LOG_LEVEL", "INFO"))
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cfg = apply_env(load_from_yaml(args.config) if args.config else load_config({}))
    serve(create_registry(cfg), port=args.port)
