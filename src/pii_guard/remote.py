"""Remote detection: the port the core consumes, plus an HTTP adapter.

The port is deliberately small: an availability probe and a detect call.
``HttpRemoteDetector`` speaks the Presidio-analyzer-shaped protocol:

    GET  {base}/health   -> 2xx when up
    POST {base}/analyze  {"text": ..., "language": ...}
                         -> [{"entity_type", "start", "end", "score", ...}]
"""

from __future__ import annotations
import abc
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable

import httpx

from .errors import RemoteError, RemoteTimeout, RemoteUnavailable
from .types import REMOTE, Entity

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Label mapping
# ---------------------------------------------------------------------------

REMOTE_TO_INTERNAL: dict[str, str] = {
    "PERSON": "name",
    "EMAIL_ADDRESS": "email",
    "PHONE_NUMBER": "phone",
    "SSN": "ssn",
    "US_SSN": "ssn",
    "CREDIT_CARD": "cc",
    "LOCATION": "address",
    "DATE_TIME": "date",
    "URL": "url",
}

INTERNAL_TO_REMOTE: dict[str, str] = {
    "name": "PERSON",
    "email": "EMAIL_ADDRESS",
    "phone": "PHONE_NUMBER",
    "ssn": "SSN",
    "cc": "CREDIT_CARD",
    "address": "LOCATION",
    "date": "DATE_TIME",
    "url": "URL",
}


def to_internal_type(remote_type: str) -> str:
    return REMOTE_TO_INTERNAL.get(remote_type, remote_type.lower())


def to_remote_type(internal_type: str) -> str:
    return INTERNAL_TO_REMOTE.get(internal_type, internal_type.upper())


# ---------------------------------------------------------------------------
# Port
# ---------------------------------------------------------------------------


class RemoteDetectionPort(abc.ABC):
    """Higher-accuracy entity detection living outside the process."""

    @abc.abstractmethod
    def is_available(self) -> bool:
        """Cheap, cached availability probe.  Must not raise."""

    @abc.abstractmethod
    def detect(self, text: str, language: str | None = None) -> list[Entity]:
        """Detect entities, or raise a ``RemoteDetectionError`` subclass."""

    def status(self) -> dict[str, Any]:
        return {"available": self.is_available()}

    def close(self) -> None:
        """Release connections or engines held by the adapter."""


@dataclass
class RemoteConfig:
    """Connection settings for ``HttpRemoteDetector``."""
    base_url: str = "http://localhost:5001"
    timeout: float = 5.0                 # seconds, per attempt
    retries: int = 2                     # total attempts
    backoff: float = 0.5                 # base for 2**attempt * backoff
    language: str = "en"
    score_threshold: float = 0.5
    health_check_interval: float = 30.0  # seconds
    health_timeout: float = 2.0


def entities_from_payload(
    text: str,
    payload: Any,
    *,
    score_threshold: float,
) -> list[Entity]:
    """Convert a remote result list into entities, applying the threshold."""
    if not isinstance(payload, list):
        raise RemoteError(f"Unexpected analyzer payload: {type(payload).__name__}")

    entities: list[Entity] = []
    for item in payload:
        try:
            start = int(item["start"])
            end = int(item["end"])
            score = float(item.get("score", 0.0))
            remote_type = str(item["entity_type"])
        except (KeyError, TypeError, ValueError) as exc:
            raise RemoteError(f"Malformed analyzer result: {exc}") from exc

        if score < score_threshold:
            continue
        if not 0 <= start < end <= len(text):
            logger.debug("Dropping remote result with bad span %d:%d", start, end)
            continue

        metadata = item.get("recognition_metadata") or {}
        entities.append(Entity(
            entity_type=to_internal_type(remote_type),
            start=start,
            end=end,
            text=text[start:end],
            score=score,
            detection_method=REMOTE,
            recognizer=metadata.get("recognizer_name") or "Unknown",
        ))
    return sorted(entities, key=lambda e: e.start)


class HttpRemoteDetector(RemoteDetectionPort):
    """HTTP client for a remote analyzer service.

    Availability is cached for ``health_check_interval`` seconds.  Each
    detect attempt is aborted once ``timeout`` has elapsed, however the
    server paces its response, with at most ``retries`` attempts and
    exponential backoff in between.
    """

    def __init__(
        self,
        config: RemoteConfig | None = None,
        *,
        client: httpx.Client | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or RemoteConfig()
        self._client = client or httpx.Client()
        self._owns_client = client is None
        self._clock = clock
        self._sleep = sleep
        self._available = False
        self._last_check: float | None = None

    # -- availability --------------------------------------------------------

    def is_available(self) -> bool:
        now = self._clock()
        if (
            self._last_check is not None
            and now - self._last_check < self.config.health_check_interval
        ):
            return self._available

        self._available = self._check_health()
        self._last_check = now
        logger.info("Remote detector health check: available=%s", self._available)
        return self._available

    def invalidate(self) -> None:
        """Force the next ``is_available`` call to hit the service."""
        self._last_check = None

    def _check_health(self) -> bool:
        try:
            response = self._client.get(
                self._url("/health"), timeout=self.config.health_timeout
            )
        except httpx.HTTPError as exc:
            logger.debug("Health check failed: %s", exc)
            return False
        return response.is_success

    # -- detection -----------------------------------------------------------

    def detect(self, text: str, language: str | None = None) -> list[Entity]:
        if not isinstance(text, str) or not text:
            return []

        response = self._post_with_retry(
            "/analyze",
            {"text": text, "language": language or self.config.language},
        )
        if not response.is_success:
            raise RemoteError(f"Analyzer request failed: {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise RemoteError("Analyzer returned invalid JSON") from exc

        entities = entities_from_payload(
            text, payload, score_threshold=self.config.score_threshold
        )
        logger.debug("Remote detector returned %d entities", len(entities))
        return entities

    def _post_with_retry(self, path: str, body: dict[str, Any]) -> httpx.Response:
        attempts = max(1, self.config.retries)
        last_error: Exception | None = None
        timeouts = 0

        for attempt in range(1, attempts + 1):
            try:
                return self._post_once(path, body)
            except httpx.TimeoutException as exc:
                timeouts += 1
                last_error = exc
            except httpx.HTTPError as exc:
                last_error = exc
            logger.warning(
                "Remote request attempt %d/%d failed: %s",
                attempt, attempts, type(last_error).__name__,
            )
            if attempt < attempts:
                self._sleep(2 ** attempt * self.config.backoff)

        # Persistent failure also means the cached health result is stale
        self._available = False
        self._last_check = self._clock()

        if timeouts == attempts:
            raise RemoteTimeout(
                f"Analyzer timed out after {attempts} attempts"
            ) from last_error
        if isinstance(last_error, httpx.ConnectError):
            raise RemoteUnavailable(f"Analyzer unreachable: {last_error}") from last_error
        raise RemoteError(f"Analyzer request failed: {last_error}") from last_error

    def _post_once(self, path: str, body: dict[str, Any]) -> httpx.Response:
        """One attempt, bounded by ``timeout`` from start to last body byte.

        httpx only limits each connect/read/write step, so a server that
        trickles its body would otherwise hold the attempt open indefinitely.
        """
        deadline = self._clock() + self.config.timeout
        with self._client.stream(
            "POST", self._url(path), json=body, timeout=self.config.timeout
        ) as response:
            chunks: list[bytes] = []
            for chunk in response.iter_bytes():
                chunks.append(chunk)
                if self._clock() > deadline:
                    raise httpx.ReadTimeout(
                        "Analyzer response exceeded the request deadline",
                        request=response.request,
                    )
        return httpx.Response(
            response.status_code,
            content=b"".join(chunks),
            request=response.request,
        )

    # -- introspection -------------------------------------------------------

    def status(self) -> dict[str, Any]:
        return {
            "available": self.is_available(),
            "base_url": self.config.base_url,
            "config": asdict(self.config),
            "last_check": self._last_check,
        }

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _url(self, path: str) -> str:
        return self.config.base_url.rstrip("/") + path
