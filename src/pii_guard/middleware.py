"""Chat middleware — owns the session for one conversation surface.

Usage as a function wrapper:

    mw = RedactMiddleware.create()

    # Before sending to the assistant
    safe_messages = mw.pre_send(messages)

    # After receiving the response
    real_response = mw.post_receive(response_text)

Usage with streaming:

    detok = mw.streaming()
    for chunk in stream:
        yield detok.feed(chunk)
    yield detok.flush()
"""

from __future__ import annotations
from dataclasses import dataclass, field

from .redactor import Redactor, RedactorConfig
from .streaming import StreamingDetokenizer
from .tokenizer import SessionTokenizer
from .types import RedactedMessage


@dataclass
class RedactMiddleware:
    """Middleware that sits between a chat surface and the assistant."""

    redactor: Redactor
    tokenizer: SessionTokenizer = field(default_factory=SessionTokenizer)

    @classmethod
    def create(cls, *, config: RedactorConfig | None = None) -> RedactMiddleware:
        """Factory — creates a fresh middleware with its own session."""
        return cls(redactor=Redactor(config), tokenizer=SessionTokenizer())

    def pre_send(self, messages: list[dict]) -> list[dict]:
        """Tokenize PII in outbound messages."""
        return self.redactor.redact_messages(messages, self.tokenizer)

    def post_receive(self, text: str) -> str:
        """Detokenize the assistant's response."""
        return self.tokenizer.detokenize(text)

    def redact(self, text: str) -> RedactedMessage:
        return self.redactor.redact(text, self.tokenizer)

    def redact_text(self, text: str) -> str:
        """Redact a single string (convenience)."""
        return self.redact(text).text

    def rehydrate_text(self, text: str) -> str:
        """Alias for post_receive."""
        return self.tokenizer.detokenize(text)

    def streaming(self) -> StreamingDetokenizer:
        return StreamingDetokenizer(self.tokenizer)

    def clear(self) -> None:
        self.tokenizer.clear()

    @property
    def stats(self) -> dict:
        return {
            **self.tokenizer.stats(),
            "mappings": self.tokenizer.mappings(),
        }
