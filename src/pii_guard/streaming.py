"""Streaming detokenizer — restores tokens in a response that arrives in chunks.

A token can be split across chunks:
    "[EMA"  +  "IL:EMAIL_AD"  +  "DRESS_EM4K2Q] thanks"

Only the tail that could still grow into a token is held back; everything
before it is detokenized and emitted immediately.

Usage:
    detok = StreamingDetokenizer(tokenizer)
    for chunk in stream:
        ready = detok.feed(chunk)
        if ready:
            yield ready
    yield detok.flush()
"""

from __future__ import annotations
import re

from .tokenizer import SessionTokenizer

# An unfinished token: opening bracket followed only by token characters
_OPEN_TOKEN = re.compile(r"\[[A-Z0-9_:]*")


class StreamingDetokenizer:
    """Buffers the incomplete tail of a stream until it resolves."""

    __slots__ = ("_tokenizer", "_pending", "_max_token_len")

    def __init__(self, tokenizer: SessionTokenizer, *, max_token_len: int = 64) -> None:
        self._tokenizer = tokenizer
        self._pending = ""
        self._max_token_len = max_token_len

    def feed(self, chunk: str) -> str:
        """Add a chunk; return the text that is safe to emit now."""
        text = self._pending + chunk
        hold = self._holdback_start(text)
        self._pending = text[hold:]
        return self._tokenizer.detokenize(text[:hold])

    def flush(self) -> str:
        """Emit whatever is still held (call once the stream ends)."""
        text, self._pending = self._pending, ""
        return self._tokenizer.detokenize(text)

    def _holdback_start(self, text: str) -> int:
        """Index of the trailing fragment that may still become a token."""
        start = text.rfind("[")
        if start == -1:
            return len(text)
        tail = text[start:]
        if len(tail) > self._max_token_len or not _OPEN_TOKEN.fullmatch(tail):
            return len(text)
        return start
