# mindscape/infra/chat/sse_decoder.py
"""
Line-buffered decoder for the chat endpoint's event stream.

The wire format is one event per line:

    data: {"choices":[{"delta":{"content":"Hel"}}]}
    data: [DONE]

Network chunks arrive on arbitrary boundaries, so everything after the last
newline is kept in a buffer until the rest of the line shows up. A payload that
fails to parse is pushed back into the buffer and decoding pauses until the
next chunk, since a parse error cannot be told apart from a payload cut in two.
"""
from __future__ import annotations
import codecs
import json
import logging
from typing import Any, List, Optional

from .base import StreamFrame, DecodeAmbiguousError

log = logging.getLogger("chat.sse")

DATA_PREFIX = "data: "
COMMENT_MARKER = ":"
DONE_SENTINEL = "[DONE]"


def extract_delta(payload: str) -> Optional[str]:
    """
    Parse one data payload and return choices[0].delta.content, or None when the
    record carries no text. Raises DecodeAmbiguousError if the JSON does not parse.
    """
    try:
        obj: Any = json.loads(payload)
    except ValueError as exc:
        raise DecodeAmbiguousError(str(exc)) from exc

    if not isinstance(obj, dict):
        return None
    choices = obj.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) and content else None


class SseDecoder:
    """
    Incremental decoder. Feed it raw chunks; it returns the frames completed by
    each chunk, in arrival order.

    max_pushbacks caps how many chunks a single unparseable line may stall the
    stream before it is dropped. None waits indefinitely.
    """

    def __init__(self, encoding: str = "utf-8", *, max_pushbacks: Optional[int] = None):
        self._text_decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self._max_pushbacks = max_pushbacks
        self._stalled_line: Optional[str] = None
        self._stalls = 0
        self.done = False

    @property
    def pending(self) -> str:
        """Unconsumed tail of the stream (the DecodeBuffer)."""
        return self._buffer

    def feed(self, chunk: bytes | str) -> List[StreamFrame]:
        if self.done:
            return []
        if isinstance(chunk, bytes):
            chunk = self._text_decoder.decode(chunk)
        self._buffer += chunk
        return self._drain()

    def close(self) -> str:
        """Flush the byte decoder and return whatever never formed a complete event."""
        self._buffer += self._text_decoder.decode(b"", final=True)
        leftover, self._buffer = self._buffer, ""
        if leftover.strip() and not self.done:
            log.debug("Discarding %d undecoded chars at end of stream", len(leftover))
        return leftover

    # ---- internals ----
    def _drain(self) -> List[StreamFrame]:
        frames: List[StreamFrame] = []
        while True:
            idx = self._buffer.find("\n")
            if idx == -1:
                break
            line = self._buffer[:idx]
            self._buffer = self._buffer[idx + 1:]

            if line.endswith("\r"):
                line = line[:-1]
            if line.startswith(COMMENT_MARKER) or not line.strip():
                continue
            if not line.startswith(DATA_PREFIX):
                continue

            payload = line[len(DATA_PREFIX):].strip()
            if not payload:
                continue
            if payload == DONE_SENTINEL:
                self.done = True
                frames.append(StreamFrame(kind="done"))
                break

            try:
                text = extract_delta(payload)
            except DecodeAmbiguousError:
                if self._give_up_on(line):
                    log.warning("Dropping unparseable event after %d attempts: %.80r", self._stalls, line)
                    self._stalled_line, self._stalls = None, 0
                    continue
                # wait for more bytes; the payload may be split across chunks
                self._buffer = line + "\n" + self._buffer
                break

            self._stalled_line, self._stalls = None, 0
            if text:
                frames.append(StreamFrame(kind="delta", text=text))
        return frames

    def _give_up_on(self, line: str) -> bool:
        if line == self._stalled_line:
            self._stalls += 1
        else:
            self._stalled_line, self._stalls = line, 1
        return self._max_pushbacks is not None and self._stalls > self._max_pushbacks
