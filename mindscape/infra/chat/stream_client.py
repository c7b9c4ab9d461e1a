# mindscape/infra/chat/stream_client.py
from __future__ import annotations
import logging
import socket
import threading
from typing import Callable, Iterator, List, Optional, Union

import requests

from .base import ChatMessage, StreamStartError, TransportInterruptedError, wire_messages
from .sse_decoder import SseDecoder

log = logging.getLogger("chat.stream")

TokenSource = Union[str, Callable[[], Optional[str]], None]


def _socket_of(response) -> Optional[socket.socket]:
    """The connection socket under a streamed requests response, if one is reachable."""
    raw = getattr(response, "raw", None)
    conn = getattr(raw, "connection", None) or getattr(raw, "_connection", None)
    sock = getattr(conn, "sock", None)
    if sock is None:
        # urllib3 already handed the connection back; reach the socket via the http.client reader
        reader = getattr(getattr(raw, "_fp", None), "fp", None)
        sock = getattr(getattr(reader, "raw", None), "_sock", None)
    return sock if isinstance(sock, socket.socket) else None


class ChatStream:
    """
    One in-flight chat reply. Iterate it to receive text fragments in arrival order;
    the running reply is available as .text at any point.

    status: "streaming" -> "done" (sentinel seen) | "eof" (server closed)
            | "cancelled" | "interrupted"
    """

    def __init__(self, response: requests.Response, *, chunk_size: Optional[int] = None,
                 max_pushbacks: Optional[int] = None):
        self._response = response
        self._chunk_size = chunk_size
        self._decoder = SseDecoder(max_pushbacks=max_pushbacks)
        self._stop = threading.Event()
        self._closed = False
        self.text = ""
        self.status = "streaming"
        self._iter = self._run()

    def __iter__(self) -> Iterator[str]:
        return self

    def __next__(self) -> str:
        return next(self._iter)

    @property
    def completed(self) -> bool:
        """True when the reply ended normally (sentinel or clean end-of-data)."""
        return self.status in ("done", "eof")

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def cancel(self) -> None:
        """Stop emitting and drop the connection. Safe to call from another thread."""
        if self._stop.is_set():
            return
        self._stop.set()
        log.info("Chat stream cancelled after %d chars", len(self.text))
        self._interrupt_read()
        self._close_response()

    def close(self) -> None:
        # Closing the generator runs its finally block, which releases the connection.
        self._iter.close()
        self._close_response()

    # ---- internals ----
    def _run(self) -> Iterator[str]:
        try:
            for chunk in self._response.iter_content(chunk_size=self._chunk_size):
                if self._stop.is_set():
                    return
                if not chunk:
                    continue
                for frame in self._decoder.feed(chunk):
                    if self._stop.is_set():
                        return
                    if frame.kind == "done":
                        break
                    self.text += frame.text
                    yield frame.text
                if self._decoder.done:
                    self.status = "done"
                    return
            if not self._stop.is_set():
                self.status = "eof"
        except AttributeError as exc:
            # urllib3 drops its file object when cancel() closes the response mid-read
            if not self._stop.is_set():
                raise
            log.debug("Read aborted by cancel: %r", exc)
            return
        except (requests.RequestException, OSError, ValueError) as exc:
            if self._stop.is_set():
                log.debug("Read aborted by cancel: %r", exc)
                return
            self.status = "interrupted"
            log.warning("Chat stream interrupted after %d chars: %s", len(self.text), exc)
            raise TransportInterruptedError(f"Connection lost mid-stream: {exc}", self.text) from exc
        finally:
            if self._stop.is_set():
                self.status = "cancelled"
            self._decoder.close()
            self._close_response()
            log.debug("Chat stream finished (status=%s, chars=%d)", self.status, len(self.text))

    def _interrupt_read(self) -> None:
        # close() alone leaves a recv() blocked in the reading thread; shutdown wakes it with EOF
        sock = _socket_of(self._response)
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError as exc:
            log.debug("Socket shutdown on cancel failed: %r", exc)

    def _close_response(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._response.close()
        except OSError as exc:
            log.debug("Error closing response: %r", exc)


class ChatStreamClient:
    """Opens streamed chat completions against an SSE endpoint."""

    def __init__(self, url: str, *, token: TokenSource = None, timeout: float = 120,
                 session: Optional[requests.Session] = None, max_pushbacks: Optional[int] = None):
        self.url = url
        self.timeout = timeout
        self._token = token
        self._session = session or requests.Session()
        self._max_pushbacks = max_pushbacks

    def _bearer(self) -> Optional[str]:
        tok = self._token() if callable(self._token) else self._token
        return tok or None

    def _headers(self) -> dict:
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        bearer = self._bearer()
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"
        return headers

    def open(self, history: List[ChatMessage], new_message: ChatMessage) -> ChatStream:
        """
        Send prior history plus the new user message and return a ChatStream.
        Raises StreamStartError if no readable stream comes back.
        """
        payload = {"messages": wire_messages([*history, new_message])}
        log.info("Opening chat stream (%d messages) → %s", len(payload["messages"]), self.url)
        try:
            resp = self._session.post(self.url, json=payload, headers=self._headers(),
                                      stream=True, timeout=self.timeout)
        except requests.RequestException as exc:
            log.error("Chat request failed to start: %s", exc)
            raise StreamStartError(f"Failed to start stream: {exc}") from exc

        if not resp.ok:
            status = resp.status_code
            resp.close()
            log.error("Chat endpoint answered HTTP %s", status)
            raise StreamStartError(f"Failed to start stream: HTTP {status}", status_code=status)
        if getattr(resp, "raw", None) is None:
            resp.close()
            raise StreamStartError("Failed to start stream: response has no body", status_code=resp.status_code)

        return ChatStream(resp, max_pushbacks=self._max_pushbacks)

    def stream_chat(self, history: List[ChatMessage], new_message: ChatMessage) -> Iterator[str]:
        """Generator form of open(); closing it drops the connection."""
        stream = self.open(history, new_message)
        try:
            yield from stream
        finally:
            stream.close()
