# mindscape/services/chat.py
from __future__ import annotations
import logging
import sqlite3
import threading
from typing import Iterator, List, Optional, Tuple

from mindscape import db_ops as dbo
from mindscape.constants import WELCOME_MESSAGE
from mindscape.core.session import SessionManager
from mindscape.infra.chat.base import ChatMessage
from mindscape.infra.chat.stream_client import ChatStream, ChatStreamClient

log = logging.getLogger("chat.service")


class SendInProgressError(RuntimeError):
    """A reply is still streaming into this transcript."""


class ChatService:
    """
    The assistant transcript for the signed-in user.

    Holds the in-memory transcript, persists turns, and allows one send in
    flight at a time. A send is begin_send -> open_stream -> finish_send (or
    abort_send); send() chains them for callers that just want fragments.
    """

    def __init__(self, conn, session: SessionManager, client: ChatStreamClient):
        self._conn = conn
        self._session = session
        self._client = client
        self._flight = threading.Lock()
        self.messages: List[ChatMessage] = []

    @property
    def client(self) -> ChatStreamClient:
        return self._client

    @property
    def in_flight(self) -> bool:
        return self._flight.locked()

    def load_history(self) -> List[ChatMessage]:
        """Load the stored transcript; a brand new user gets the welcome message."""
        user = self._session.require_user()
        rows = dbo.list_chat_messages(self._conn, user.id)
        if not rows:
            welcome = ChatMessage(role="assistant", content=WELCOME_MESSAGE)
            row = dbo.add_chat_message(self._conn, user.id, "assistant", WELCOME_MESSAGE)
            welcome.metadata = {"id": row.get("id")}
            self.messages = [welcome]
        else:
            self.messages = [
                ChatMessage(role=r["role"], content=r["content"] or "", metadata={"id": r["id"]})
                for r in rows
            ]
        log.info("Loaded %d chat messages for user id=%s", len(self.messages), user.id)
        return list(self.messages)

    def begin_send(self, text: str) -> Tuple[List[ChatMessage], ChatMessage]:
        """
        Claim the transcript, store the user turn, and return (prior_history, user_message).
        Raises ValueError on blank input and SendInProgressError while a reply is streaming.
        """
        if not (text or "").strip():
            raise ValueError("Message is empty")
        user = self._session.require_user()
        if not self._flight.acquire(blocking=False):
            raise SendInProgressError("Wait for the current reply to finish")

        prior = list(self.messages)
        msg = ChatMessage(role="user", content=text)
        try:
            row = dbo.add_chat_message(self._conn, user.id, "user", text)
            msg.metadata = {"id": row.get("id")}
        except sqlite3.Error:
            # the turn goes unsaved; the send continues
            log.exception("Could not save user message")
        self.messages.append(msg)
        return prior, msg

    def open_stream(self, prior: List[ChatMessage], new_message: ChatMessage) -> ChatStream:
        """Start the reply. On StreamStartError the transcript is released."""
        try:
            return self._client.open(prior, new_message)
        except Exception:
            self.abort_send()
            raise

    def finish_send(self, text: str, *, persist: bool = True) -> Optional[ChatMessage]:
        """
        Close out a send. Non-empty text is appended to the transcript; it is
        stored only when persist is True (the reply ended normally).
        """
        try:
            if not text:
                return None
            msg = ChatMessage(role="assistant", content=text)
            if persist:
                user = self._session.require_user()
                row = dbo.add_chat_message(self._conn, user.id, "assistant", text)
                msg.metadata = {"id": row.get("id")}
            else:
                msg.metadata = {"partial": True}
            self.messages.append(msg)
            return msg
        finally:
            self._release()

    def abort_send(self) -> None:
        self._release()

    def send(self, text: str) -> Iterator[str]:
        """Stream a reply to text, yielding fragments; stores it if it completes."""
        prior, user_msg = self.begin_send(text)
        stream = self.open_stream(prior, user_msg)
        try:
            yield from stream
        finally:
            stream.close()
            self.finish_send(stream.text, persist=stream.completed)

    def _release(self) -> None:
        if self._flight.locked():
            self._flight.release()
