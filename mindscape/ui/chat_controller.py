# mindscape/ui/chat_controller.py
from __future__ import annotations
import logging
from typing import List, Optional
from PyQt6.QtCore import QObject, Qt, pyqtSignal

from mindscape.infra.chat.thread_broker import ThreadBroker, STATUS_OK, STATUS_CANCELLED
from mindscape.infra.chat.backend_adapter import make_stream_func_from_client
from mindscape.services.chat import ChatService, SendInProgressError

log = logging.getLogger("ui.chat")


class ChatController(QObject):
    """
    Glue between the chat window and the streaming backend.

    - Loads the transcript and hands it to the view.
    - Starts / stops streamed replies via ThreadBroker.
    - Forwards fragments to the view as they arrive.
    - Stores the reply only when it ended normally; a cancelled or broken
      reply stays on screen but is not saved.
    """

    transcript_loaded  = pyqtSignal(list)   # list[ChatMessage]
    user_message_added = pyqtSignal(str)
    assistant_started  = pyqtSignal()
    assistant_chunk    = pyqtSignal(str)
    assistant_finished = pyqtSignal(str)    # broker status
    busy_changed       = pyqtSignal(bool)
    notify             = pyqtSignal(str)    # failure notification text

    def __init__(self, service: ChatService, parent: Optional[QObject] = None):
        super().__init__(parent)
        self._service = service
        self.broker = ThreadBroker(self)
        self._stream_func = make_stream_func_from_client(service.client)
        self._assistant_buf: List[str] = []
        self._active_ticket: int = -1

        self.broker.job_token.connect(self._on_job_token, Qt.ConnectionType.QueuedConnection)
        self.broker.job_finished.connect(self._on_job_finished, Qt.ConnectionType.QueuedConnection)
        self.broker.job_error.connect(self._on_job_error, Qt.ConnectionType.QueuedConnection)

    @property
    def busy(self) -> bool:
        return self._active_ticket != -1

    def load(self) -> None:
        try:
            messages = self._service.load_history()
        except Exception as exc:
            log.exception("Failed to load chat history")
            self.notify.emit(f"Failed to load chat history: {exc}")
            return
        self.transcript_loaded.emit(messages)

    def send(self, text: str) -> bool:
        """Start a reply for text. Returns False when nothing was sent."""
        try:
            prior, user_msg = self._service.begin_send(text)
        except ValueError:
            return False
        except SendInProgressError as exc:
            self.notify.emit(str(exc))
            return False

        self._assistant_buf = []
        self.user_message_added.emit(user_msg.content)
        self.assistant_started.emit()
        self._active_ticket = self.broker.submit(self._stream_func, prior, user_msg)
        self.busy_changed.emit(True)
        return True

    def stop(self) -> None:
        if self.busy:
            self.broker.stop_active()

    def shutdown(self) -> None:
        self.broker.shutdown()

    # ---------- Slots ----------

    def _on_job_token(self, ticket: int, chunk: str):
        if ticket != self._active_ticket:
            return
        self._assistant_buf.append(chunk)
        self.assistant_chunk.emit(chunk)

    def _on_job_error(self, ticket: int, message: str):
        if ticket != self._active_ticket:
            return
        log.warning("Chat reply failed: %s", message)
        self.notify.emit("Failed to send message")

    def _on_job_finished(self, ticket: int, status: str):
        if ticket != self._active_ticket:
            return
        final_text = "".join(self._assistant_buf)
        self._assistant_buf = []
        self._active_ticket = -1
        try:
            self._service.finish_send(final_text, persist=(status == STATUS_OK))
        except Exception:
            log.exception("Could not store assistant reply")
            self.notify.emit("Failed to save the assistant reply")
        if status == STATUS_CANCELLED:
            log.info("Reply cancelled after %d chars", len(final_text))
        self.assistant_finished.emit(status)
        self.busy_changed.emit(False)
