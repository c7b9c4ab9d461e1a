# mindscape/ui/chat_window.py
from __future__ import annotations
from typing import List, Optional
from PyQt6.QtCore import Qt
from PyQt6.QtWidgets import (
    QWidget, QVBoxLayout, QHBoxLayout, QLabel, QLineEdit, QPushButton, QListWidget,
    QListWidgetItem, QAbstractItemView
)

from mindscape.infra.chat.base import ChatMessage
from mindscape.ui.chat_controller import ChatController

ROLE_PREFIX = {"user": "You", "assistant": "Assistant"}


class ChatWindow(QWidget):
    """AI assistant screen: transcript, prompt line, Send/Stop."""

    def __init__(self, controller: ChatController, parent: Optional[QWidget] = None):
        super().__init__(parent)
        self._ctl = controller
        self._stream_item: Optional[QListWidgetItem] = None
        self._stream_text = ""
        self.setWindowTitle("MindScape · AI Assistant")
        self.resize(720, 560)

        root = QVBoxLayout(self); root.setContentsMargins(12, 12, 12, 12); root.setSpacing(8)
        root.addWidget(QLabel("<b>AI Assistant</b><br><small>Your personal wellness companion</small>", self))

        self._list = QListWidget(self)
        self._list.setWordWrap(True)
        self._list.setSelectionMode(QAbstractItemView.SelectionMode.NoSelection)
        root.addWidget(self._list, 1)

        self._status = QLabel("", self)
        self._status.setStyleSheet("color:#b3261e;")
        root.addWidget(self._status)

        row = QHBoxLayout()
        self._input = QLineEdit(self, placeholderText="Type your message…")
        self._input.returnPressed.connect(self._on_send)
        self._btn_send = QPushButton("Send", self); self._btn_send.clicked.connect(self._on_send)
        self._btn_stop = QPushButton("Stop", self); self._btn_stop.clicked.connect(self._ctl.stop)
        self._btn_stop.setEnabled(False)
        row.addWidget(self._input, 1); row.addWidget(self._btn_send); row.addWidget(self._btn_stop)
        root.addLayout(row)

        self._ctl.transcript_loaded.connect(self.set_messages)
        self._ctl.user_message_added.connect(lambda text: self._append("user", text))
        self._ctl.assistant_started.connect(self._begin_stream)
        self._ctl.assistant_chunk.connect(self._stream_chunk)
        self._ctl.assistant_finished.connect(self._end_stream)
        self._ctl.busy_changed.connect(self._set_busy)
        self._ctl.notify.connect(self._status.setText)

    # ---- view updates ----
    def set_messages(self, messages: List[ChatMessage]):
        self._list.clear()
        for m in messages:
            self._append(m.role, m.content)

    def _append(self, role: str, text: str) -> QListWidgetItem:
        item = QListWidgetItem(f"{ROLE_PREFIX.get(role, role)}: {text}")
        item.setTextAlignment(Qt.AlignmentFlag.AlignRight if role == "user" else Qt.AlignmentFlag.AlignLeft)
        self._list.addItem(item)
        self._list.scrollToBottom()
        return item

    def _begin_stream(self):
        self._status.clear()
        self._stream_text = ""
        self._stream_item = self._append("assistant", "…")

    def _stream_chunk(self, chunk: str):
        if self._stream_item is None:
            return
        self._stream_text += chunk
        self._stream_item.setText(f"{ROLE_PREFIX['assistant']}: {self._stream_text}")
        self._list.scrollToBottom()

    def _end_stream(self, status: str):
        # an empty reply leaves nothing worth showing
        if self._stream_item is not None and not self._stream_text:
            self._list.takeItem(self._list.row(self._stream_item))
        self._stream_item = None

    def _set_busy(self, on: bool):
        self._btn_send.setEnabled(not on)
        self._input.setEnabled(not on)
        self._btn_stop.setEnabled(on)

    def _on_send(self):
        text = self._input.text()
        if self._ctl.send(text):
            self._input.clear()
