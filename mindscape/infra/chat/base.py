# mindscape/infra/chat/base.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional

@dataclass
class ChatMessage:
    role: str   # "user" | "assistant"
    content: str
    metadata: dict | None = None

    def to_wire(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class StreamFrame:
    kind: str               # "delta" | "done"
    text: str = ""


# ---------- errors ----------

class ChatStreamError(Exception):
    """Base class for chat streaming failures."""


class StreamStartError(ChatStreamError):
    """The request never produced a readable stream (connect error, bad status, no body)."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransportInterruptedError(ChatStreamError):
    """The connection dropped mid-stream. Text received so far is kept in .partial_text."""
    def __init__(self, message: str, partial_text: str = ""):
        super().__init__(message)
        self.partial_text = partial_text


class DecodeAmbiguousError(ChatStreamError):
    """A data payload did not parse; it may be truncated. Never leaves the decoder."""


def wire_messages(messages: List[ChatMessage]) -> List[Dict[str, str]]:
    return [m.to_wire() for m in messages]
