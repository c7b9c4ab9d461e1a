# mindscape/infra/chat/backend_adapter.py
from __future__ import annotations
from typing import Callable, List

from .base import ChatMessage
from .stream_client import ChatStream, ChatStreamClient

StreamFunc = Callable[..., ChatStream]


def make_stream_func_from_client(client: ChatStreamClient) -> StreamFunc:
    """
    Returns a StreamFunc(history, new_message, *, stop_fn) -> ChatStream
    that the ThreadBroker can schedule. The broker calls .cancel() on the
    returned stream when asked to stop.
    """
    def stream(history: List[ChatMessage], new_message: ChatMessage, *, stop_fn) -> ChatStream:
        chat_stream = client.open(history, new_message)
        if stop_fn():
            chat_stream.cancel()
        return chat_stream
    return stream
