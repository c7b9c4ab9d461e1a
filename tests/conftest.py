import json
import os
from typing import Iterable, List, Optional

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import pytest
import requests

from mindscape import db_ops as dbo
from mindscape.core.session import SessionManager
from mindscape.infra.chat.stream_client import ChatStreamClient

TEST_FIELD_KEY = "11" * 32


def sse_delta(text: str) -> str:
    return "data: " + json.dumps({"choices": [{"delta": {"content": text}}]}, ensure_ascii=False) + "\n"


class FakeResponse:
    """Just enough of requests.Response for ChatStream."""

    def __init__(self, chunks: Iterable = (), *, status_code: int = 200, fail_at: Optional[int] = None,
                 exc: Optional[Exception] = None, has_body: bool = True):
        self._chunks = [c.encode("utf-8") if isinstance(c, str) else c for c in chunks]
        self.status_code = status_code
        self.ok = 200 <= status_code < 400
        self.raw = object() if has_body else None
        self._fail_at = fail_at
        self._exc = exc or requests.exceptions.ChunkedEncodingError("connection reset")
        self.closed = False
        self.chunks_read = 0

    def iter_content(self, chunk_size=None):
        for i, chunk in enumerate(self._chunks):
            if self._fail_at is not None and i == self._fail_at:
                raise self._exc
            if self.closed:
                raise AttributeError("'NoneType' object has no attribute 'read'")
            self.chunks_read += 1
            yield chunk
        if self._fail_at is not None and self._fail_at >= len(self._chunks):
            raise self._exc

    def close(self):
        self.closed = True


class FakeSession:
    """Records posts and replays queued responses (or raises queued exceptions)."""

    def __init__(self, *responses):
        self._responses: List = list(responses)
        self.calls: List[dict] = []

    def queue(self, response):
        self._responses.append(response)

    def post(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        nxt = self._responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def conn(data_dir):
    c, _mode = dbo.open_database(data_dir, mode="open")
    yield c
    c.close()


@pytest.fixture
def strict_conn(data_dir, monkeypatch):
    monkeypatch.setenv("MINDSCAPE_KEY_FIELD", TEST_FIELD_KEY)
    c, _mode = dbo.open_database(data_dir, mode="strict")
    yield c
    c.close()


@pytest.fixture
def session(conn):
    s = SessionManager(conn, {"chat": {"api_key": ""}})
    s.sign_up("alex@example.com", "pw-alex", display_name="Alex")
    return s


@pytest.fixture
def fake_http():
    return FakeSession()


@pytest.fixture
def client(fake_http):
    return ChatStreamClient("http://chat.test/functions/v1/chat", token="pk-test", session=fake_http)
