import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
import requests

from mindscape.infra.chat.base import ChatMessage, StreamStartError, TransportInterruptedError
from mindscape.infra.chat.stream_client import ChatStreamClient
from conftest import FakeResponse, FakeSession, sse_delta

HISTORY = [ChatMessage("assistant", "Hello! How can I help?")]
NEW = ChatMessage("user", "I feel a bit stressed")


def test_streams_fragments_in_order(client, fake_http):
    resp = FakeResponse([sse_delta("Take ") + sse_delta("a breath"), "data: [DONE]\n"])
    fake_http.queue(resp)

    stream = client.open(HISTORY, NEW)
    assert list(stream) == ["Take ", "a breath"]
    assert stream.text == "Take a breath"
    assert stream.status == "done"
    assert stream.completed
    assert resp.closed


def test_request_shape(client, fake_http):
    fake_http.queue(FakeResponse(["data: [DONE]\n"]))
    list(client.open(HISTORY, NEW))

    call = fake_http.calls[0]
    assert call["url"] == "http://chat.test/functions/v1/chat"
    assert call["stream"] is True
    assert call["json"] == {"messages": [
        {"role": "assistant", "content": "Hello! How can I help?"},
        {"role": "user", "content": "I feel a bit stressed"},
    ]}
    assert call["headers"]["Authorization"] == "Bearer pk-test"
    assert call["headers"]["Content-Type"] == "application/json"


def test_token_callable_is_read_per_request():
    tokens = iter(["first", None])
    http = FakeSession(FakeResponse(["data: [DONE]\n"]), FakeResponse(["data: [DONE]\n"]))
    client = ChatStreamClient("http://x", token=lambda: next(tokens), session=http)
    list(client.open([], NEW))
    list(client.open([], NEW))
    assert http.calls[0]["headers"]["Authorization"] == "Bearer first"
    assert "Authorization" not in http.calls[1]["headers"]


def test_stops_reading_after_done(client, fake_http):
    resp = FakeResponse([sse_delta("a") + "data: [DONE]\n", sse_delta("never")])
    fake_http.queue(resp)
    stream = client.open([], NEW)
    assert list(stream) == ["a"]
    assert resp.chunks_read == 1


def test_server_close_without_done_is_eof(client, fake_http):
    fake_http.queue(FakeResponse([sse_delta("partial")]))
    stream = client.open([], NEW)
    assert list(stream) == ["partial"]
    assert stream.status == "eof"
    assert stream.completed


def test_http_error_raises_stream_start_error(client, fake_http):
    resp = FakeResponse([], status_code=500)
    fake_http.queue(resp)
    with pytest.raises(StreamStartError) as ei:
        client.open([], NEW)
    assert ei.value.status_code == 500
    assert resp.closed


def test_connection_failure_raises_stream_start_error(client, fake_http):
    fake_http.queue(requests.ConnectionError("refused"))
    with pytest.raises(StreamStartError, match="refused"):
        client.open([], NEW)


def test_missing_body_raises_stream_start_error(client, fake_http):
    fake_http.queue(FakeResponse([], has_body=False))
    with pytest.raises(StreamStartError):
        client.open([], NEW)


def test_drop_mid_stream_keeps_partial_text(client, fake_http):
    fake_http.queue(FakeResponse([sse_delta("Hel"), sse_delta("lo")], fail_at=1))
    stream = client.open([], NEW)
    got = []
    with pytest.raises(TransportInterruptedError) as ei:
        for frag in stream:
            got.append(frag)
    assert got == ["Hel"]
    assert ei.value.partial_text == "Hel"
    assert stream.status == "interrupted"
    assert not stream.completed


def test_cancel_stops_emission_and_closes(client, fake_http):
    resp = FakeResponse([sse_delta("one"), sse_delta("two"), sse_delta("three")])
    fake_http.queue(resp)
    stream = client.open([], NEW)
    assert next(stream) == "one"
    stream.cancel()
    assert list(stream) == []
    assert stream.text == "one"
    assert stream.status == "cancelled"
    assert stream.cancelled
    assert resp.closed


def test_stream_chat_generator_closes_on_early_exit(client, fake_http):
    resp = FakeResponse([sse_delta("a"), sse_delta("b")])
    fake_http.queue(resp)
    gen = client.stream_chat([], NEW)
    assert next(gen) == "a"
    gen.close()
    assert resp.closed


def test_programming_error_is_not_reported_as_a_dropped_connection(client, fake_http):
    fake_http.queue(FakeResponse([sse_delta("a")], fail_at=0, exc=AttributeError("bad attribute")))
    stream = client.open([], NEW)
    with pytest.raises(AttributeError):
        list(stream)


class _OneFragmentThenIdle(BaseHTTPRequestHandler):
    """Chunked SSE reply: one delta, then nothing until the server is released."""
    protocol_version = "HTTP/1.1"

    def do_POST(self):
        self.rfile.read(int(self.headers.get("Content-Length") or 0))
        self.send_response(200)
        self.send_header("Content-Type", "text/event-stream")
        self.send_header("Transfer-Encoding", "chunked")
        self.end_headers()
        body = sse_delta("Hi").encode("utf-8")
        self.wfile.write(b"%x\r\n%s\r\n" % (len(body), body))
        self.wfile.flush()
        self.server.release.wait(8)
        self.close_connection = True

    def log_message(self, *args):
        pass


@pytest.fixture
def idle_server():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _OneFragmentThenIdle)
    server.daemon_threads = True
    server.release = threading.Event()
    serving = threading.Thread(target=server.serve_forever, daemon=True)
    serving.start()
    yield f"http://127.0.0.1:{server.server_address[1]}/chat"
    server.release.set()
    server.shutdown()
    server.server_close()


def test_cancel_wakes_a_read_blocked_on_an_idle_connection(idle_server):
    stream = ChatStreamClient(idle_server, timeout=30).open([], NEW)
    assert next(stream) == "Hi"

    rest = []
    drained = threading.Event()

    def drain():
        rest.extend(stream)
        drained.set()

    threading.Thread(target=drain, daemon=True).start()
    time.sleep(0.3)  # let the reader block in recv()
    started = time.monotonic()
    stream.cancel()

    assert drained.wait(3)
    assert time.monotonic() - started < 2
    assert rest == []
    assert stream.status == "cancelled"
    assert stream.text == "Hi"
