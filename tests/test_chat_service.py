import pytest

from mindscape import db_ops as dbo
from mindscape.constants import WELCOME_MESSAGE
from mindscape.core.session import NotAuthenticatedError
from mindscape.infra.chat.base import StreamStartError, TransportInterruptedError
from mindscape.services.chat import ChatService, SendInProgressError
from conftest import FakeResponse, sse_delta


@pytest.fixture
def service(conn, session, client):
    svc = ChatService(conn, session, client)
    svc.load_history()
    return svc


def _stored(conn, session):
    return [(r["role"], r["content"]) for r in dbo.list_chat_messages(conn, session.require_user().id)]


def test_new_user_gets_welcome_once(conn, session, client):
    svc = ChatService(conn, session, client)
    first = svc.load_history()
    assert [(m.role, m.content) for m in first] == [("assistant", WELCOME_MESSAGE)]
    svc.load_history()
    assert _stored(conn, session) == [("assistant", WELCOME_MESSAGE)]


def test_send_streams_and_persists(service, conn, session, fake_http):
    fake_http.queue(FakeResponse([sse_delta("Hel"), sse_delta("lo"), "data: [DONE]\n"]))
    assert list(service.send("hi")) == ["Hel", "lo"]

    assert [(m.role, m.content) for m in service.messages][1:] == [("user", "hi"), ("assistant", "Hello")]
    assert _stored(conn, session)[1:] == [("user", "hi"), ("assistant", "Hello")]
    assert not service.in_flight

    sent = fake_http.calls[0]["json"]["messages"]
    assert sent == [{"role": "assistant", "content": WELCOME_MESSAGE}, {"role": "user", "content": "hi"}]


def test_history_grows_with_each_turn(service, fake_http):
    fake_http.queue(FakeResponse([sse_delta("one"), "data: [DONE]\n"]))
    fake_http.queue(FakeResponse([sse_delta("two"), "data: [DONE]\n"]))
    list(service.send("first"))
    list(service.send("second"))
    sent = fake_http.calls[1]["json"]["messages"]
    assert [m["content"] for m in sent] == [WELCOME_MESSAGE, "first", "one", "second"]


def test_only_one_send_in_flight(service):
    service.begin_send("first")
    assert service.in_flight
    with pytest.raises(SendInProgressError):
        service.begin_send("second")
    service.finish_send("reply")
    assert not service.in_flight
    service.begin_send("third")
    service.abort_send()
    assert not service.in_flight


def test_blank_message_is_rejected(service):
    with pytest.raises(ValueError):
        service.begin_send("   ")
    assert not service.in_flight


def test_requires_sign_in(service, session):
    session.sign_out()
    with pytest.raises(NotAuthenticatedError):
        service.begin_send("hello")
    assert not service.in_flight


def test_start_failure_releases_and_keeps_user_turn(service, conn, session, fake_http):
    fake_http.queue(FakeResponse([], status_code=503))
    with pytest.raises(StreamStartError):
        list(service.send("anyone there?"))
    assert not service.in_flight
    assert _stored(conn, session)[-1] == ("user", "anyone there?")


def test_interrupted_reply_is_shown_but_not_stored(service, conn, session, fake_http):
    fake_http.queue(FakeResponse([sse_delta("Half a "), sse_delta("thought")], fail_at=1))
    with pytest.raises(TransportInterruptedError):
        list(service.send("talk to me"))
    assert not service.in_flight
    last = service.messages[-1]
    assert (last.role, last.content, last.metadata) == ("assistant", "Half a ", {"partial": True})
    assert _stored(conn, session)[-1] == ("user", "talk to me")


def test_reply_ending_without_sentinel_is_stored(service, conn, session, fake_http):
    fake_http.queue(FakeResponse([sse_delta("complete enough")]))
    list(service.send("hey"))
    assert _stored(conn, session)[-1] == ("assistant", "complete enough")


def test_empty_reply_adds_nothing(service, fake_http):
    fake_http.queue(FakeResponse(["data: [DONE]\n"]))
    before = len(service.messages)
    assert list(service.send("hello?")) == []
    assert len(service.messages) == before + 1


def test_history_reload_reads_store(service, conn, session, client, fake_http):
    fake_http.queue(FakeResponse([sse_delta("ok"), "data: [DONE]\n"]))
    list(service.send("remember me"))
    fresh = ChatService(conn, session, client)
    assert [m.content for m in fresh.load_history()] == [WELCOME_MESSAGE, "remember me", "ok"]
