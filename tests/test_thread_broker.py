import time

from mindscape.infra.chat.base import StreamStartError
from mindscape.infra.chat.thread_broker import (
    ThreadBroker, STATUS_OK, STATUS_CANCELLED, STATUS_ERROR,
)


def _words(*words, stop_fn):
    for w in words:
        yield w


def _slow(*, stop_fn):
    for i in range(500):
        if stop_fn():
            return
        time.sleep(0.01)
        yield str(i)


def _fails(*, stop_fn):
    raise StreamStartError("Failed to start stream: HTTP 502", status_code=502)


def _explodes(*, stop_fn):
    yield "x"
    raise KeyError("boom")


def test_tokens_arrive_in_order(qtbot):
    broker = ThreadBroker()
    tokens = []
    broker.job_token.connect(lambda t, s: tokens.append(s))
    with qtbot.waitSignal(broker.job_finished, timeout=5000) as blocker:
        ticket = broker.submit(_words, "a", "b", "c")
    assert blocker.args == [ticket, STATUS_OK]
    assert tokens == ["a", "b", "c"]
    assert not broker.is_busy()


def test_stop_active_cancels(qtbot):
    broker = ThreadBroker()
    with qtbot.waitSignal(broker.job_finished, timeout=5000) as blocker:
        broker.submit(_slow)
        qtbot.waitSignal(broker.job_token, timeout=5000).wait()
        broker.stop_active()
    assert blocker.args[1] == STATUS_CANCELLED


def test_stream_error_is_reported(qtbot):
    broker = ThreadBroker()
    errors = []
    broker.job_error.connect(lambda t, msg: errors.append(msg))
    with qtbot.waitSignal(broker.job_finished, timeout=5000) as blocker:
        broker.submit(_fails)
    assert blocker.args[1] == STATUS_ERROR
    assert errors == ["Failed to start stream: HTTP 502"]


def test_unexpected_error_is_reported(qtbot):
    broker = ThreadBroker()
    errors = []
    broker.job_error.connect(lambda t, msg: errors.append(msg))
    with qtbot.waitSignal(broker.job_finished, timeout=5000) as blocker:
        broker.submit(_explodes)
    assert blocker.args[1] == STATUS_ERROR
    assert errors and errors[0].startswith("KeyError")


def test_jobs_run_one_at_a_time(qtbot):
    broker = ThreadBroker()
    done = []
    broker.job_finished.connect(lambda t, status: done.append(t))
    first = broker.submit(_words, "1")
    second = broker.submit(_words, "2")
    assert broker.active_ticket() == first
    qtbot.waitUntil(lambda: len(done) == 2, timeout=5000)
    assert done == [first, second]


def test_clear_queue_drops_waiting_jobs(qtbot):
    broker = ThreadBroker()
    done = []
    queue_states = []
    broker.job_finished.connect(lambda t, status: done.append(t))
    broker.queue_changed.connect(lambda active, waiting: queue_states.append((active, waiting)))
    first = broker.submit(_slow)
    broker.submit(_words, "never")
    assert queue_states[-1] == (first, 1)

    broker.clear_queue(include_active=True)
    assert queue_states[-1] == (first, 0)
    qtbot.waitUntil(lambda: done == [first], timeout=5000)
    qtbot.wait(50)
    assert done == [first]
    assert not broker.is_busy()
