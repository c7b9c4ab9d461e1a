# mindscape/infra/chat/thread_broker.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Deque, Iterator, Optional
from collections import deque
from itertools import count
import logging
import time

from PyQt6.QtCore import QObject, QThread, pyqtSignal, Qt

from .base import ChatStreamError

log = logging.getLogger("chat.broker")

# A reply job: called as func(*args, stop_fn=..., **kwargs); returns an iterable of fragments.
StreamFunc = Callable[..., Iterator[str]]
StopFn     = Callable[[], bool]

STATUS_OK = "ok"
STATUS_CANCELLED = "cancelled"
STATUS_ERROR = "error"


@dataclass(slots=True)
class Job:
    ticket: int
    func:   StreamFunc
    args:   tuple = field(default_factory=tuple)
    kwargs: dict  = field(default_factory=dict)
    queued_at: float = field(default_factory=time.monotonic)


class _ReplyWorker(QObject):
    """Runs one job on its own QThread and reports back through signals."""
    fragment = pyqtSignal(int, str)     # (ticket, text)
    ended    = pyqtSignal(int, str)     # (ticket, status)
    failed   = pyqtSignal(int, str)     # (ticket, message)

    def __init__(self, job: Job):
        super().__init__()
        self.job = job
        self._cancelled = False
        self._source: Optional[Iterator[str]] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        # GUI thread. A ChatStream source drops its socket here, so a blocked read returns.
        self._cancelled = True
        abort = getattr(self._source, "cancel", None)
        if callable(abort):
            abort()

    def run(self):
        ticket = self.job.ticket
        try:
            self._pump(ticket)
            status = STATUS_CANCELLED if self._cancelled else STATUS_OK
        except ChatStreamError as exc:
            if self._cancelled:
                status = STATUS_CANCELLED
            else:
                status = STATUS_ERROR
                self.failed.emit(ticket, str(exc))
        except Exception as exc:
            log.exception("Reply job %d crashed", ticket)
            status = STATUS_ERROR
            self.failed.emit(ticket, f"{type(exc).__name__}: {exc}")
        finally:
            self._release_source()
        self.ended.emit(ticket, status)

    def _pump(self, ticket: int):
        kwargs = {"stop_fn": lambda: self._cancelled, **self.job.kwargs}
        produced = self.job.func(*self.job.args, **kwargs)
        if produced is None:
            return
        self._source = iter(produced)
        if self._cancelled:
            self.cancel()
        for text in self._source:
            if self._cancelled:
                return
            self.fragment.emit(ticket, str(text))

    def _release_source(self):
        source, self._source = self._source, None
        close = getattr(source, "close", None)
        if callable(close):
            close()


@dataclass
class _Running:
    job: Job
    thread: QThread
    worker: _ReplyWorker


class ThreadBroker(QObject):
    """
    Single-concurrency ticket queue for streamed chat replies.

    Jobs run one at a time, each on a fresh QThread. Fragments, errors and the
    final status are re-emitted on the broker's own thread, so slots connected
    here can touch widgets and the database directly.
    """
    job_token    = pyqtSignal(int, str)     # (ticket, fragment)
    job_finished = pyqtSignal(int, str)     # (ticket, status)
    job_error    = pyqtSignal(int, str)     # (ticket, message)
    queue_changed = pyqtSignal(int, int)    # (active ticket or -1, waiting jobs)

    def __init__(self, parent: QObject | None = None):
        super().__init__(parent)
        self._next_ticket = count(1)
        self._waiting: Deque[Job] = deque()
        self._running: Optional[_Running] = None

    # -------- API --------
    def submit(self, func: StreamFunc, *args, **kwargs) -> int:
        job = Job(next(self._next_ticket), func, args, kwargs)
        self._waiting.append(job)
        self._announce_queue()
        if self._running is None:
            self._launch_next()
        return job.ticket

    def stop_active(self):
        if self._running is not None:
            log.info("Stopping reply job %d", self._running.job.ticket)
            self._running.worker.cancel()

    def clear_queue(self, include_active: bool = False):
        dropped = len(self._waiting)
        self._waiting.clear()
        if dropped:
            log.info("Dropped %d queued reply job(s)", dropped)
        if include_active:
            self.stop_active()
        self._announce_queue()

    def active_ticket(self) -> int:
        return self._running.job.ticket if self._running is not None else -1

    def is_busy(self) -> bool:
        return self._running is not None or bool(self._waiting)

    def shutdown(self, timeout_ms: int = 3000):
        """Cancel everything and wait for the worker thread to exit."""
        self.clear_queue(include_active=True)
        if self._running is not None:
            self._running.thread.quit()
            if not self._running.thread.wait(timeout_ms):
                log.warning("Reply thread did not stop within %d ms", timeout_ms)

    # -------- internals --------
    def _announce_queue(self):
        self.queue_changed.emit(self.active_ticket(), len(self._waiting))

    def _launch_next(self):
        if self._running is not None or not self._waiting:
            return
        job = self._waiting.popleft()
        thread = QThread()
        worker = _ReplyWorker(job)
        worker.moveToThread(thread)

        worker.fragment.connect(self.job_token, Qt.ConnectionType.QueuedConnection)
        worker.failed.connect(self.job_error, Qt.ConnectionType.QueuedConnection)
        worker.ended.connect(self._on_ended, Qt.ConnectionType.QueuedConnection)
        thread.started.connect(worker.run)

        self._running = _Running(job, thread, worker)
        self._announce_queue()
        log.debug("Reply job %d started after %.2fs in queue", job.ticket, time.monotonic() - job.queued_at)
        thread.start()

    def _on_ended(self, ticket: int, status: str):
        running, self._running = self._running, None
        if running is not None:
            running.thread.quit()
            running.thread.wait()
            running.worker.deleteLater()
            running.thread.deleteLater()
        self.job_finished.emit(ticket, status)
        self._announce_queue()
        self._launch_next()
