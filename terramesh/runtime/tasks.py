"""Background task runner.

Each task family gets one lazily-started worker process. A request produces
zero or more :class:`TaskProgress` messages followed by exactly one
:class:`TaskResult` or :class:`TaskError`; on the caller side this becomes a
progress callback plus a :class:`concurrent.futures.Future`. Cancelling kills
the worker process; the next submission starts a fresh one.
"""

from __future__ import annotations

import copy
import multiprocessing as mp
import queue
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Union

from ..core.errors import TaskCancelledError, TaskFailedError, WorkerBusyError
from ..core.utils import get_logger
from .handlers import FAMILY_BY_TASK, TASK_HANDLERS, Handler

_log = get_logger()


@dataclass(frozen=True)
class TaskRequest:
    type: str
    payload: Any = None

    def as_message(self) -> Dict[str, Any]:
        return {"type": self.type, "payload": self.payload}


@dataclass(frozen=True)
class TaskProgress:
    percent: float
    message: str = ""
    type: str = field(default="progress", init=False)

    def as_message(self) -> Dict[str, Any]:
        return {"type": self.type, "percent": self.percent, "message": self.message}


@dataclass(frozen=True)
class TaskResult:
    data: Any
    type: str = field(default="result", init=False)

    def as_message(self) -> Dict[str, Any]:
        return {"type": self.type, "data": self.data}


@dataclass(frozen=True)
class TaskError:
    message: str
    type: str = field(default="error", init=False)

    def as_message(self) -> Dict[str, Any]:
        return {"type": self.type, "message": self.message}


TaskMessage = Union[TaskProgress, TaskResult, TaskError]
ProgressCallback = Callable[[TaskProgress], None]


def handle_request(
    request: TaskRequest,
    emit: Callable[[TaskMessage], None],
    handlers: Optional[Mapping[str, Handler]] = None,
) -> None:
    """Run one request and emit its messages; never raises for handler failures."""
    handlers = TASK_HANDLERS if handlers is None else handlers
    last = 0.0

    def progress(percent: float, message: str = "") -> None:
        nonlocal last
        last = max(last, min(100.0, float(percent)))
        emit(TaskProgress(last, message))

    handler = handlers.get(request.type)
    if handler is None:
        emit(TaskError(f"Unknown message type: {request.type}"))
        return
    try:
        data = handler(copy.deepcopy(request.payload), progress)
    except Exception as exc:
        _log.exception("Task '%s' failed", request.type)
        emit(TaskError(str(exc) or type(exc).__name__))
        return
    progress(100, "Complete")
    emit(TaskResult(data))


def run_inline(
    task_type: str,
    payload: Any,
    on_progress: Optional[ProgressCallback] = None,
    handlers: Optional[Mapping[str, Handler]] = None,
) -> Any:
    """Same message protocol as a worker, executed on the calling thread."""
    outcome: Dict[str, TaskMessage] = {}

    def emit(msg: TaskMessage) -> None:
        if isinstance(msg, TaskProgress):
            if on_progress is not None:
                on_progress(msg)
        else:
            outcome["terminal"] = msg

    handle_request(TaskRequest(task_type, payload), emit, handlers)
    terminal = outcome["terminal"]
    if isinstance(terminal, TaskError):
        raise TaskFailedError(terminal.message)
    return terminal.data  # type: ignore[union-attr]


def _worker_main(inbox: Any, outbox: Any, handlers: Mapping[str, Handler]) -> None:
    while True:
        request = inbox.get()
        if request is None:
            break
        handle_request(request, outbox.put, handlers)


@dataclass
class _Pending:
    future: "Future[Any]"
    on_progress: Optional[ProgressCallback]
    task_type: str


class TaskWorker:
    """One worker process serving a single task family, one request at a time."""

    def __init__(
        self,
        family: str,
        handlers: Optional[Mapping[str, Handler]] = None,
        *,
        mp_context: Optional[Any] = None,
        poll_interval: float = 0.05,
    ) -> None:
        self.family = family
        self._handlers = dict(TASK_HANDLERS if handlers is None else handlers)
        self._ctx = mp_context or mp.get_context("spawn")
        self._poll = poll_interval
        self._lock = threading.Lock()
        self._process: Optional[Any] = None
        self._inbox: Optional[Any] = None
        self._outbox: Optional[Any] = None
        self._stop: Optional[threading.Event] = None
        self._listener: Optional[threading.Thread] = None
        self._pending: Optional[_Pending] = None
        self.starts = 0

    @property
    def alive(self) -> bool:
        return self._process is not None and self._process.is_alive()

    @property
    def busy(self) -> bool:
        return self._pending is not None

    def _ensure_started(self) -> None:
        if self.alive:
            return
        self._inbox = self._ctx.Queue()
        self._outbox = self._ctx.Queue()
        self._process = self._ctx.Process(
            target=_worker_main,
            args=(self._inbox, self._outbox, self._handlers),
            name=f"terramesh-{self.family}",
            daemon=True,
        )
        self._process.start()
        self._stop = threading.Event()
        self._listener = threading.Thread(
            target=self._listen,
            args=(self._outbox, self._process, self._stop),
            name=f"terramesh-{self.family}-listener",
            daemon=True,
        )
        self._listener.start()
        self.starts += 1
        _log.info("Started %s worker (pid %s)", self.family, self._process.pid)

    def submit(self, task_type: str, payload: Any, on_progress: Optional[ProgressCallback] = None) -> "Future[Any]":
        with self._lock:
            if self._pending is not None:
                raise WorkerBusyError(
                    f"{self.family} worker is busy with '{self._pending.task_type}'; wait for it or cancel it"
                )
            self._ensure_started()
            future: "Future[Any]" = Future()
            future.set_running_or_notify_cancel()
            self._pending = _Pending(future, on_progress, task_type)
            assert self._inbox is not None
            self._inbox.put(TaskRequest(task_type, payload))
        return future

    def _listen(self, outbox: Any, process: Any, stop: threading.Event) -> None:
        while not stop.is_set():
            try:
                msg = outbox.get(timeout=self._poll)
            except queue.Empty:
                if not process.is_alive() and not stop.is_set():
                    self._fail_pending(TaskFailedError(f"{self.family} worker exited unexpectedly (code {process.exitcode})"))
                    return
                continue
            except (EOFError, OSError, ValueError):
                return
            self._dispatch(msg)

    def _dispatch(self, msg: TaskMessage) -> None:
        with self._lock:
            pending = self._pending
        if pending is None:
            return
        if isinstance(msg, TaskProgress):
            if pending.on_progress is not None:
                try:
                    pending.on_progress(msg)
                except Exception:
                    _log.exception("Progress callback failed")
            return
        with self._lock:
            self._pending = None
        if isinstance(msg, TaskResult):
            pending.future.set_result(msg.data)
        else:
            pending.future.set_exception(TaskFailedError(msg.message))

    def _fail_pending(self, exc: BaseException) -> None:
        with self._lock:
            pending, self._pending = self._pending, None
        if pending is not None and not pending.future.done():
            pending.future.set_exception(exc)

    def terminate(self) -> None:
        """Hard cancel: kill the process and fail any in-flight future."""
        with self._lock:
            process, self._process = self._process, None
            stop, listener = self._stop, self._listener
            inbox, outbox = self._inbox, self._outbox
            self._inbox = self._outbox = None
        if stop is not None:
            stop.set()
        if process is not None:
            process.terminate()
            process.join(timeout=5)
            _log.info("Terminated %s worker", self.family)
        if listener is not None and listener is not threading.current_thread():
            listener.join(timeout=5 * self._poll + 1)
        for q in (inbox, outbox):
            if q is not None:
                q.cancel_join_thread()
                q.close()
        self._fail_pending(TaskCancelledError(f"{self.family} task cancelled"))

    def shutdown(self, timeout: float = 5.0) -> None:
        """Stop an idle worker cleanly; a busy one is terminated."""
        if self._process is None:
            return
        if self.busy:
            self.terminate()
            return
        assert self._inbox is not None
        self._inbox.put(None)
        self._process.join(timeout=timeout)
        self.terminate()


class TaskRunner:
    """Owns one :class:`TaskWorker` per task family, created on first use."""

    def __init__(self, handlers: Optional[Mapping[str, Handler]] = None, *, mp_context: Optional[Any] = None) -> None:
        self._handlers = handlers
        self._ctx = mp_context
        self._workers: Dict[str, TaskWorker] = {}

    def __enter__(self) -> "TaskRunner":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()

    @staticmethod
    def family_of(task_type: str) -> str:
        return FAMILY_BY_TASK.get(task_type, task_type)

    def worker(self, family: str) -> TaskWorker:
        if family not in self._workers:
            self._workers[family] = TaskWorker(family, self._handlers, mp_context=self._ctx)
        return self._workers[family]

    def submit(self, task_type: str, payload: Any, on_progress: Optional[ProgressCallback] = None) -> "Future[Any]":
        return self.worker(self.family_of(task_type)).submit(task_type, payload, on_progress)

    def run(
        self,
        task_type: str,
        payload: Any,
        on_progress: Optional[ProgressCallback] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Submit and wait; on timeout the family's worker is terminated before re-raising."""
        future = self.submit(task_type, payload, on_progress)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            self.cancel(self.family_of(task_type))
            raise

    def cancel(self, family: str) -> None:
        worker = self._workers.get(family)
        if worker is not None:
            worker.terminate()

    def shutdown(self) -> None:
        for worker in self._workers.values():
            worker.shutdown()
