from __future__ import annotations

import time
from concurrent.futures import TimeoutError as FutureTimeoutError

import pytest

from terramesh.core.errors import TaskCancelledError, TaskFailedError, WorkerBusyError
from terramesh.runtime.handlers import TASK_HANDLERS
from terramesh.runtime.tasks import TaskRunner, run_inline


def _slow(payload, progress):
    progress(10, "sleeping")
    time.sleep(payload)
    return "done"


HANDLERS = dict(TASK_HANDLERS, slow=_slow)

SQUARE = {"vertices": [[0, 0], [3, 0], [3, 3], [0, 3]], "depth": -2.0}


def test_background_matches_inline() -> None:
    seen = []
    with TaskRunner() as runner:
        data = runner.run("extrude", SQUARE, on_progress=seen.append, timeout=120)
    assert data["volume"] == pytest.approx(run_inline("extrude", SQUARE)["volume"])
    assert [m.percent for m in seen][-1] == 100
    assert seen[-1].message == "Complete"


def test_background_error_fails_future() -> None:
    with TaskRunner() as runner:
        with pytest.raises(TaskFailedError):
            runner.run("extrude", {"vertices": [[0, 0], [1, 0]]}, timeout=120)
        assert runner.worker("extrusion").alive


def test_busy_worker_and_cancel() -> None:
    runner = TaskRunner(HANDLERS)
    try:
        future = runner.submit("slow", 60)
        with pytest.raises(WorkerBusyError):
            runner.submit("slow", 0)
        runner.cancel("slow")
        with pytest.raises(TaskCancelledError):
            future.result(timeout=10)
        assert not runner.worker("slow").alive

        assert runner.submit("slow", 0).result(timeout=120) == "done"
        assert runner.worker("slow").starts == 2
    finally:
        runner.shutdown()


def test_timeout_terminates_worker() -> None:
    runner = TaskRunner(HANDLERS)
    try:
        with pytest.raises(FutureTimeoutError):
            runner.run("slow", 60, timeout=0.5)
        assert not runner.worker("slow").alive
        assert not runner.worker("slow").busy
    finally:
        runner.shutdown()
