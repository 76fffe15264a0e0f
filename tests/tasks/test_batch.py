from __future__ import annotations

import sys
import threading
import time

import pytest

from fragspace.errors import ExternalFitnessError, TaskBatchError, TaskCancelled
from fragspace.tasks.base import CancelToken, Task
from fragspace.tasks.batch import TasksBatchManager
from fragspace.tasks.process import run_process


class _SleepyTask(Task):
    def __init__(self, task_id: int, seconds: float, result=None) -> None:
        super().__init__(task_id)
        self.seconds = seconds
        self.result = task_id if result is None else result

    def run(self):
        deadline = time.monotonic() + self.seconds
        while time.monotonic() < deadline:
            self.token.check()
            time.sleep(0.01)
        return self.result


class _FailingTask(Task):
    def run(self):
        raise ValueError("boom")


def test_ten_tasks_three_workers() -> None:
    tasks = [_SleepyTask(i, 0.05) for i in range(10)]
    results = TasksBatchManager().execute_tasks(tasks, max_workers=3)
    assert sorted(results) == list(range(10))
    assert all(t.completed for t in tasks)


def test_list_results_are_flattened() -> None:
    tasks = [_SleepyTask(0, 0.0, result=["a", "b"]), _SleepyTask(1, 0.0, result=[])]
    assert sorted(TasksBatchManager().execute_tasks(tasks, max_workers=2)) == ["a", "b"]


def test_stop_returns_within_termination_timeout() -> None:
    manager = TasksBatchManager(termination_timeout=2.0)
    tasks = [_SleepyTask(i, 0.2 if i < 2 else 30.0) for i in range(10)]
    out: dict = {}

    def _run() -> None:
        out["results"] = manager.execute_tasks(tasks, max_workers=3)

    worker = threading.Thread(target=_run)
    start = time.monotonic()
    worker.start()
    time.sleep(0.6)
    manager.stop()
    worker.join(timeout=5.0)

    assert not worker.is_alive()
    assert time.monotonic() - start < 5.0
    assert sorted(out["results"]) == [0, 1]
    assert manager.stopped


def test_stop_between_batches_is_not_lost() -> None:
    manager = TasksBatchManager()
    assert manager.execute_tasks([_SleepyTask(0, 0.0)], max_workers=1) == [0]
    manager.stop()
    later = [_SleepyTask(i, 0.0) for i in range(1, 4)]
    assert manager.execute_tasks(later, max_workers=2) == []
    assert not any(t.completed for t in later)
    assert manager.stopped


def test_failure_stops_batch_and_keeps_results() -> None:
    tasks = [_SleepyTask(0, 0.0), _FailingTask(1)] + [_SleepyTask(i, 30.0) for i in range(2, 5)]
    start = time.monotonic()
    with pytest.raises(TaskBatchError) as exc:
        TasksBatchManager(termination_timeout=2.0).execute_tasks(tasks, max_workers=2)
    assert time.monotonic() - start < 5.0
    err = exc.value
    assert [t.task_id for t, _ in err.failures] == [1]
    assert isinstance(err.failures[0][1], ValueError)
    assert isinstance(err.__cause__, ValueError)
    assert err.results == [0]


def test_cancel_token_callbacks() -> None:
    token = CancelToken()
    calls: list[str] = []
    unregister = token.add_callback(lambda: calls.append("first"))
    token.add_callback(lambda: calls.append("second"))
    unregister()
    token.cancel()
    token.cancel()
    assert calls == ["second"]
    token.add_callback(lambda: calls.append("late"))
    assert calls == ["second", "late"]
    with pytest.raises(TaskCancelled):
        token.check()


def test_process_killed_on_cancel() -> None:
    token = CancelToken()
    timer = threading.Timer(0.3, token.cancel)
    timer.start()
    start = time.monotonic()
    with pytest.raises(TaskCancelled):
        run_process([sys.executable, "-c", "import time; time.sleep(30)"], token)
    assert time.monotonic() - start < 10.0


def test_process_timeout() -> None:
    with pytest.raises(ExternalFitnessError):
        run_process(
            [sys.executable, "-c", "import time; time.sleep(30)"], CancelToken(), timeout=0.3
        )


def test_process_output() -> None:
    res = run_process([sys.executable, "-c", "print('hello')"], CancelToken())
    assert res.returncode == 0 and res.stdout.strip() == "hello"
