from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any

from ..errors import TaskBatchError, TaskCancelled
from .base import Task

logger = logging.getLogger(__name__)

_POLL_SECONDS = 0.1


class TasksBatchManager:
    """Runs tasks on a bounded thread pool and collects results in completion order.

    ``stop()`` may be called from any thread: it cancels every task token and any
    future not yet started, and ``execute_tasks`` returns the results collected so
    far within ``termination_timeout`` seconds. A stopped manager stays stopped:
    later batches return no results without running.
    """

    def __init__(self, termination_timeout: float = 30.0) -> None:
        self.termination_timeout = termination_timeout
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._futures: dict[Future, Task] = {}

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def execute_tasks(self, tasks: list[Task], max_workers: int) -> list[Any]:
        if not tasks or self._stopped.is_set():
            return []
        results: list[Any] = []
        failures: list[tuple[Task, BaseException]] = []
        executor = ThreadPoolExecutor(
            max_workers=max(1, min(max_workers, len(tasks))), thread_name_prefix="fragspace"
        )
        with self._lock:
            self._futures = {executor.submit(t): t for t in tasks}
            pending = set(self._futures)
        try:
            while pending:
                done, pending = wait(pending, timeout=_POLL_SECONDS, return_when=FIRST_COMPLETED)
                for fut in done:
                    self._collect(fut, results, failures)
                if failures or self._stopped.is_set():
                    self._cancel_all()
                    break
        except KeyboardInterrupt as e:
            self._cancel_all()
            raise TaskBatchError("Interrupted while waiting for tasks", results, failures) from e
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
            if pending:
                done, _ = wait(pending, timeout=self.termination_timeout)
                for fut in done:
                    self._collect(fut, results, failures)
            with self._lock:
                self._futures = {}
        if failures:
            task, exc = failures[0]
            raise TaskBatchError(
                f"{len(failures)} task(s) failed; task {task.task_id}: {exc}", results, failures
            ) from exc
        return results

    def _collect(
        self, fut: Future, results: list[Any], failures: list[tuple[Task, BaseException]]
    ) -> None:
        if fut.cancelled():
            return
        exc = fut.exception()
        if exc is None:
            value = fut.result()
            if isinstance(value, list):
                results.extend(value)
            elif value is not None:
                results.append(value)
        elif isinstance(exc, TaskCancelled) and (self._stopped.is_set() or failures):
            logger.debug("Task %s cancelled", self._futures[fut].task_id)
        else:
            failures.append((self._futures[fut], exc))

    def _cancel_all(self) -> None:
        with self._lock:
            futures = dict(self._futures)
        for fut, task in futures.items():
            fut.cancel()
            task.stop()

    def stop(self) -> None:
        logger.info("Stopping task batch")
        self._stopped.set()
        self._cancel_all()
