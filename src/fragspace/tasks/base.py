from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from ..errors import TaskCancelled

logger = logging.getLogger(__name__)


class CancelToken:
    """Cooperative cancellation flag shared by a task and whoever may stop it.

    Callbacks run once, on the thread calling ``cancel()``; external-process runners
    register ``Popen.kill`` here.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            try:
                cb()
            except Exception:
                logger.exception("Cancel callback %r failed", cb)

    def check(self) -> None:
        if self._event.is_set():
            raise TaskCancelled("Task cancelled")

    def add_callback(self, cb: Callable[[], None]) -> Callable[[], None]:
        """Register ``cb``; returns a function that unregisters it."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(cb)
                return lambda: self._remove(cb)
        cb()
        return lambda: None

    def _remove(self, cb: Callable[[], None]) -> None:
        with self._lock:
            if cb in self._callbacks:
                self._callbacks.remove(cb)


class Task(ABC):
    """Unit of work run by the batch scheduler."""

    def __init__(self, task_id: int, token: CancelToken | None = None) -> None:
        self.task_id = task_id
        self.token = token or CancelToken()
        self.exception: BaseException | None = None
        self.completed = False

    @abstractmethod
    def run(self) -> Any: ...

    def __call__(self) -> Any:
        try:
            return self.run()
        except TaskCancelled as e:
            self.exception = e
            raise
        except Exception as e:
            self.exception = e
            logger.error("Task %s failed: %s", self.task_id, e)
            raise
        finally:
            self.completed = True

    def stop(self) -> None:
        self.token.cancel()
