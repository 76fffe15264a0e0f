from __future__ import annotations

import random
import threading
from dataclasses import dataclass, field


class IdCounter:
    """Monotonic, thread-safe integer allocator."""

    def __init__(self, start: int = 0) -> None:
        self._next = int(start)
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            value = self._next
            self._next += 1
            return value

    def peek(self) -> int:
        with self._lock:
            return self._next

    def reset(self, start: int) -> None:
        with self._lock:
            self._next = int(start)


@dataclass
class RunContext:
    """Process-wide mutable state of one run, passed explicitly to builders and tasks."""

    graph_ids: IdCounter = field(default_factory=IdCounter)
    candidate_ids: IdCounter = field(default_factory=lambda: IdCounter(1))
    task_ids: IdCounter = field(default_factory=lambda: IdCounter(1))
    seed: int = 0
    _rng: random.Random = field(init=False, repr=False)
    _rng_lock: threading.Lock = field(init=False, repr=False, default_factory=threading.Lock)

    def __post_init__(self) -> None:
        self._rng = random.Random(self.seed)

    def random_seed(self) -> int:
        """Draw a seed for a stochastic step (e.g. conformer embedding)."""
        with self._rng_lock:
            return self._rng.randrange(0, 2**31 - 1)

    def state(self) -> dict[str, int]:
        return {
            "next_graph_id": self.graph_ids.peek(),
            "next_candidate_id": self.candidate_ids.peek(),
            "next_task_id": self.task_ids.peek(),
        }

    def restore(self, state: dict[str, int]) -> None:
        self.graph_ids.reset(max(self.graph_ids.peek(), state.get("next_graph_id", 0)))
        self.candidate_ids.reset(
            max(self.candidate_ids.peek(), state.get("next_candidate_id", 1))
        )
        self.task_ids.reset(max(self.task_ids.peek(), state.get("next_task_id", 1)))
