from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from ..errors import ConfigurationError
from ..utils.io import write_text

CHECKPOINT_FILE = "checkpoint.json"


class Checkpoint(BaseModel):
    """Where a combinatorial exploration can resume from."""

    level: int = Field(..., ge=1, description="Level being explored")
    root_graph_id: int = Field(-1, description="Root graph whose combinations are in progress")
    root_position: int = Field(0, ge=0, description="Index of that root among the level's roots")
    last_pointer: list[int] | None = Field(
        None, description="Last combination pointer whose batch completed"
    )
    next_graph_id: int = 0
    next_candidate_id: int = 1
    next_task_id: int = 1

    def counter_state(self) -> dict[str, int]:
        return {
            "next_graph_id": self.next_graph_id,
            "next_candidate_id": self.next_candidate_id,
            "next_task_id": self.next_task_id,
        }

    def save(self, work_dir: str | Path) -> Path:
        path = Path(work_dir) / CHECKPOINT_FILE
        write_text(path, self.model_dump_json(indent=2), atomic=True)
        return path

    @classmethod
    def load(cls, work_dir: str | Path) -> Checkpoint | None:
        path = Path(work_dir) / CHECKPOINT_FILE
        if not path.exists():
            return None
        try:
            return cls.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, ValidationError) as e:
            raise ConfigurationError(f"Invalid checkpoint {path}: {e}") from e
