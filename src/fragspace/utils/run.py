from __future__ import annotations

import datetime as _dt
import threading
import uuid as _uuid
from pathlib import Path
from typing import Any

from .io import dump_json, write_text

_LOG_LOCK = threading.Lock()


def new_run_id(prefix: str = "run") -> str:
    ts = _dt.datetime.now(_dt.timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    short = str(_uuid.uuid4())[:8]
    return f"{prefix}-{ts}-{short}"


def run_dir(work_dir: str | Path) -> Path:
    p = Path(work_dir).absolute()
    p.mkdir(parents=True, exist_ok=True)
    (p / "logs").mkdir(parents=True, exist_ok=True)
    return p


def log_event(work_dir: str | Path, event: str, **fields: Any) -> None:
    payload: dict[str, Any] = {
        "ts": _dt.datetime.now(_dt.timezone.utc).isoformat(timespec="seconds"),
        "event": event,
        **fields,
    }
    log_path = run_dir(work_dir) / "logs" / "run.jsonl"
    # Worker threads log concurrently
    with _LOG_LOCK, log_path.open("a", encoding="utf-8") as f:
        f.write(dump_json(payload) + "\n")


def snapshot_config(work_dir: str | Path, payload: dict[str, Any]) -> None:
    write_text(run_dir(work_dir) / "config.run.json", dump_json(payload))
