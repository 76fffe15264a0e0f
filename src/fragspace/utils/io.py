from __future__ import annotations

import csv
import json
import os
from pathlib import Path
from typing import Any

import yaml

from ..errors import ConfigurationError


def load_mapping(path: str | Path, what: str = "Config file") -> dict:
    """Read a YAML (.yaml/.yml) or JSON document whose top level is a mapping."""
    p = Path(path)
    if not p.exists():
        raise ConfigurationError(f"{what} not found: {p}")
    text = p.read_text(encoding="utf-8")
    try:
        if p.suffix.lower() in {".yaml", ".yml"}:
            data = yaml.safe_load(text) or {}
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"{what} {p} cannot be parsed: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{what} {p} must hold a mapping at the top level")
    return data


def dump_json(obj: Any, indent: int | None = None) -> str:
    if indent is None:
        return json.dumps(obj, ensure_ascii=False, sort_keys=True, separators=(",", ":"))
    return json.dumps(obj, ensure_ascii=False, sort_keys=True, indent=indent)


def write_text(path: str | Path, content: str, atomic: bool = False) -> Path:
    """Write UTF-8 text, creating parents.

    With ``atomic`` the content goes to a sibling ``.tmp`` file that then replaces
    ``path``, so concurrent readers never see a partial file.
    """
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    if not atomic:
        p.write_text(content, encoding="utf-8")
        return p
    tmp = p.with_name(p.name + ".tmp")
    tmp.write_text(content, encoding="utf-8")
    os.replace(tmp, p)
    return p


def read_csv_rows(path: str | Path) -> list[list[str]]:
    """Data rows of a CSV file, header excluded; empty if the file does not exist."""
    p = Path(path)
    if not p.exists():
        return []
    with p.open(encoding="utf-8", newline="") as f:
        return list(csv.reader(f))[1:]


def write_csv(path: str | Path, header: list[str], rows: list[list[Any]]) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w", encoding="utf-8", newline="") as f:
        w = csv.writer(f)
        w.writerow(header)
        w.writerows(rows)
