from __future__ import annotations

import json
import shutil
from dataclasses import dataclass
from pathlib import Path

from ..errors import FragSpaceError
from ..graph.model import BlockResolver, Graph
from ..utils.io import dump_json, write_text


@dataclass
class StoredGraph:
    graph: Graph
    root_graph_id: int
    level: int
    pointer: list[int] | None = None


class LevelStorage:
    """Graphs produced at each level, one JSON file per graph.

    Layout: ``<work_dir>/levels/level_{LLL}/G{graph_id:08d}.json``.
    """

    def __init__(self, work_dir: str | Path) -> None:
        self.root = Path(work_dir) / "levels"

    def level_dir(self, level: int) -> Path:
        return self.root / f"level_{level:03d}"

    def store(
        self, graph: Graph, root_graph_id: int, level: int, pointer: list[int] | None = None
    ) -> Path:
        path = self.level_dir(level) / f"G{graph.graph_id:08d}.json"
        payload = {
            "graph": graph.to_dict(),
            "root_graph_id": root_graph_id,
            "level": level,
            "pointer": pointer,
        }
        write_text(path, dump_json(payload), atomic=True)
        return path

    def load_level(self, level: int, resolve: BlockResolver) -> list[StoredGraph]:
        d = self.level_dir(level)
        if not d.exists():
            return []
        stored: list[StoredGraph] = []
        for path in sorted(d.glob("G*.json")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as e:
                raise FragSpaceError(f"Corrupted graph file {path}: {e}") from e
            stored.append(
                StoredGraph(
                    graph=Graph.from_dict(data["graph"], resolve),
                    root_graph_id=int(data.get("root_graph_id", -1)),
                    level=int(data.get("level", level)),
                    pointer=data.get("pointer"),
                )
            )
        stored.sort(key=lambda s: s.graph.graph_id)
        return stored

    def count(self, level: int) -> int:
        d = self.level_dir(level)
        return len(list(d.glob("G*.json"))) if d.exists() else 0

    def clear(self) -> None:
        if self.root.exists():
            shutil.rmtree(self.root)
