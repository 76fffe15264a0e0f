from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .chem import rdkit_utils as RU
from .graph.model import Graph

TAG_FITNESS = "FITNESS"
TAG_ERROR = "MOL_ERROR"
TAG_UID = "UID"
TAG_SMILES = "SMILES"
TAG_PARENT_GRAPH = "PARENT_GRAPH"
TAG_LEVEL = "LEVEL"
TAG_GRAPH_ID = "GRAPH_ID"
TAG_GRAPH_JSON = "GRAPH_JSON"
TAG_VERTEX_IDS = "ATM_VERTEX_ID"

RESULT_HEADER = ["name", "uid", "smiles", "fitness", "error", "level", "parent_graph", "sdf"]


@dataclass
class Candidate:
    """A graph with its chemical representation and evaluation outcome."""

    name: str = ""
    graph: Graph | None = None
    mol: Any = None
    uid: str | None = None
    smiles: str | None = None
    fitness: float | None = None
    error: str | None = None
    sdf_path: Path | None = None
    image_path: Path | None = None
    level: int = -1
    parent_graph_id: int = -1

    @property
    def has_fitness(self) -> bool:
        return self.fitness is not None and self.error is None

    @property
    def graph_id(self) -> int:
        return self.graph.graph_id if self.graph is not None else -1

    def to_mol(self, with_vertex_ids: bool = False):
        """Copy of the molecule carrying the candidate's identity and outcome as tags."""
        from rdkit import Chem

        mol = Chem.Mol(self.mol)
        mol.SetProp("_Name", self.name)
        RU.set_props(
            mol,
            {
                TAG_SMILES: self.smiles,
                TAG_UID: self.uid,
                TAG_FITNESS: None if self.error is not None else self.fitness,
                TAG_ERROR: self.error,
                TAG_PARENT_GRAPH: self.parent_graph_id,
                TAG_LEVEL: self.level,
                TAG_GRAPH_ID: self.graph_id if self.graph is not None else None,
                TAG_GRAPH_JSON: json.dumps(self.graph.to_dict()) if self.graph is not None else None,
            },
        )
        if with_vertex_ids:
            ids = [
                str(a.GetIntProp("vertex_id")) if a.HasProp("vertex_id") else "-1"
                for a in mol.GetAtoms()
            ]
            mol.SetProp(TAG_VERTEX_IDS, " ".join(ids))
        return mol

    def summary_row(self) -> list[Any]:
        return [
            self.name,
            self.uid or "",
            self.smiles or "",
            "" if self.fitness is None else self.fitness,
            self.error or "",
            self.level,
            self.parent_graph_id,
            str(self.sdf_path) if self.sdf_path is not None else "",
        ]
