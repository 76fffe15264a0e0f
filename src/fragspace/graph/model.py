"""Attachment-point graph model.

Vertices are building-block instances, edges bond two attachment points (APs) of
distinct vertices, and rings record intended closures between pairs of
ring-closing attractor (RCA) vertices. The vertex/edge structure is a tree; ring
closures are chords stored next to it.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import networkx as nx

from ..errors import ConfigurationError, GraphStructureError

RCA_PLUS = "ATplus"
RCA_MINUS = "ATminus"
RCA_NEUTRAL = "ATneutral"
RCA_RULES = (RCA_PLUS, RCA_MINUS, RCA_NEUTRAL)

_RULE_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_SUBCLASS_RE = re.compile(r"^[0-9]+$")


class BBType(str, Enum):
    NONE = "NONE"
    UNDEFINED = "UNDEFINED"
    SCAFFOLD = "SCAFFOLD"
    FRAGMENT = "FRAGMENT"
    CAP = "CAP"
    RCA = "RCA"


class BondType(str, Enum):
    NONE = "NONE"
    UNDEFINED = "UNDEFINED"
    ANY = "ANY"
    SINGLE = "SINGLE"
    DOUBLE = "DOUBLE"
    TRIPLE = "TRIPLE"

    @property
    def valence(self) -> int:
        return {"ANY": 1, "SINGLE": 1, "DOUBLE": 2, "TRIPLE": 3}.get(self.value, 0)

    @classmethod
    def parse(cls, value: str | int) -> BondType:
        s = str(value).strip()
        for bt in cls:
            if bt.value == s.upper():
                return bt
        return {"0": cls.NONE, "1": cls.SINGLE, "2": cls.DOUBLE, "3": cls.TRIPLE, "8": cls.ANY}.get(
            s, cls.UNDEFINED
        )


@dataclass(frozen=True, order=True)
class APClass:
    """Attachment point class: a rule name and an integer subclass, written ``rule:sub``."""

    rule: str
    subclass: int = 0

    @classmethod
    def parse(cls, text: str) -> APClass:
        parts = str(text).strip().split(":")
        if len(parts) != 2 or not _RULE_RE.match(parts[0]) or not _SUBCLASS_RE.match(parts[1]):
            raise ConfigurationError(
                f"APClass '{text}' does not respect the 'rule:subclass' syntax"
            )
        return cls(parts[0], int(parts[1]))

    @property
    def is_rca(self) -> bool:
        return self.rule in RCA_RULES

    def __str__(self) -> str:
        return f"{self.rule}:{self.subclass}"


@dataclass(frozen=True)
class APSpec:
    """AP template of a building block."""

    ap_class: APClass | None
    dummy_atom: int | None = None
    anchor_atom: int | None = None
    direction: tuple[float, float, float] | None = None


@dataclass(frozen=True)
class BuildingBlock:
    """Read-only library entry from which vertices are instantiated."""

    bb_type: BBType
    bb_id: int
    name: str
    aps: tuple[APSpec, ...]
    smiles: str | None = None
    symmetric_aps: tuple[tuple[int, ...], ...] = ()
    mol: Any = field(default=None, compare=False, repr=False)

    @property
    def is_rca(self) -> bool:
        return self.bb_type == BBType.RCA


BlockResolver = Callable[[BBType, int], BuildingBlock]


class AttachmentPoint:
    def __init__(
        self,
        owner: Vertex,
        index: int,
        ap_class: APClass | None,
        anchor_atom: int | None = None,
        dummy_atom: int | None = None,
        direction: tuple[float, float, float] | None = None,
    ) -> None:
        self.owner = owner
        self.index = index
        self.ap_class = ap_class
        self.anchor_atom = anchor_atom
        self.dummy_atom = dummy_atom
        self.direction = direction
        self.user: Edge | None = None

    @property
    def vertex_id(self) -> int:
        return self.owner.vertex_id

    def is_available(self) -> bool:
        return self.user is None

    def linked_ap(self) -> AttachmentPoint | None:
        if self.user is None:
            return None
        return self.user.trg_ap if self.user.src_ap is self else self.user.src_ap

    def __repr__(self) -> str:
        state = "free" if self.user is None else "used"
        return f"AP({self.vertex_id}:{self.index} {self.ap_class} {state})"


class Vertex:
    def __init__(
        self,
        vertex_id: int,
        bb_type: BBType,
        bb_id: int = -1,
        block: BuildingBlock | None = None,
        level: int = 0,
    ) -> None:
        self.vertex_id = int(vertex_id)
        self.bb_type = bb_type
        self.bb_id = bb_id
        self.block = block
        self.level = level
        self.aps: list[AttachmentPoint] = []
        if block is not None:
            for i, spec in enumerate(block.aps):
                self.aps.append(
                    AttachmentPoint(
                        self, i, spec.ap_class, spec.anchor_atom, spec.dummy_atom, spec.direction
                    )
                )

    @classmethod
    def from_block(cls, vertex_id: int, block: BuildingBlock, level: int = 0) -> Vertex:
        return cls(vertex_id, block.bb_type, block.bb_id, block, level)

    @property
    def is_rca(self) -> bool:
        return self.bb_type == BBType.RCA

    def add_ap(self, ap_class: APClass | None = None) -> AttachmentPoint:
        ap = AttachmentPoint(self, len(self.aps), ap_class)
        self.aps.append(ap)
        return ap

    def get_ap(self, index: int) -> AttachmentPoint:
        try:
            return self.aps[index]
        except IndexError as e:
            raise GraphStructureError(
                f"Vertex {self.vertex_id} has no AP with index {index}"
            ) from e

    def free_aps(self) -> list[AttachmentPoint]:
        return [ap for ap in self.aps if ap.is_available()]

    def clone(self) -> Vertex:
        v = Vertex(self.vertex_id, self.bb_type, self.bb_id, None, self.level)
        v.block = self.block
        for ap in self.aps:
            v.aps.append(
                AttachmentPoint(v, ap.index, ap.ap_class, ap.anchor_atom, ap.dummy_atom, ap.direction)
            )
        return v

    def __repr__(self) -> str:
        return f"Vertex({self.vertex_id} {self.bb_type.value}#{self.bb_id} L{self.level})"


class Edge:
    def __init__(
        self, src_ap: AttachmentPoint, trg_ap: AttachmentPoint, bond_type: BondType = BondType.UNDEFINED
    ) -> None:
        if src_ap is trg_ap:
            raise GraphStructureError(f"Cannot bond {src_ap} to itself")
        for ap in (src_ap, trg_ap):
            if not ap.is_available():
                raise GraphStructureError(f"{ap} is already used by an edge")
        self.src_ap = src_ap
        self.trg_ap = trg_ap
        self.bond_type = bond_type
        src_ap.user = self
        trg_ap.user = self

    @property
    def src_vertex(self) -> Vertex:
        return self.src_ap.owner

    @property
    def trg_vertex(self) -> Vertex:
        return self.trg_ap.owner

    def release(self) -> None:
        self.src_ap.user = None
        self.trg_ap.user = None

    def __repr__(self) -> str:
        return (
            f"Edge({self.src_ap.vertex_id}_{self.src_ap.index}-"
            f"{self.trg_ap.vertex_id}_{self.trg_ap.index} {self.bond_type.value})"
        )


class Ring:
    """Closure between the two RCA vertices at the ends of a tree path."""

    def __init__(self, vertices: list[Vertex], bond_type: BondType = BondType.SINGLE) -> None:
        if len(vertices) < 3:
            raise GraphStructureError("A ring path needs at least three vertices")
        self.vertices = list(vertices)
        self.bond_type = bond_type

    @property
    def head(self) -> Vertex:
        return self.vertices[0]

    @property
    def tail(self) -> Vertex:
        return self.vertices[-1]

    def contains(self, vertex: Vertex) -> bool:
        return any(v is vertex for v in self.vertices)

    def key(self) -> tuple[int, int]:
        a, b = self.head.vertex_id, self.tail.vertex_id
        return (a, b) if a < b else (b, a)

    def __repr__(self) -> str:
        return f"Ring({[v.vertex_id for v in self.vertices]} {self.bond_type.value})"


class Graph:
    def __init__(self, graph_id: int = -1) -> None:
        self.graph_id = graph_id
        self.vertices: list[Vertex] = []
        self.edges: list[Edge] = []
        self.rings: list[Ring] = []
        self.symmetric_sets: list[set[int]] = []
        self._by_id: dict[int, Vertex] = {}

    # -- vertices and edges ---------------------------------------------------

    def add_vertex(self, vertex: Vertex) -> None:
        if vertex.vertex_id in self._by_id:
            raise GraphStructureError(
                f"Vertex ID {vertex.vertex_id} already present in graph {self.graph_id}"
            )
        self.vertices.append(vertex)
        self._by_id[vertex.vertex_id] = vertex

    def get_vertex(self, vertex_id: int) -> Vertex:
        try:
            return self._by_id[vertex_id]
        except KeyError as e:
            raise GraphStructureError(
                f"No vertex {vertex_id} in graph {self.graph_id}"
            ) from e

    def max_vertex_id(self) -> int:
        return max(self._by_id, default=-1)

    def add_edge(self, edge: Edge) -> None:
        for v in (edge.src_vertex, edge.trg_vertex):
            if self._by_id.get(v.vertex_id) is not v:
                edge.release()
                raise GraphStructureError(f"{v} is not part of graph {self.graph_id}")
        self.edges.append(edge)

    def append_vertex_on_ap(
        self,
        src_ap: AttachmentPoint,
        trg_ap: AttachmentPoint,
        bond_type: BondType = BondType.SINGLE,
    ) -> Edge:
        """Add the owner of ``trg_ap`` to the graph and bond it to ``src_ap``."""
        if self._by_id.get(src_ap.vertex_id) is not src_ap.owner:
            raise GraphStructureError(f"{src_ap} does not belong to graph {self.graph_id}")
        edge = Edge(src_ap, trg_ap, bond_type)
        try:
            self.add_vertex(trg_ap.owner)
        except GraphStructureError:
            edge.release()
            raise
        self.edges.append(edge)
        return edge

    def edges_of(self, vertex: Vertex) -> list[Edge]:
        return [e for e in self.edges if e.src_vertex is vertex or e.trg_vertex is vertex]

    def remove_vertex(self, vertex: Vertex) -> None:
        """Remove a vertex with its edges; rings through it are dropped."""
        if self._by_id.get(vertex.vertex_id) is not vertex:
            raise GraphStructureError(f"{vertex} is not part of graph {self.graph_id}")
        for e in self.edges_of(vertex):
            e.release()
            self.edges.remove(e)
        self.rings = [r for r in self.rings if not r.contains(vertex)]
        for ss in self.symmetric_sets:
            ss.discard(vertex.vertex_id)
        self.symmetric_sets = [ss for ss in self.symmetric_sets if len(ss) > 1]
        self.vertices.remove(vertex)
        del self._by_id[vertex.vertex_id]

    def free_aps(self) -> list[AttachmentPoint]:
        return [ap for v in self.vertices for ap in v.free_aps()]

    # -- symmetry ---------------------------------------------------------------

    def add_symmetric_set(self, vertex_ids: Iterable[int]) -> set[int]:
        """Register vertices as symmetric, merging with any overlapping set."""
        merged = set(vertex_ids)
        for vid in merged:
            self.get_vertex(vid)
        keep: list[set[int]] = []
        for ss in self.symmetric_sets:
            if ss & merged:
                merged |= ss
            else:
                keep.append(ss)
        keep.append(merged)
        self.symmetric_sets = keep
        return merged

    def symmetric_set_of(self, vertex_id: int) -> set[int] | None:
        for ss in self.symmetric_sets:
            if vertex_id in ss:
                return ss
        return None

    # -- rings ------------------------------------------------------------------

    def rca_vertices(self) -> list[Vertex]:
        return [v for v in self.vertices if v.is_rca]

    def vertices_in_rings(self) -> set[int]:
        return {v.vertex_id for r in self.rings for v in (r.head, r.tail)}

    def path_between(self, a: Vertex, b: Vertex) -> list[Vertex]:
        try:
            ids = nx.shortest_path(self.to_networkx(), a.vertex_id, b.vertex_id)
        except (nx.NetworkXNoPath, nx.NodeNotFound) as e:
            raise GraphStructureError(f"No path between {a} and {b}") from e
        return [self._by_id[i] for i in ids]

    def add_ring_between(self, a: Vertex, b: Vertex, bond_type: BondType = BondType.SINGLE) -> Ring:
        if not (a.is_rca and b.is_rca):
            raise GraphStructureError("Rings can only be closed between RCA vertices")
        used = self.vertices_in_rings()
        if a.vertex_id in used or b.vertex_id in used:
            raise GraphStructureError(f"RCA {a} or {b} already closes a ring")
        ring = Ring(self.path_between(a, b), bond_type)
        self.rings.append(ring)
        return ring

    # -- structure checks ---------------------------------------------------------

    def to_networkx(self) -> nx.Graph:
        g = nx.Graph()
        g.add_nodes_from(self._by_id)
        for e in self.edges:
            g.add_edge(e.src_ap.vertex_id, e.trg_ap.vertex_id)
        return g

    def validate(self) -> None:
        """Raise GraphStructureError unless the graph is a connected tree with exclusive APs."""
        seen: set[int] = set()
        for e in self.edges:
            for ap in (e.src_ap, e.trg_ap):
                if id(ap) in seen:
                    raise GraphStructureError(f"{ap} is referenced by two edges")
                seen.add(id(ap))
                if ap.user is not e:
                    raise GraphStructureError(f"{ap} does not point back to {e}")
                if self._by_id.get(ap.vertex_id) is not ap.owner:
                    raise GraphStructureError(f"{e} references a vertex outside the graph")
        if self.vertices and (
            len(self.edges) != len(self.vertices) - 1 or not nx.is_tree(self.to_networkx())
        ):
            raise GraphStructureError(f"Graph {self.graph_id} is not a connected tree")
        for r in self.rings:
            if not (r.head.is_rca and r.tail.is_rca):
                raise GraphStructureError(f"{r} does not end on RCA vertices")
            if [v.vertex_id for v in r.vertices] != [
                v.vertex_id for v in self.path_between(r.head, r.tail)
            ]:
                raise GraphStructureError(f"{r} does not follow the tree path")

    # -- copies and serialization -------------------------------------------------

    def clone(self, graph_id: int | None = None) -> Graph:
        """Deep value copy; building blocks are shared because they are read-only."""
        g = Graph(self.graph_id if graph_id is None else graph_id)
        for v in self.vertices:
            g.add_vertex(v.clone())
        for e in self.edges:
            src = g.get_vertex(e.src_ap.vertex_id).get_ap(e.src_ap.index)
            trg = g.get_vertex(e.trg_ap.vertex_id).get_ap(e.trg_ap.index)
            g.edges.append(Edge(src, trg, e.bond_type))
        for r in self.rings:
            g.rings.append(Ring([g.get_vertex(v.vertex_id) for v in r.vertices], r.bond_type))
        g.symmetric_sets = [set(ss) for ss in self.symmetric_sets]
        return g

    def to_dict(self) -> dict[str, Any]:
        return {
            "graph_id": self.graph_id,
            "vertices": [
                {"id": v.vertex_id, "bb_type": v.bb_type.value, "bb_id": v.bb_id, "level": v.level}
                for v in self.vertices
            ],
            "edges": [
                {
                    "src": [e.src_ap.vertex_id, e.src_ap.index],
                    "trg": [e.trg_ap.vertex_id, e.trg_ap.index],
                    "bond": e.bond_type.value,
                }
                for e in self.edges
            ],
            "rings": [
                {"vertices": [v.vertex_id for v in r.vertices], "bond": r.bond_type.value}
                for r in self.rings
            ],
            "symmetric_sets": [sorted(ss) for ss in self.symmetric_sets],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], resolve: BlockResolver) -> Graph:
        g = cls(int(data.get("graph_id", -1)))
        for vd in data.get("vertices", []):
            block = resolve(BBType(vd["bb_type"]), int(vd["bb_id"]))
            g.add_vertex(Vertex.from_block(int(vd["id"]), block, int(vd.get("level", 0))))
        for ed in data.get("edges", []):
            src = g.get_vertex(ed["src"][0]).get_ap(ed["src"][1])
            trg = g.get_vertex(ed["trg"][0]).get_ap(ed["trg"][1])
            g.edges.append(Edge(src, trg, BondType.parse(ed.get("bond", "UNDEFINED"))))
        for rd in data.get("rings", []):
            g.rings.append(
                Ring([g.get_vertex(i) for i in rd["vertices"]], BondType.parse(rd.get("bond", "1")))
            )
        g.symmetric_sets = [set(ss) for ss in data.get("symmetric_sets", [])]
        return g

    def __repr__(self) -> str:
        return (
            f"Graph(id={self.graph_id}, vertices={[v.vertex_id for v in self.vertices]}, "
            f"edges={self.edges}, rings={self.rings}, sym={self.symmetric_sets})"
        )
