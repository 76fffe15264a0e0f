"""Cyclic alternatives: which ring closures between RCA vertices are realized."""

from __future__ import annotations

import itertools
import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING

from ..chem import rdkit_utils as RU
from .model import Graph, Vertex
from .validation import replace_unused_rcas_with_caps

if TYPE_CHECKING:
    from ..assembly.three_dim import ThreeDimAssembler
    from ..config.models import RingClosureConfig
    from ..library.space import FragmentSpace
    from ..utils.counters import RunContext

logger = logging.getLogger(__name__)

RcaPair = tuple[Vertex, Vertex]


def ring_closure_candidates(
    graph: Graph,
    space: FragmentSpace,
    ring_cfg: RingClosureConfig,
    assembler: ThreeDimAssembler,
) -> list[RcaPair]:
    """Pairs of free RCA vertices that may be joined into a ring of acceptable size."""
    RU._require_rdkit()
    from rdkit import Chem

    used = graph.vertices_in_rings()
    rcas = [v for v in graph.rca_vertices() if v.vertex_id not in used]
    if len(rcas) < 2:
        return []
    assembled = assembler.assemble(graph)
    dist = Chem.GetDistanceMatrix(assembled.mol)
    pairs: list[RcaPair] = []
    for a, b in itertools.combinations(rcas, 2):
        pa, pb = a.aps[0].linked_ap(), b.aps[0].linked_ap()
        if pa is None or pb is None:
            continue
        if not space.rca_pairable(a.aps[0].ap_class, b.aps[0].ap_class):
            continue
        if not space.rc_compatible(pa.ap_class, pb.ap_class):
            continue
        ia = assembled.anchors[(pa.vertex_id, pa.index)]
        ib = assembled.anchors[(pb.vertex_id, pb.index)]
        if ia == ib:
            continue
        ring_size = int(dist[ia][ib]) + 1
        if ring_cfg.min_ring_size <= ring_size <= ring_cfg.max_ring_size:
            pairs.append((a, b))
    return pairs


def _disjoint_subsets(pairs: list[RcaPair]) -> Iterator[tuple[RcaPair, ...]]:
    for r in range(1, len(pairs) + 1):
        for subset in itertools.combinations(pairs, r):
            ids = [v.vertex_id for pair in subset for v in pair]
            if len(ids) == len(set(ids)):
                yield subset


def make_graphs_with_different_ring_sets(
    graph: Graph,
    space: FragmentSpace,
    ring_cfg: RingClosureConfig,
    assembler: ThreeDimAssembler,
    context: RunContext,
) -> list[Graph]:
    """One clone per non-empty set of compatible, vertex-disjoint ring closures.

    Each clone gets a fresh graph ID and its unused RCAs replaced by caps (or
    removed). An empty list means no ring can be closed.
    """
    if not ring_cfg.enabled:
        return []
    pairs = ring_closure_candidates(graph, space, ring_cfg, assembler)
    if not pairs:
        return []
    subsets = _disjoint_subsets(pairs)
    if ring_cfg.max_alternatives is not None:
        subsets = itertools.islice(subsets, ring_cfg.max_alternatives)
    alternatives: list[Graph] = []
    for subset in subsets:
        alt = graph.clone(graph_id=context.graph_ids.next())
        for a, b in subset:
            parent = a.aps[0].linked_ap()
            alt.add_ring_between(
                alt.get_vertex(a.vertex_id),
                alt.get_vertex(b.vertex_id),
                space.bond_type_for(parent.ap_class if parent is not None else None),
            )
        replace_unused_rcas_with_caps(alt, space)
        alternatives.append(alt)
    logger.debug(
        "Graph %s: %d ring-closure candidates, %d alternatives",
        graph.graph_id,
        len(pairs),
        len(alternatives),
    )
    return alternatives
