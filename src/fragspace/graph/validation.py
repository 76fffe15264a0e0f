from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..chem import rdkit_utils as RU
from ..errors import AssemblyError, GraphStructureError
from .model import Graph

if TYPE_CHECKING:
    from ..assembly.three_dim import ThreeDimAssembler
    from ..config.models import Constraints
    from ..library.space import FragmentSpace

logger = logging.getLogger(__name__)


@dataclass
class GraphChemistry:
    """Chemical identity of an acceptable graph."""

    uid: str
    smiles: str
    mol: object


def describe_graph(graph: Graph, assembler: ThreeDimAssembler) -> GraphChemistry:
    """Assemble the graph and derive its UID (InChIKey) and canonical SMILES."""
    mol = assembler.assemble(graph).mol
    uid = RU.inchikey_of(mol)
    smiles = RU.smiles_of(mol)
    if uid is None or smiles is None:
        raise AssemblyError(f"Cannot compute an identifier for graph {graph.graph_id}")
    return GraphChemistry(uid=uid, smiles=smiles, mol=mol)


def needs_capping_groups(graph: Graph, space: FragmentSpace) -> bool:
    """True if some free AP must still be filled (capping rule or forbidden end)."""
    for v in graph.vertices:
        if v.is_rca:
            continue
        for ap in v.free_aps():
            if space.needs_capping(ap) or space.is_forbidden_end(ap.ap_class):
                return True
    return False


def forbidden_free_ends(graph: Graph, space: FragmentSpace, open_level: int | None = None):
    """Free APs with a forbidden-end class, ignoring vertices at ``open_level``."""
    return [
        ap
        for v in graph.vertices
        if not v.is_rca and v.level != open_level
        for ap in v.free_aps()
        if space.is_forbidden_end(ap.ap_class)
    ]


def check_graph_consistency(
    graph: Graph,
    space: FragmentSpace,
    constraints: Constraints | None,
    assembler: ThreeDimAssembler,
    open_level: int | None = None,
) -> GraphChemistry | None:
    """Return the chemistry of an acceptable graph, or None if it must be discarded.

    Vertices at ``open_level`` may still carry free forbidden ends: they are the
    ones whose APs the next level fills.
    """
    try:
        graph.validate()
    except GraphStructureError as e:
        logger.debug("Graph %s rejected: %s", graph.graph_id, e)
        return None
    bad = forbidden_free_ends(graph, space, open_level)
    if bad:
        logger.debug("Graph %s rejected: forbidden free ends %s", graph.graph_id, bad)
        return None
    try:
        chem = describe_graph(graph, assembler)
    except AssemblyError as e:
        logger.debug("Graph %s rejected: %s", graph.graph_id, e)
        return None
    if constraints is not None:
        report = RU.check_constraints(
            chem.mol,
            max_heavy_atoms=constraints.max_heavy_atoms,
            max_mw=constraints.max_mw,
            max_rotatable_bonds=constraints.max_rotatable_bonds,
            allowed_elements=set(constraints.allowed_elements)
            if constraints.allowed_elements
            else None,
        )
        if not report.ok:
            logger.debug("Graph %s rejected: %s", graph.graph_id, report.reason)
            return None
    return chem


def replace_unused_rcas_with_caps(graph: Graph, space: FragmentSpace) -> int:
    """Drop RCAs that close no ring, capping their parent AP when a rule exists.

    Returns the number of RCA vertices removed.
    """
    in_rings = graph.vertices_in_rings()
    removed = 0
    for rca in list(graph.rca_vertices()):
        if rca.vertex_id in in_rings:
            continue
        parent = rca.aps[0].linked_ap()
        graph.remove_vertex(rca)
        removed += 1
        if parent is None:
            continue
        cap = space.cap_for(parent.ap_class)
        if cap is None:
            continue
        block, ap_idx = cap
        vertex = space.new_vertex(graph.max_vertex_id() + 1, block.bb_type, block.bb_id, rca.level)
        graph.append_vertex_on_ap(
            parent, vertex.get_ap(ap_idx), space.bond_type_for(parent.ap_class)
        )
    return removed
