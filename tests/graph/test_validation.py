from __future__ import annotations

import pytest

from fragspace.assembly.three_dim import ThreeDimAssembler
from fragspace.config.models import Constraints
from fragspace.graph.model import BBType, Graph
from fragspace.graph.validation import (
    check_graph_consistency,
    needs_capping_groups,
    replace_unused_rcas_with_caps,
)

rdkit = pytest.importorskip("rdkit")


def _phenol(space) -> Graph:
    g = Graph(3)
    core = space.new_vertex(0, BBType.SCAFFOLD, 0)
    g.add_vertex(core)
    g.append_vertex_on_ap(core.get_ap(0), space.new_vertex(1, BBType.FRAGMENT, 0, level=1).get_ap(0))
    return g


def test_acceptable_graph_gets_identity(make_space, small_library) -> None:
    space = make_space(small_library, compatibility={"A:0": ["B:0"]})
    chem = check_graph_consistency(_phenol(space), space, Constraints(), ThreeDimAssembler())
    assert chem is not None
    assert chem.smiles == "Oc1ccccc1"
    assert len(chem.uid) == 27


@pytest.mark.parametrize(
    "constraints",
    [
        Constraints(max_heavy_atoms=6),
        Constraints(max_mw=90.0),
        Constraints(allowed_elements=["C", "N"]),
    ],
)
def test_constraints_reject(make_space, small_library, constraints) -> None:
    space = make_space(small_library, compatibility={"A:0": ["B:0"]})
    assert check_graph_consistency(_phenol(space), space, constraints, ThreeDimAssembler()) is None


def test_forbidden_end_tolerated_only_on_open_level(make_space, small_library) -> None:
    space = make_space(small_library, compatibility={"A:0": ["B:0"]}, forbidden_ends=["A:0"])
    graph = _phenol(space)
    assembler = ThreeDimAssembler()
    assert check_graph_consistency(graph, space, None, assembler, open_level=1) is None
    assert check_graph_consistency(graph, space, None, assembler, open_level=0) is not None
    assert needs_capping_groups(graph, space)


def _capping_space(make_space, with_rule: bool):
    library = {
        "scaffolds": [{"smiles": "[*:1]CC[*:2]", "ap_classes": ["A:0", "D:0"]}],
        "capping_groups": [{"smiles": "[*]Cl", "ap_classes": ["cap:0"]}],
        "ring_closers": [{"ap_class": "ATplus:0"}],
    }
    return make_space(library, capping={"D:0": "cap:0"} if with_rule else None)


def test_needs_capping_groups(make_space) -> None:
    space = _capping_space(make_space, with_rule=True)
    g = Graph(0)
    g.add_vertex(space.new_vertex(0, BBType.SCAFFOLD, 0))
    assert needs_capping_groups(g, space)
    assert not needs_capping_groups(g, _capping_space(make_space, with_rule=False))


@pytest.mark.parametrize("with_rule", [True, False])
def test_unused_rcas_are_capped_or_removed(make_space, with_rule) -> None:
    space = _capping_space(make_space, with_rule)
    g = Graph(0)
    core = space.new_vertex(0, BBType.SCAFFOLD, 0)
    g.add_vertex(core)
    g.append_vertex_on_ap(core.get_ap(1), space.new_vertex(1, BBType.RCA, 0, level=1).get_ap(0))

    assert replace_unused_rcas_with_caps(g, space) == 1
    assert g.rca_vertices() == []
    g.validate()
    if with_rule:
        (cap,) = [v for v in g.vertices if v.bb_type == BBType.CAP]
        assert cap.level == 1
        assert not core.get_ap(1).is_available()
    else:
        assert len(g.vertices) == 1
        assert core.get_ap(1).is_available()
