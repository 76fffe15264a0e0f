from __future__ import annotations

import copy
from pathlib import Path

import pytest

from fragspace.config.models import DescriptorConfig, FitnessConfig, RingClosureConfig
from fragspace.graph.model import APClass, APSpec, BBType, BuildingBlock, Graph
from fragspace.library.space import FragmentSpace
from fragspace.utils.counters import RunContext

PARA_SCAFFOLD = {
    "name": "para-phenylene",
    "smiles": "[*:1]c1ccc([*:2])cc1",
    "ap_classes": ["A:0", "A:0"],
    "symmetric_aps": [[0, 1]],
}

SMALL_LIBRARY = {
    "scaffolds": [PARA_SCAFFOLD],
    "fragments": [
        {"name": "hydroxy", "smiles": "[*]O", "ap_classes": ["B:0"]},
        {"name": "amino", "smiles": "[*]N", "ap_classes": ["B:0"]},
    ],
}


def _classes(raw: dict[str, list[str]]) -> dict[APClass, set[APClass]]:
    return {APClass.parse(k): {APClass.parse(v) for v in vs} for k, vs in raw.items()}


@pytest.fixture
def make_space():
    """Factory: FragmentSpace from a library dict (needs RDKit for SMILES blocks)."""

    def _make(
        library: dict,
        compatibility: dict[str, list[str]] | None = None,
        capping: dict[str, str] | None = None,
        forbidden_ends: list[str] | None = None,
        enforce_symmetry: bool = False,
    ) -> FragmentSpace:
        from fragspace.library.space import parse_library

        return FragmentSpace(
            parse_library(library),
            compatibility=_classes(compatibility or {}),
            capping={APClass.parse(k): APClass.parse(v) for k, v in (capping or {}).items()},
            forbidden_ends={APClass.parse(c) for c in forbidden_ends or []},
            enforce_symmetry=enforce_symmetry,
        )

    return _make


@pytest.fixture
def small_library() -> dict:
    """Para-phenylene scaffold (symmetric APs, class A:0) with OH and NH2 fragments (B:0)."""
    return copy.deepcopy(SMALL_LIBRARY)


@pytest.fixture
def abstract_space() -> FragmentSpace:
    """Atom-less blocks: a two-AP symmetric scaffold and two one-AP fragments."""
    a, b = APClass("A", 0), APClass("B", 0)
    libs = {
        BBType.SCAFFOLD: [
            BuildingBlock(BBType.SCAFFOLD, 0, "s", (APSpec(a), APSpec(a)), symmetric_aps=((0, 1),))
        ],
        BBType.FRAGMENT: [
            BuildingBlock(BBType.FRAGMENT, 0, "f0", (APSpec(b),)),
            BuildingBlock(BBType.FRAGMENT, 1, "f1", (APSpec(b),)),
        ],
    }
    return FragmentSpace(libs, compatibility={a: {b}})


@pytest.fixture
def scaffold_root():
    def _root(space: FragmentSpace, bb_id: int = 0, graph_id: int = 0) -> Graph:
        g = Graph(graph_id)
        g.add_vertex(space.new_vertex(0, BBType.SCAFFOLD, bb_id, level=0))
        return g

    return _root


@pytest.fixture
def context() -> RunContext:
    return RunContext(seed=7)


@pytest.fixture
def hac_fitness() -> FitnessConfig:
    return FitnessConfig(
        expression="hac * 2",
        descriptors=[DescriptorConfig(name="hac", implementation="HeavyAtomCount")],
        align_3d=False,
    )


@pytest.fixture
def ring_cfg() -> RingClosureConfig:
    return RingClosureConfig()


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    d = tmp_path / "work"
    d.mkdir()
    return d
