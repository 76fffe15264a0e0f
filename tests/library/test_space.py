from __future__ import annotations

import pytest

from fragspace.errors import ConfigurationError
from fragspace.graph.model import APClass, BBType, BondType
from fragspace.library.space import (
    FragmentSpace,
    block_from_smiles,
    load_library,
    parse_library,
    ring_closer_block,
)

rdkit = pytest.importorskip("rdkit")


def test_block_aps_follow_map_numbers() -> None:
    block = block_from_smiles("[*:2]CC(=O)[*:1]", BBType.FRAGMENT, 3, ["X:1", "Y:2"])
    first, second = block.aps
    assert first.ap_class == APClass("X", 1)
    assert block.mol.GetAtomWithIdx(first.dummy_atom).GetAtomMapNum() == 1
    assert block.mol.GetAtomWithIdx(second.dummy_atom).GetAtomMapNum() == 2
    assert first.anchor_atom == 2 and second.anchor_atom == 1
    dx, dy, dz = first.direction
    assert dz == 0.0
    assert dx * dx + dy * dy == pytest.approx(1.0)


def test_block_ap_count_must_match_classes() -> None:
    with pytest.raises(ConfigurationError):
        block_from_smiles("[*]CC[*]", BBType.FRAGMENT, 0, ["A:0"])
    with pytest.raises(ConfigurationError):
        block_from_smiles("not a smiles", BBType.FRAGMENT, 0, [])


def test_ring_closer_needs_rca_rule() -> None:
    rca = ring_closer_block(0, "ATneutral:0")
    assert rca.is_rca and len(rca.aps) == 1
    with pytest.raises(ConfigurationError):
        ring_closer_block(1, "C:0")


def test_library_needs_a_scaffold() -> None:
    with pytest.raises(ConfigurationError):
        parse_library({"fragments": [{"smiles": "[*]O", "ap_classes": ["B:0"]}]})


def test_load_library_from_yaml(tmp_path) -> None:
    path = tmp_path / "lib.yaml"
    path.write_text(
        "scaffolds:\n"
        "  - smiles: '[*]c1ccccc1'\n"
        "    ap_classes: ['A:0']\n"
        "ring_closers:\n"
        "  - ap_class: 'ATplus:0'\n",
        encoding="utf-8",
    )
    libs = load_library(path)
    assert len(libs[BBType.SCAFFOLD]) == 1
    assert libs[BBType.RCA][0].aps[0].ap_class == APClass("ATplus", 0)


def test_compatible_targets_and_capping(make_space) -> None:
    library = {
        "scaffolds": [{"smiles": "[*]c1ccccc1", "ap_classes": ["A:0"]}],
        "fragments": [
            {"smiles": "[*]O", "ap_classes": ["B:0"]},
            {"smiles": "[*:1]CC[*:2]", "ap_classes": ["B:0", "D:0"]},
        ],
        "capping_groups": [{"smiles": "[*]C", "ap_classes": ["cap:0"]}],
        "ring_closers": [{"ap_class": "ATplus:0"}],
    }
    space = make_space(
        library,
        compatibility={"A:0": ["B:0", "cap:0", "ATplus:0"]},
        capping={"D:0": "cap:0"},
    )
    assert space.compatible_targets(APClass("A", 0)) == [
        (BBType.FRAGMENT, 0, 0),
        (BBType.FRAGMENT, 1, 0),
        (BBType.CAP, 0, 0),
        (BBType.RCA, 0, 0),
    ]
    block, idx = space.cap_for(APClass("D", 0))
    assert block.bb_type == BBType.CAP and idx == 0
    assert space.cap_for(APClass("B", 0)) is None
    assert space.bond_type_for(APClass("A", 0)) == BondType.SINGLE


def test_capping_rule_needs_capping_group(make_space) -> None:
    library = {"scaffolds": [{"smiles": "[*]c1ccccc1", "ap_classes": ["A:0"]}]}
    with pytest.raises(ConfigurationError):
        make_space(library, capping={"A:0": "cap:0"})


def test_rca_pairing_rules() -> None:
    plus, minus, neutral = APClass("ATplus", 0), APClass("ATminus", 0), APClass("ATneutral", 0)
    assert FragmentSpace.rca_pairable(plus, minus)
    assert FragmentSpace.rca_pairable(neutral, neutral)
    assert not FragmentSpace.rca_pairable(plus, plus)
    assert not FragmentSpace.rca_pairable(plus, neutral)
