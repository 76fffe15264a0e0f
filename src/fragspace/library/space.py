"""Building-block libraries and the rules that say how blocks may bond."""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Any

from ..chem import rdkit_utils as RU
from ..errors import ConfigurationError
from ..graph.model import (
    RCA_MINUS,
    RCA_NEUTRAL,
    RCA_PLUS,
    RCA_RULES,
    APClass,
    APSpec,
    AttachmentPoint,
    BBType,
    BondType,
    BuildingBlock,
    Vertex,
)
from ..utils.io import load_mapping

logger = logging.getLogger(__name__)

_LIBRARY_KEYS = {
    "scaffolds": BBType.SCAFFOLD,
    "fragments": BBType.FRAGMENT,
    "capping_groups": BBType.CAP,
    "ring_closers": BBType.RCA,
}

# Target of a bond: (block type, block index, AP index on that block)
TargetAP = tuple[BBType, int, int]


def block_from_smiles(
    smiles: str,
    bb_type: BBType,
    bb_id: int,
    ap_classes: list[str],
    name: str | None = None,
    symmetric_aps: list[list[int]] | None = None,
) -> BuildingBlock:
    """Parse a SMILES whose dummy atoms ('*') mark the attachment points.

    APs are ordered by atom-map number when the dummies are mapped, else by atom index.
    """
    from rdkit.Chem import AllChem

    mol = RU.mol_from_smiles(smiles)
    if mol is None:
        raise ConfigurationError(f"Invalid SMILES for building block {name or bb_id}: {smiles}")
    dummies = [a for a in mol.GetAtoms() if a.GetAtomicNum() == 0]
    for a in dummies:
        if a.GetDegree() != 1:
            raise ConfigurationError(
                f"Dummy atom {a.GetIdx()} of {smiles} must have exactly one neighbour"
            )
    if any(a.GetAtomMapNum() for a in dummies):
        dummies.sort(key=lambda a: (a.GetAtomMapNum(), a.GetIdx()))
    if len(ap_classes) != len(dummies):
        raise ConfigurationError(
            f"Building block {name or smiles} has {len(dummies)} APs but "
            f"{len(ap_classes)} AP classes"
        )
    depiction = AllChem.Compute2DCoords(mol)
    conf = mol.GetConformer(depiction)
    specs: list[APSpec] = []
    for atom, apc in zip(dummies, ap_classes, strict=True):
        anchor = atom.GetNeighbors()[0].GetIdx()
        d = conf.GetAtomPosition(atom.GetIdx()) - conf.GetAtomPosition(anchor)
        norm = math.sqrt(d.x**2 + d.y**2 + d.z**2) or 1.0
        specs.append(
            APSpec(
                ap_class=APClass.parse(apc),
                dummy_atom=atom.GetIdx(),
                anchor_atom=anchor,
                direction=(d.x / norm, d.y / norm, d.z / norm),
            )
        )
    return BuildingBlock(
        bb_type=bb_type,
        bb_id=bb_id,
        name=name or smiles,
        aps=tuple(specs),
        smiles=smiles,
        symmetric_aps=_symmetric_groups(symmetric_aps, len(specs), name or smiles),
        mol=mol,
    )


def ring_closer_block(bb_id: int, ap_class: str, name: str | None = None) -> BuildingBlock:
    apc = APClass.parse(ap_class)
    if apc.rule not in RCA_RULES:
        raise ConfigurationError(
            f"Ring-closing attractor '{name or bb_id}' needs an AP rule among {RCA_RULES}"
        )
    return BuildingBlock(
        bb_type=BBType.RCA, bb_id=bb_id, name=name or str(apc), aps=(APSpec(ap_class=apc),)
    )


def _symmetric_groups(
    groups: list[list[int]] | None, n_aps: int, name: str
) -> tuple[tuple[int, ...], ...]:
    out: list[tuple[int, ...]] = []
    for g in groups or []:
        if any(i < 0 or i >= n_aps for i in g):
            raise ConfigurationError(f"Symmetric AP group {g} of {name} is out of range")
        if len(g) > 1:
            out.append(tuple(sorted(set(g))))
    return tuple(out)


def load_library(path: str | Path) -> dict[BBType, list[BuildingBlock]]:
    return parse_library(load_mapping(path, "Building-block library"))


def parse_library(data: dict[str, Any]) -> dict[BBType, list[BuildingBlock]]:
    libs: dict[BBType, list[BuildingBlock]] = {t: [] for t in _LIBRARY_KEYS.values()}
    for key, bb_type in _LIBRARY_KEYS.items():
        for i, entry in enumerate(data.get(key) or []):
            name = entry.get("name")
            if bb_type == BBType.RCA:
                classes = entry.get("ap_classes") or [entry.get("ap_class")]
                if len(classes) != 1 or classes[0] is None:
                    raise ConfigurationError(f"Ring closer {name or i} needs exactly one AP class")
                libs[bb_type].append(ring_closer_block(i, classes[0], name))
                continue
            if "smiles" not in entry:
                raise ConfigurationError(f"Entry {name or i} of '{key}' has no SMILES")
            libs[bb_type].append(
                block_from_smiles(
                    entry["smiles"],
                    bb_type,
                    i,
                    list(entry.get("ap_classes") or []),
                    name=name,
                    symmetric_aps=entry.get("symmetric_aps"),
                )
            )
    if not libs[BBType.SCAFFOLD]:
        raise ConfigurationError("No scaffold in the building-block library")
    return libs


def _class_map(raw: dict[str, list[str]]) -> dict[APClass, set[APClass]]:
    return {APClass.parse(k): {APClass.parse(v) for v in vals} for k, vals in raw.items()}


class FragmentSpace:
    """Read-only library of building blocks plus compatibility and capping rules.

    Safe for concurrent reads; nothing mutates it once a run starts.
    """

    def __init__(
        self,
        libraries: dict[BBType, list[BuildingBlock]],
        compatibility: dict[APClass, set[APClass]] | None = None,
        rc_compatibility: dict[APClass, set[APClass]] | None = None,
        capping: dict[APClass, APClass] | None = None,
        bond_types: dict[str, BondType] | None = None,
        forbidden_ends: set[APClass] | None = None,
        enforce_symmetry: bool = False,
    ) -> None:
        self.libraries = {t: list(libraries.get(t, [])) for t in _LIBRARY_KEYS.values()}
        self.compatibility = compatibility or {}
        self.rc_compatibility = rc_compatibility or {}
        self.capping = capping or {}
        self.bond_types = bond_types or {}
        self.forbidden_ends = forbidden_ends or set()
        self.enforce_symmetry = enforce_symmetry
        self._targets_cache: dict[APClass | None, list[TargetAP]] = {}
        self._check_capping()

    @classmethod
    def from_config(cls, cfg, base_dir: str | Path | None = None) -> FragmentSpace:
        """Build from a FragmentSpaceConfig; the library path is relative to base_dir."""
        lib_path = Path(cfg.library)
        if base_dir is not None and not lib_path.is_absolute():
            lib_path = Path(base_dir) / lib_path
        return cls(
            load_library(lib_path),
            compatibility=_class_map(cfg.compatibility),
            rc_compatibility=_class_map(cfg.ring_closure_compatibility),
            capping={APClass.parse(k): APClass.parse(v) for k, v in cfg.capping.items()},
            bond_types={k: BondType.parse(v) for k, v in cfg.bond_types.items()},
            forbidden_ends={APClass.parse(c) for c in cfg.forbidden_ends},
            enforce_symmetry=cfg.enforce_symmetry,
        )

    def _check_capping(self) -> None:
        for src, cap_class in self.capping.items():
            if self.cap_for(src) is None:
                raise ConfigurationError(
                    f"No capping group with AP class {cap_class} (required for {src})"
                )

    @property
    def use_ap_class_approach(self) -> bool:
        return bool(self.compatibility)

    def blocks(self, bb_type: BBType) -> list[BuildingBlock]:
        return self.libraries.get(bb_type, [])

    def get_block(self, bb_type: BBType, bb_id: int) -> BuildingBlock:
        lib = self.libraries.get(bb_type)
        if lib is None or not 0 <= bb_id < len(lib):
            raise ConfigurationError(f"No building block {bb_type.value}#{bb_id} in the library")
        return lib[bb_id]

    def new_vertex(self, vertex_id: int, bb_type: BBType, bb_id: int, level: int = 0) -> Vertex:
        return Vertex.from_block(vertex_id, self.get_block(bb_type, bb_id), level)

    def is_compatible(self, src: APClass | None, trg: APClass | None) -> bool:
        if not self.use_ap_class_approach:
            return True
        if src is None or trg is None:
            return False
        return trg in self.compatibility.get(src, set())

    def compatible_targets(self, src: APClass | None) -> list[TargetAP]:
        """All (type, block, AP) a source AP of class ``src`` may bond to, in library order."""
        cached = self._targets_cache.get(src)
        if cached is not None:
            return cached
        targets: list[TargetAP] = []
        for bb_type in (BBType.FRAGMENT, BBType.CAP, BBType.RCA):
            if bb_type == BBType.CAP and not self.use_ap_class_approach:
                continue
            for block in self.blocks(bb_type):
                for i, spec in enumerate(block.aps):
                    if self.is_compatible(src, spec.ap_class):
                        targets.append((bb_type, block.bb_id, i))
        self._targets_cache[src] = targets
        return targets

    def bond_type_for(self, ap_class: APClass | None) -> BondType:
        if ap_class is None:
            return BondType.SINGLE
        return self.bond_types.get(ap_class.rule, BondType.SINGLE)

    def cap_for(self, ap_class: APClass | None) -> tuple[BuildingBlock, int] | None:
        cap_class = self.capping.get(ap_class) if ap_class is not None else None
        if cap_class is None:
            return None
        for block in self.blocks(BBType.CAP):
            for i, spec in enumerate(block.aps):
                if spec.ap_class == cap_class:
                    return block, i
        return None

    def needs_capping(self, ap: AttachmentPoint) -> bool:
        return ap.is_available() and ap.ap_class in self.capping

    def is_forbidden_end(self, ap_class: APClass | None) -> bool:
        return ap_class is not None and ap_class in self.forbidden_ends

    def rc_compatible(self, a: APClass | None, b: APClass | None) -> bool:
        if not self.rc_compatibility:
            return True
        if a is None or b is None:
            return False
        return b in self.rc_compatibility.get(a, set()) or a in self.rc_compatibility.get(b, set())

    @staticmethod
    def rca_pairable(a: APClass | None, b: APClass | None) -> bool:
        if a is None or b is None:
            return False
        pair = {a.rule, b.rule}
        return pair == {RCA_PLUS, RCA_MINUS} or (a.rule == b.rule == RCA_NEUTRAL)
