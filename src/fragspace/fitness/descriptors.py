"""Descriptor variants used by the internal fitness provider.

Each descriptor kind carries its own way of turning a molecule into variable
values:

- ``MOLECULAR``: one value per molecule, named after the descriptor;
- ``ATOMIC``: per-atom values, picked on the atoms matched by each variable's SMARTS;
- ``BOND``: per-bond values on two-atom SMARTS hits;
- ``PAIR``: declared but not supported.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar

from ..chem import rdkit_utils as RU
from ..errors import ConfigurationError, DescriptorError, UnsupportedDescriptorError

logger = logging.getLogger(__name__)


class DescriptorKind(str, Enum):
    MOLECULAR = "molecular"
    ATOMIC = "atomic"
    BOND = "bond"
    PAIR = "pair"


@dataclass(frozen=True)
class Implementation:
    name: str
    kind: DescriptorKind
    func: Callable[..., Any]


# -- implementations ---------------------------------------------------------


def _tanimoto_similarity(mol, reference: str = "", radius: int = 2, n_bits: int = 2048) -> float:
    from rdkit import DataStructs
    from rdkit.Chem import rdFingerprintGenerator

    ref = RU.mol_from_smiles(str(reference))
    if ref is None:
        raise DescriptorError(f"Invalid reference SMILES for TanimotoSimilarity: '{reference}'")
    gen = rdFingerprintGenerator.GetMorganGenerator(radius=int(radius), fpSize=int(n_bits))
    return DataStructs.TanimotoSimilarity(gen.GetFingerprint(mol), gen.GetFingerprint(ref))


def _gasteiger_charges(mol) -> list[float]:
    from rdkit import Chem
    from rdkit.Chem import AllChem

    m = Chem.Mol(mol)
    AllChem.ComputeGasteigerCharges(m)
    return [a.GetDoubleProp("_GasteigerCharge") for a in m.GetAtoms()]


def _crippen_logp(mol) -> list[float]:
    return [c[0] for c in RU.rdMolDescriptors._CalcCrippenContribs(mol)]


def _bond_length(mol, bond) -> float:
    from rdkit.Chem import rdMolTransforms

    if mol.GetNumConformers() == 0:
        raise DescriptorError("BondLength needs atom coordinates")
    return rdMolTransforms.GetBondLength(
        mol.GetConformer(), bond.GetBeginAtomIdx(), bond.GetEndAtomIdx()
    )


def _unsupported_pair(mol, a: int, b: int) -> float:
    raise UnsupportedDescriptorError("Atom-pair descriptors are not supported")


def _registry() -> dict[str, Implementation]:
    RU._require_rdkit()
    reg: dict[str, Implementation] = {}
    for name, fn in RU.Descriptors.descList:
        reg[name] = Implementation(name, DescriptorKind.MOLECULAR, fn)
    reg["MQNs"] = Implementation("MQNs", DescriptorKind.MOLECULAR, RU.rdMolDescriptors.MQNs_)
    reg["TanimotoSimilarity"] = Implementation(
        "TanimotoSimilarity", DescriptorKind.MOLECULAR, _tanimoto_similarity
    )
    atomic: dict[str, Callable[..., list[float]]] = {
        "GasteigerCharge": _gasteiger_charges,
        "AtomicMass": lambda mol: [a.GetMass() for a in mol.GetAtoms()],
        "Degree": lambda mol: [float(a.GetDegree()) for a in mol.GetAtoms()],
        "CrippenLogPContribution": _crippen_logp,
    }
    for name, fn in atomic.items():
        reg[name] = Implementation(name, DescriptorKind.ATOMIC, fn)
    bond: dict[str, Callable[..., float]] = {
        "BondOrder": lambda mol, bond: bond.GetBondTypeAsDouble(),
        "BondLength": _bond_length,
        "IsInRing": lambda mol, bond: float(bond.IsInRing()),
    }
    for name, fn in bond.items():
        reg[name] = Implementation(name, DescriptorKind.BOND, fn)
    reg["AtomPairDistance"] = Implementation(
        "AtomPairDistance", DescriptorKind.PAIR, _unsupported_pair
    )
    return reg


_REGISTRY: dict[str, Implementation] | None = None


def registry() -> dict[str, Implementation]:
    global _REGISTRY
    if _REGISTRY is None:
        _REGISTRY = _registry()
    return _REGISTRY


# -- variants ----------------------------------------------------------------


class Descriptor(ABC):
    kind: ClassVar[DescriptorKind]

    def __init__(
        self,
        name: str,
        impl: Implementation,
        variables: dict[str, str] | None = None,
        result_index: int = 0,
        params: dict[str, Any] | None = None,
    ) -> None:
        self.name = name
        self.impl = impl
        self.variables = dict(variables or {})
        self.result_index = result_index
        self.params = dict(params or {})

    @abstractmethod
    def compute(self, mol) -> dict[str, list[float]]:
        """Values per variable name. Variables without a SMARTS hit are absent."""

    def _call(self, *args) -> Any:
        try:
            value = self.impl.func(*args, **self.params)
        except (DescriptorError, UnsupportedDescriptorError):
            raise
        except Exception as e:
            raise DescriptorError(f"Descriptor {self.name} ({self.impl.name}) failed: {e}") from e
        if value is None:
            raise DescriptorError(f"Descriptor {self.name} ({self.impl.name}) gave no result")
        return value

    def _matches(self, mol) -> dict[str, list[list[int]]]:
        try:
            return RU.find_smarts_matches(mol, self.variables)
        except RU.SmartsQueryProblem as e:
            raise DescriptorError(f"Descriptor {self.name}: {e}") from e

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name}={self.impl.name})"


class MolecularDescriptor(Descriptor):
    kind = DescriptorKind.MOLECULAR

    def compute(self, mol) -> dict[str, list[float]]:
        value = self._call(mol)
        if isinstance(value, Sequence) and not isinstance(value, str):
            if self.result_index >= len(value):
                raise DescriptorError(
                    f"Descriptor {self.name}: result index {self.result_index} out of range "
                    f"(size {len(value)})"
                )
            value = value[self.result_index]
        return {self.name: [float(value)]}


class AtomicDescriptor(Descriptor):
    kind = DescriptorKind.ATOMIC

    def compute(self, mol) -> dict[str, list[float]]:
        per_atom = self._call(mol)
        out: dict[str, list[float]] = {}
        for var, hits in self._matches(mol).items():
            if len(hits) > 1:
                logger.warning(
                    "Multiple hits for SMARTS of '%s': values will be averaged", var
                )
            values: list[float] = []
            for hit in hits:
                if len(hit) > 1:
                    logger.warning(
                        "Multiple atoms matched by SMARTS of '%s': values will be averaged", var
                    )
                values.extend(float(per_atom[i]) for i in hit)
            out[var] = values
        return out


class BondDescriptor(Descriptor):
    kind = DescriptorKind.BOND

    def compute(self, mol) -> dict[str, list[float]]:
        out: dict[str, list[float]] = {}
        for var, hits in self._matches(mol).items():
            if len(hits) > 1:
                logger.warning(
                    "Multiple hits for SMARTS of '%s': values will be averaged", var
                )
            values: list[float] = []
            for hit in hits:
                if len(hit) != 2:
                    raise DescriptorError(
                        f"SMARTS of '{var}' must match exactly two atoms, got {len(hit)}"
                    )
                bond = mol.GetBondBetweenAtoms(hit[0], hit[1])
                if bond is None:
                    raise DescriptorError(f"Atoms {hit} matched by '{var}' are not bonded")
                values.append(float(self._call(mol, bond)))
            out[var] = values
        return out


class PairDescriptor(Descriptor):
    kind = DescriptorKind.PAIR

    def compute(self, mol) -> dict[str, list[float]]:
        raise UnsupportedDescriptorError(
            f"Descriptor {self.name}: {self.impl.name} is an atom-pair descriptor, "
            "which is not supported"
        )


_VARIANTS: dict[DescriptorKind, type[Descriptor]] = {
    DescriptorKind.MOLECULAR: MolecularDescriptor,
    DescriptorKind.ATOMIC: AtomicDescriptor,
    DescriptorKind.BOND: BondDescriptor,
    DescriptorKind.PAIR: PairDescriptor,
}


def build_descriptor(cfg) -> Descriptor:
    """Instantiate the variant matching a DescriptorConfig's implementation."""
    impl = registry().get(cfg.implementation)
    if impl is None:
        raise ConfigurationError(f"Unknown descriptor implementation '{cfg.implementation}'")
    variables = {v.name: v.smarts for v in cfg.variables}
    if impl.kind == DescriptorKind.MOLECULAR and variables:
        raise ConfigurationError(
            f"Descriptor {cfg.name}: molecular descriptors take no SMARTS variables"
        )
    if impl.kind in (DescriptorKind.ATOMIC, DescriptorKind.BOND) and not variables:
        raise ConfigurationError(
            f"Descriptor {cfg.name}: {impl.kind.value} descriptors need SMARTS variables"
        )
    return _VARIANTS[impl.kind](
        cfg.name, impl, variables, result_index=cfg.result_index, params=cfg.params
    )
