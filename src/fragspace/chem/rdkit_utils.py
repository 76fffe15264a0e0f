from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

try:  # optional dependency
    from rdkit import Chem
    from rdkit.Chem import Descriptors, Draw, rdMolDescriptors
    from rdkit.Chem import inchi as rd_inchi

    RDKIT_AVAILABLE = True
except Exception:  # pragma: no cover - import guard
    Chem = None  # type: ignore[assignment]
    rd_inchi = None  # type: ignore[assignment]
    Descriptors = rdMolDescriptors = Draw = None  # type: ignore[assignment]
    RDKIT_AVAILABLE = False


class RDKitNotAvailable(RuntimeError):
    pass


def _require_rdkit() -> None:
    if not RDKIT_AVAILABLE:
        raise RDKitNotAvailable("rdkit not installed. Install 'rdkit' to enable chem features.")


def mol_from_smiles(smiles: str, sanitize: bool = True):
    _require_rdkit()
    if sanitize:
        mol = Chem.MolFromSmiles(smiles)
    else:
        mol = Chem.MolFromSmiles(smiles, sanitize=False)
    return mol


def smiles_of(mol) -> str | None:
    _require_rdkit()
    try:
        return Chem.MolToSmiles(Chem.RemoveHs(mol), canonical=True)
    except Exception:
        return None


def inchikey_of(mol) -> str | None:
    _require_rdkit()
    try:
        key = rd_inchi.MolToInchiKey(mol)
    except Exception:
        return None
    return key or None


def placeholder_mol():
    """Single-hydrogen molecule used where an unreadable structure must be replaced."""
    _require_rdkit()
    mol = Chem.MolFromSmiles("[H]", sanitize=False)
    mol.UpdatePropertyCache(strict=False)
    return mol


@dataclass
class ConstraintReport:
    heavy_atoms: int
    mw: float
    rot_bonds: int
    ok: bool
    reason: str | None = None


def check_constraints(
    mol,
    max_heavy_atoms: int | None = None,
    max_mw: float | None = None,
    max_rotatable_bonds: int | None = None,
    allowed_elements: set[str] | None = None,
) -> ConstraintReport:
    """Check structural constraints on an assembled molecule."""
    _require_rdkit()
    heavy = mol.GetNumHeavyAtoms()
    mw = float(Descriptors.MolWt(mol))
    rot = int(rdMolDescriptors.CalcNumRotatableBonds(mol))
    reason = None
    if max_heavy_atoms is not None and heavy > max_heavy_atoms:
        reason = f"heavy atoms {heavy} > {max_heavy_atoms}"
    elif max_mw is not None and mw > max_mw:
        reason = f"MW {mw:.2f} > {max_mw}"
    elif max_rotatable_bonds is not None and rot > max_rotatable_bonds:
        reason = f"rotatable bonds {rot} > {max_rotatable_bonds}"
    elif allowed_elements is not None:
        for atom in mol.GetAtoms():
            if atom.GetSymbol() not in allowed_elements and atom.GetSymbol() != "H":
                reason = f"element {atom.GetSymbol()} not allowed"
                break
    return ConstraintReport(heavy_atoms=heavy, mw=mw, rot_bonds=rot, ok=reason is None, reason=reason)


class SmartsQueryProblem(ValueError):
    pass


def find_smarts_matches(mol, smarts: dict[str, str]) -> dict[str, list[list[int]]]:
    """Return unique atom-index matches of each named SMARTS.

    Names whose pattern does not match are absent from the result. Invalid patterns
    raise SmartsQueryProblem naming the offending query.
    """
    _require_rdkit()
    matches: dict[str, list[list[int]]] = {}
    for ref, pattern in smarts.items():
        query = Chem.MolFromSmarts(pattern)
        if query is None:
            raise SmartsQueryProblem(f"For query {ref} => invalid SMARTS '{pattern}'")
        try:
            hits = mol.GetSubstructMatches(query, uniquify=True)
        except Exception as e:
            raise SmartsQueryProblem(f"For query {ref} => {e}") from e
        if hits:
            matches[ref] = [list(h) for h in hits]
    return matches


def set_props(mol, props: dict[str, Any]) -> None:
    for k, v in props.items():
        if v is None:
            if mol.HasProp(k):
                mol.ClearProp(k)
            continue
        mol.SetProp(k, str(v))


def get_prop(mol, name: str) -> str | None:
    if mol is not None and mol.HasProp(name):
        return mol.GetProp(name)
    return None


def write_sdf(mol, path: str | Path) -> Path:
    """Write a single molecule (first conformer) with its properties."""
    _require_rdkit()
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    w = Chem.SDWriter(str(p))
    try:
        w.write(mol)
    finally:
        w.close()
    return p


def read_first_mol(path: str | Path):
    """Return the first molecule of an SDF file, or None if it cannot be parsed."""
    _require_rdkit()
    supplier = Chem.SDMolSupplier(str(path), sanitize=False, removeHs=False)
    for mol in supplier:
        if mol is not None:
            mol.UpdatePropertyCache(strict=False)
        return mol
    return None


def mol_to_png(mol, path: str | Path, size: tuple[int, int] = (400, 400)) -> Path:
    _require_rdkit()
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    flat = Chem.Mol(Chem.RemoveHs(mol, sanitize=False))
    flat.RemoveAllConformers()
    Draw.MolToFile(flat, str(p), size=size)
    return p
