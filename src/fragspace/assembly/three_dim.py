from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from ..chem import rdkit_utils as RU
from ..errors import AssemblyError, GeometryError
from ..graph.model import BondType, Graph

logger = logging.getLogger(__name__)

VERTEX_ID_PROP = "vertex_id"


@dataclass
class AssembledMolecule:
    mol: object
    # (vertex ID, AP index) -> index of the atom bonded through that AP
    anchors: dict[tuple[int, int], int] = field(default_factory=dict)


def _rdkit_bond(bond_type: BondType):
    from rdkit import Chem

    return {
        BondType.DOUBLE: Chem.BondType.DOUBLE,
        BondType.TRIPLE: Chem.BondType.TRIPLE,
    }.get(bond_type, Chem.BondType.SINGLE)


def _mmff_available(mol) -> bool:
    from rdkit.Chem import AllChem

    try:
        props = AllChem.MMFFGetMoleculeProperties(mol, mmffVariant="MMFF94")
        return props is not None
    except Exception:
        return False


def _optimize(mol, use_mmff: bool, max_iters: int) -> float | None:
    from rdkit.Chem import AllChem

    try:
        if use_mmff:
            props = AllChem.MMFFGetMoleculeProperties(mol, mmffVariant="MMFF94")
            ff = AllChem.MMFFGetMoleculeForceField(mol, props)
        else:
            ff = AllChem.UFFGetMoleculeForceField(mol)
        ff.Initialize()
        ff.Minimize(maxIts=max_iters)
        return float(ff.CalcEnergy())
    except Exception:
        return None


class ThreeDimAssembler:
    """Turns a graph into an RDKit molecule.

    Building blocks are joined at their AP anchor atoms, ring chords become bonds,
    and leftover dummy atoms are dropped so free APs end up as hydrogens. Calls on a
    shared instance are serialized: RDKit embedding state is not shared safely.
    """

    def __init__(
        self,
        seed_source: Callable[[], int] | None = None,
        forcefield_preference: str = "MMFF",
        max_iters: int = 200,
    ) -> None:
        self.seed_source = seed_source
        self.forcefield_preference = forcefield_preference
        self.max_iters = max_iters
        self._lock = threading.Lock()

    def assemble(self, graph: Graph) -> AssembledMolecule:
        """Build the sanitized molecular topology (no coordinates)."""
        with self._lock:
            return self._assemble(graph)

    def _assemble(self, graph: Graph) -> AssembledMolecule:
        RU._require_rdkit()
        from rdkit import Chem

        rw = Chem.RWMol()
        anchors: dict[tuple[int, int], int] = {}
        dummies: set[int] = set()
        for v in graph.vertices:
            if v.is_rca:
                continue
            if v.block is None or v.block.mol is None:
                raise AssemblyError(f"{v} has no chemical structure")
            block = Chem.Mol(v.block.mol)
            Chem.Kekulize(block, clearAromaticFlags=True)
            offset = rw.GetNumAtoms()
            for atom in block.GetAtoms():
                new = Chem.Atom(atom)
                new.SetAtomMapNum(0)
                new.SetIntProp(VERTEX_ID_PROP, v.vertex_id)
                rw.AddAtom(new)
            for b in block.GetBonds():
                rw.AddBond(b.GetBeginAtomIdx() + offset, b.GetEndAtomIdx() + offset, b.GetBondType())
            for ap in v.aps:
                anchors[(v.vertex_id, ap.index)] = offset + ap.anchor_atom
                dummies.add(offset + ap.dummy_atom)

        for e in graph.edges:
            if e.src_vertex.is_rca or e.trg_vertex.is_rca or e.bond_type == BondType.NONE:
                continue
            a = anchors[(e.src_ap.vertex_id, e.src_ap.index)]
            b = anchors[(e.trg_ap.vertex_id, e.trg_ap.index)]
            rw.AddBond(a, b, _rdkit_bond(e.bond_type))

        for ring in graph.rings:
            ends = []
            for rca in (ring.head, ring.tail):
                parent = rca.aps[0].linked_ap()
                if parent is None:
                    raise AssemblyError(f"RCA {rca} of {ring} is not bonded")
                ends.append(anchors[(parent.vertex_id, parent.index)])
            if ends[0] == ends[1] or rw.GetBondBetweenAtoms(ends[0], ends[1]) is not None:
                raise AssemblyError(f"{ring} would bond atom {ends[0]} to {ends[1]} twice")
            rw.AddBond(ends[0], ends[1], _rdkit_bond(ring.bond_type))

        for idx in sorted(dummies, reverse=True):
            rw.RemoveAtom(idx)
        ordered = sorted(dummies)

        def shifted(i: int) -> int:
            return i - sum(1 for d in ordered if d < i)

        mol = rw.GetMol()
        try:
            Chem.SanitizeMol(mol)
        except Exception as e:
            raise AssemblyError(f"Graph {graph.graph_id} gives an invalid molecule: {e}") from e
        return AssembledMolecule(mol=mol, anchors={k: shifted(i) for k, i in anchors.items()})

    def convert_graph_to_mol(self, graph: Graph, align: bool = True):
        """Molecule with coordinates: 3-D (ETKDG + force field) if ``align``, else 2-D.

        Raises GeometryError when no 3-D conformer can be embedded.
        """
        with self._lock:
            mol = self._assemble(graph).mol
            return self._add_coordinates(mol, graph.graph_id, align)

    def _add_coordinates(self, mol, graph_id: int, align: bool):
        from rdkit import Chem
        from rdkit.Chem import AllChem

        if not align:
            AllChem.Compute2DCoords(mol)
            return mol
        mol = Chem.AddHs(mol)
        for atom in mol.GetAtoms():
            if not atom.HasProp(VERTEX_ID_PROP):
                nbr = atom.GetNeighbors()[0]
                atom.SetIntProp(VERTEX_ID_PROP, nbr.GetIntProp(VERTEX_ID_PROP))
        params = AllChem.ETKDGv3()
        if self.seed_source is not None:
            params.randomSeed = int(self.seed_source())
        cid = AllChem.EmbedMolecule(mol, params)
        if cid < 0:
            # Try with a more permissive setting
            params.useRandomCoords = True
            cid = AllChem.EmbedMolecule(mol, params)
        if cid < 0:
            raise GeometryError(f"3-D embedding failed for graph {graph_id}")
        use_mmff = self.forcefield_preference.upper() == "MMFF" and _mmff_available(mol)
        if _optimize(mol, use_mmff, self.max_iters) is None:
            logger.warning("Force-field relaxation failed for graph %s", graph_id)
        return mol
