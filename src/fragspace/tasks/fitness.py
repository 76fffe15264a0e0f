"""Fitness evaluation of one candidate, in-process or through an external program."""

from __future__ import annotations

import logging
import math
import shutil
import threading
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from ..candidate import TAG_ERROR, TAG_FITNESS, TAG_UID, TAG_VERTEX_IDS, Candidate
from ..chem import rdkit_utils as RU
from ..errors import DescriptorResolutionError, EvaluationError, ExternalFitnessError
from .base import CancelToken, Task
from .process import run_process

if TYPE_CHECKING:
    from ..assembly.three_dim import ThreeDimAssembler
    from ..config.models import FitnessConfig
    from ..fitness.provider import FitnessProvider
    from ..utils.counters import RunContext

logger = logging.getLogger(__name__)

NAN_FITNESS_ERROR = "#InternalFitness: NaN value"
UNREADABLE_SUFFIX = ".unreadable"


class TaskState(str, Enum):
    CREATED = "CREATED"
    STRUCTURE_READY = "STRUCTURE_READY"
    SCORED = "SCORED"
    FAILED = "FAILED"


class UIDRegistry:
    """UIDs already evaluated, backed by a text file with one UID per line."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._uids: set[str] = set()
        if self.path.exists():
            lines = self.path.read_text(encoding="utf-8").splitlines()
            self._uids = {ln.strip() for ln in lines if ln.strip()}

    def __contains__(self, uid: str) -> bool:
        with self._lock:
            return uid in self._uids

    def add(self, uid: str) -> bool:
        """Register ``uid``; False if it was already known."""
        with self._lock:
            if uid in self._uids:
                return False
            self._uids.add(uid)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(uid + "\n")
            return True


def _parse_fitness(text: str) -> float | None:
    try:
        value = float(text.strip())
    except ValueError:
        return None
    return None if math.isnan(value) else value


class FitnessTask(Task):
    """Scores one Candidate.

    ``CREATED -> STRUCTURE_READY -> SCORED`` on success, including soft errors
    recorded on the Candidate. Fatal errors move the task to ``FAILED`` and raise.
    """

    def __init__(
        self,
        candidate: Candidate,
        settings: FitnessConfig,
        context: RunContext,
        work_dir: str | Path,
        assembler: ThreeDimAssembler | None = None,
        provider: FitnessProvider | None = None,
        token: CancelToken | None = None,
        uid_registry: UIDRegistry | None = None,
    ) -> None:
        super().__init__(context.task_ids.next(), token)
        self.candidate = candidate
        self.settings = settings
        self.context = context
        self.work_dir = Path(work_dir).absolute()
        self.assembler = assembler
        self.provider = provider
        self.uid_registry = uid_registry
        self.state = TaskState.CREATED
        self.counter = context.candidate_ids.next()
        if not candidate.name:
            candidate.name = f"M{self.counter:08d}"
        out_dir = self.work_dir / "candidates"
        self.input_path = out_dir / f"M{self.counter:08d}_inp.sdf"
        self.output_path = out_dir / f"M{self.counter:08d}_out.sdf"
        self.image_path = out_dir / f"M{self.counter:08d}.png"
        if not settings.use_external and provider is None:
            raise EvaluationError("Internal fitness evaluation needs a FitnessProvider")

    def run(self) -> Candidate:
        try:
            self.token.check()
            self._prepare_structure()
            self.token.check()
            if self.settings.use_external:
                self._run_external()
            else:
                self._run_internal()
        except BaseException:
            self.state = TaskState.FAILED
            raise
        self.state = TaskState.SCORED
        if self.uid_registry is not None and self.candidate.uid:
            self.uid_registry.add(self.candidate.uid)
        if self.settings.make_pictures and self.candidate.has_fitness:
            self._make_picture()
        return self.candidate

    def _prepare_structure(self) -> None:
        c = self.candidate
        if c.mol is None:
            if c.graph is None or self.assembler is None:
                raise EvaluationError(f"Candidate {c.name} has neither molecule nor graph")
            c.mol = self.assembler.convert_graph_to_mol(c.graph, align=self.settings.align_3d)
        if c.smiles is None:
            c.smiles = RU.smiles_of(c.mol)
        if c.uid is None:
            c.uid = RU.inchikey_of(c.mol)
        self.state = TaskState.STRUCTURE_READY

    def _write_output(self) -> None:
        RU.write_sdf(self.candidate.to_mol(), self.output_path)
        self.candidate.sdf_path = self.output_path

    # -- internal ----------------------------------------------------------------

    def _run_internal(self) -> None:
        c = self.candidate
        try:
            fitness = self.provider.get_fitness(c.mol)
        except DescriptorResolutionError as e:
            c.error = f"#InternalFitness: {e}"
        else:
            if math.isnan(fitness):
                c.error = NAN_FITNESS_ERROR
            else:
                c.fitness = fitness
        self._write_output()

    # -- external ----------------------------------------------------------------

    def _run_external(self) -> None:
        ext = self.settings.external
        RU.write_sdf(self.candidate.to_mol(with_vertex_ids=True), self.input_path)
        program = Path(ext.program)
        # The child runs inside work_dir
        if not program.is_absolute() and program.exists():
            program = program.absolute()
        cmd = [
            ext.interpreter,
            str(program),
            str(self.input_path),
            str(self.output_path),
            str(self.work_dir),
            str(self.task_id),
        ]
        if self.uid_registry is not None:
            cmd.append(str(self.uid_registry.path))
        self.token.check()
        result = run_process(cmd, self.token, timeout=ext.timeout, cwd=self.work_dir)
        if result.returncode != 0:
            raise ExternalFitnessError(
                f"Fitness program exited with code {result.returncode} for {self.candidate.name}: "
                f"{result.stderr.strip()[-500:]}"
            )
        self._read_external_output()

    def _load_output(self):
        if not self.output_path.exists():
            return None
        try:
            mol = RU.read_first_mol(self.output_path)
        except Exception as e:
            logger.warning("Cannot parse %s: %s", self.output_path, e)
            return None
        if mol is None or mol.GetNumAtoms() == 0:
            return None
        ids = RU.get_prop(mol, TAG_VERTEX_IDS)
        if ids is not None:
            tokens = ids.split()
            if len(tokens) != mol.GetNumAtoms():
                logger.warning(
                    "%s lists %d vertex IDs for %d atoms",
                    self.output_path,
                    len(tokens),
                    mol.GetNumAtoms(),
                )
                return None
            try:
                vertex_ids = [int(t) for t in tokens]
            except ValueError:
                logger.warning("%s holds non-integer vertex IDs: %s", self.output_path, ids)
                return None
            for atom, vid in zip(mol.GetAtoms(), vertex_ids, strict=True):
                atom.SetIntProp("vertex_id", vid)
        return mol

    def _read_external_output(self) -> None:
        c = self.candidate
        mol = self._load_output()
        if mol is None:
            backup = self.output_path.with_name(self.output_path.name + UNREADABLE_SUFFIX)
            if self.output_path.exists():
                shutil.copyfile(self.output_path, backup)
                self.output_path.unlink()
                c.error = f"#FTask: Unable to retrieve data. See {backup}"
            else:
                c.error = f"#FTask: Unable to retrieve data. No file {self.output_path}"
            logger.warning("Candidate %s: %s", c.name, c.error)
            c.mol = RU.placeholder_mol()
            self._write_output()
            return

        uid = RU.get_prop(mol, TAG_UID)
        if uid:
            c.uid = uid
        error = RU.get_prop(mol, TAG_ERROR)
        fitness_text = RU.get_prop(mol, TAG_FITNESS)
        if error:
            c.error = error
        elif fitness_text is not None:
            fitness = _parse_fitness(fitness_text)
            if fitness is None:
                msg = f"#FTask: Fitness is not a number: '{fitness_text}'"
                if self.settings.fitness_required:
                    raise ExternalFitnessError(f"Candidate {c.name}: {msg}")
                c.error = msg
            else:
                c.fitness = fitness
                c.mol = mol
        elif self.settings.fitness_required:
            raise ExternalFitnessError(
                f"Candidate {c.name}: output has neither {TAG_FITNESS} nor {TAG_ERROR}"
            )
        else:
            c.error = f"#FTask: No {TAG_FITNESS} in output"
        self._write_output()

    def _make_picture(self) -> None:
        try:
            RU.mol_to_png(self.candidate.mol, self.image_path)
            self.candidate.image_path = self.image_path
        except Exception as e:
            logger.warning("No picture for %s: %s", self.candidate.name, e)
