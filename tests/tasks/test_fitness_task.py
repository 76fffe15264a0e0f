from __future__ import annotations

import math
import sys
from pathlib import Path

import pytest

from fragspace.candidate import TAG_ERROR, TAG_FITNESS, TAG_UID, Candidate
from fragspace.config.models import DescriptorConfig, ExternalFitnessConfig, FitnessConfig
from fragspace.errors import ExternalFitnessError
from fragspace.fitness.provider import FitnessProvider
from fragspace.tasks.fitness import NAN_FITNESS_ERROR, FitnessTask, TaskState, UIDRegistry

rdkit = pytest.importorskip("rdkit")

# Copies the request SDF and appends the given tag block before '$$$$'.
WRITE_BACK = """
import sys
inp, out = sys.argv[1], sys.argv[2]
block = open(inp).read().split("$$$$")[0].rstrip("\\n")
with open(out, "w") as f:
    f.write(block + "\\n\\n" + {tags!r} + "$$$$\\n")
"""


def _script(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "score.py"
    path.write_text(body, encoding="utf-8")
    return path


def _write_back(tmp_path: Path, tags: str) -> Path:
    return _script(tmp_path, WRITE_BACK.format(tags=tags))


def _external(program: Path, required: bool = True) -> FitnessConfig:
    return FitnessConfig(
        external=ExternalFitnessConfig(interpreter=sys.executable, program=str(program)),
        fitness_required=required,
    )


def _ethanol() -> Candidate:
    from rdkit import Chem

    return Candidate(mol=Chem.AddHs(Chem.MolFromSmiles("CCO")), level=1, parent_graph_id=4)


def _read(path: Path):
    from rdkit import Chem

    return next(iter(Chem.SDMolSupplier(str(path), sanitize=False, removeHs=False)))


def test_internal_fitness_written_to_sdf(work_dir, context, hac_fitness) -> None:
    candidate = _ethanol()
    task = FitnessTask(
        candidate,
        hac_fitness,
        context,
        work_dir,
        provider=FitnessProvider.from_config(hac_fitness),
    )
    result = task.run()

    assert result is candidate
    assert task.state == TaskState.SCORED
    assert candidate.fitness == pytest.approx(6.0)
    assert candidate.name == "M00000001"
    assert candidate.sdf_path == work_dir / "candidates" / "M00000001_out.sdf"
    mol = _read(candidate.sdf_path)
    assert mol.GetProp("_Name") == "M00000001"
    assert float(mol.GetProp(TAG_FITNESS)) == pytest.approx(6.0)
    assert mol.GetProp("PARENT_GRAPH") == "4" and mol.GetProp("LEVEL") == "1"
    assert mol.GetProp("SMILES") == "CCO"
    assert mol.GetProp(TAG_UID) == "LFQSCWFLJHTTHZ-UHFFFAOYSA-N"


def test_nan_fitness_is_recorded_not_raised(work_dir, context) -> None:
    cfg = FitnessConfig(
        expression="r / r",
        descriptors=[DescriptorConfig(name="r", implementation="NumRadicalElectrons")],
    )
    candidate = _ethanol()
    FitnessTask(candidate, cfg, context, work_dir, provider=FitnessProvider.from_config(cfg)).run()

    assert candidate.error == NAN_FITNESS_ERROR
    assert candidate.fitness is None or math.isnan(candidate.fitness)
    mol = _read(candidate.sdf_path)
    assert mol.GetProp(TAG_ERROR) == NAN_FITNESS_ERROR
    assert not mol.HasProp(TAG_FITNESS)


def test_external_fitness_round_trip(tmp_path, work_dir, context) -> None:
    program = _write_back(tmp_path, "> <FITNESS>\n4.2\n\n> <UID>\nCUSTOM-UID\n\n")
    candidate = _ethanol()
    registry = UIDRegistry(work_dir / "uids.txt")
    task = FitnessTask(candidate, _external(program), context, work_dir, uid_registry=registry)
    task.run()

    assert candidate.fitness == pytest.approx(4.2)
    assert candidate.error is None
    assert candidate.uid == "CUSTOM-UID"
    assert task.input_path.exists()
    assert _read(candidate.sdf_path).GetProp(TAG_FITNESS) == "4.2"
    assert "CUSTOM-UID" in registry
    assert (work_dir / "uids.txt").read_text(encoding="utf-8").split() == ["CUSTOM-UID"]


def test_external_error_tag_is_soft(tmp_path, work_dir, context) -> None:
    program = _write_back(tmp_path, "> <MOL_ERROR>\ntoo floppy\n\n")
    candidate = _ethanol()
    FitnessTask(candidate, _external(program), context, work_dir).run()
    assert candidate.error == "too floppy"
    assert candidate.fitness is None


def test_external_nonzero_exit_is_fatal(tmp_path, work_dir, context) -> None:
    program = _script(tmp_path, "import sys\nsys.exit(1)\n")
    task = FitnessTask(_ethanol(), _external(program), context, work_dir)
    with pytest.raises(ExternalFitnessError):
        task()
    assert task.state == TaskState.FAILED
    assert isinstance(task.exception, ExternalFitnessError)
    assert not task.output_path.exists()


@pytest.mark.parametrize("required", [True, False])
def test_external_non_numeric_fitness(tmp_path, work_dir, context, required) -> None:
    program = _write_back(tmp_path, "> <FITNESS>\nnot-a-number\n\n")
    candidate = _ethanol()
    task = FitnessTask(candidate, _external(program, required=required), context, work_dir)
    if required:
        with pytest.raises(ExternalFitnessError):
            task.run()
    else:
        task.run()
        assert candidate.error is not None and "not-a-number" in candidate.error


def test_unreadable_output_is_backed_up(tmp_path, work_dir, context) -> None:
    program = _script(
        tmp_path, "import sys\nopen(sys.argv[2], 'w').write('garbage\\n')\n"
    )
    candidate = _ethanol()
    task = FitnessTask(candidate, _external(program), context, work_dir)
    task.run()

    backup = task.output_path.with_name(task.output_path.name + ".unreadable")
    assert backup.exists()
    assert backup.read_text(encoding="utf-8") == "garbage\n"
    assert candidate.error == f"#FTask: Unable to retrieve data. See {backup}"
    assert candidate.mol.GetNumAtoms() == 1
    assert task.output_path.exists()


def test_external_scorer_with_relative_paths(tmp_path, context, monkeypatch) -> None:
    _write_back(tmp_path, "> <FITNESS>\n1.5\n\n")
    monkeypatch.chdir(tmp_path)
    candidate = _ethanol()
    task = FitnessTask(candidate, _external(Path("score.py")), context, Path("work"))
    task.run()

    assert candidate.error is None
    assert candidate.fitness == pytest.approx(1.5)
    assert task.work_dir == tmp_path / "work"
    assert candidate.sdf_path == tmp_path / "work" / "candidates" / "M00000001_out.sdf"


def test_non_integer_vertex_ids_make_output_unreadable(tmp_path, work_dir, context) -> None:
    program = _script(
        tmp_path,
        "import sys\n"
        "lines = open(sys.argv[1]).read().splitlines()\n"
        "i = next(n for n, ln in enumerate(lines) if '<ATM_VERTEX_ID>' in ln)\n"
        "lines[i + 1] = ' '.join('x' for _ in lines[i + 1].split())\n"
        "open(sys.argv[2], 'w').write('\\n'.join(lines) + '\\n')\n",
    )
    candidate = _ethanol()
    task = FitnessTask(candidate, _external(program), context, work_dir)
    task.run()

    backup = task.output_path.with_name(task.output_path.name + ".unreadable")
    assert backup.exists()
    assert "x x x x x x x x x" in backup.read_text(encoding="utf-8")
    assert candidate.error == f"#FTask: Unable to retrieve data. See {backup}"
    assert task.state == TaskState.SCORED
