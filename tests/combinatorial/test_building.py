from __future__ import annotations

import pytest

from fragspace.assembly.three_dim import ThreeDimAssembler
from fragspace.combinatorial.building import BuildSettings, GraphBuildingTask
from fragspace.combinatorial.storage import LevelStorage
from fragspace.config.models import Constraints, RingClosureConfig
from fragspace.errors import GeometryError, TaskCancelled
from fragspace.fitness.provider import FitnessProvider
from fragspace.library.combinations import CombinationEnumerator

rdkit = pytest.importorskip("rdkit")

# Four A:0 APs on a chain, each able to take a ring-closing attractor
CHAIN_LIBRARY = {
    "scaffolds": [
        {
            "name": "branched octane",
            "smiles": "[*:1]CCC([*:2])CC([*:3])CCC[*:4]",
            "ap_classes": ["A:0", "A:0", "A:0", "A:0"],
        }
    ],
    "ring_closers": [{"ap_class": "ATplus:0"}, {"ap_class": "ATminus:0"}],
}
RCA_COMPAT = {"A:0": ["ATplus:0", "ATminus:0"]}
WIDE_RINGS = RingClosureConfig(min_ring_size=3, max_ring_size=8)


def _settings(space, context, work_dir, fitness, **overrides) -> BuildSettings:
    kwargs = dict(
        space=space,
        assembler=ThreeDimAssembler(seed_source=context.random_seed),
        context=context,
        storage=LevelStorage(work_dir),
        fitness=fitness,
        ring_closures=RingClosureConfig(),
        work_dir=work_dir,
        constraints=Constraints(),
        submit_fitness=False,
    )
    kwargs.update(overrides)
    return BuildSettings(**kwargs)


def _task(settings, root, pointer, level=1) -> GraphBuildingTask:
    enum = CombinationEnumerator(root, settings.space, level)
    return GraphBuildingTask(settings, root, enum.combination_for(pointer), level, pointer)


def test_empty_choices_are_not_attached(
    make_space, small_library, scaffold_root, context, work_dir, hac_fitness
) -> None:
    small_library["scaffolds"][0].pop("symmetric_aps")
    space = make_space(small_library, compatibility={"A:0": ["B:0"]})
    settings = _settings(space, context, work_dir, hac_fitness)
    root = scaffold_root(space)

    task = _task(settings, root, [1, 0])
    (candidate,) = task.run()

    assert task.attached == 1
    assert len(task.graph.vertices) == 2
    assert task.graph.graph_id != root.graph_id
    assert len(root.vertices) == 1
    assert candidate.smiles == "Oc1ccccc1"
    assert candidate.parent_graph_id == root.graph_id and candidate.level == 1
    assert settings.storage.count(1) == 1


def test_symmetric_attachments_form_one_set(
    make_space, small_library, scaffold_root, context, work_dir, hac_fitness
) -> None:
    space = make_space(small_library, compatibility={"A:0": ["B:0"]})
    settings = _settings(space, context, work_dir, hac_fitness)
    task = _task(settings, scaffold_root(space), [1, 1])
    task.run()

    assert task.attached == 2
    assert task.graph.symmetric_sets == [{1, 2}]
    assert all(v.level == 1 for v in task.graph.vertices if v.vertex_id != 0)


def test_rejected_graph_is_not_stored(
    make_space, small_library, scaffold_root, context, work_dir, hac_fitness
) -> None:
    space = make_space(small_library, compatibility={"A:0": ["B:0"]})
    settings = _settings(
        space, context, work_dir, hac_fitness, constraints=Constraints(max_heavy_atoms=6)
    )
    task = _task(settings, scaffold_root(space), [0, 1])
    assert task.run() == []
    assert task.rejected
    assert settings.storage.count(1) == 0


def test_graph_needing_caps_is_stored_not_evaluated(
    make_space, scaffold_root, context, work_dir, hac_fitness
) -> None:
    library = {
        "scaffolds": [{"smiles": "[*]c1ccccc1", "ap_classes": ["A:0"]}],
        "fragments": [{"smiles": "[*:1]CC[*:2]", "ap_classes": ["B:0", "D:0"]}],
        "capping_groups": [{"smiles": "[*]Cl", "ap_classes": ["cap:0"]}],
    }
    space = make_space(
        library, compatibility={"A:0": ["B:0"], "D:0": ["cap:0"]}, capping={"D:0": "cap:0"}
    )
    settings = _settings(space, context, work_dir, hac_fitness, submit_fitness=True)
    task = _task(settings, scaffold_root(space), [1])

    assert task.run() == []
    assert task.intermediate
    assert settings.storage.count(1) == 1
    assert not (work_dir / "candidates").exists()


def test_final_graph_is_evaluated(
    make_space, small_library, scaffold_root, context, work_dir, hac_fitness
) -> None:
    space = make_space(small_library, compatibility={"A:0": ["B:0"]})
    settings = _settings(
        space,
        context,
        work_dir,
        hac_fitness,
        submit_fitness=True,
        provider=FitnessProvider.from_config(hac_fitness),
    )
    (candidate,) = _task(settings, scaffold_root(space), [1, 2]).run()
    assert candidate.fitness == pytest.approx(16.0)
    assert candidate.error is None
    assert candidate.sdf_path is not None and candidate.sdf_path.exists()


def test_cancelled_task_stops_before_building(
    make_space, small_library, scaffold_root, context, work_dir, hac_fitness
) -> None:
    space = make_space(small_library, compatibility={"A:0": ["B:0"]})
    settings = _settings(space, context, work_dir, hac_fitness)
    task = _task(settings, scaffold_root(space), [1, 1])
    task.stop()
    with pytest.raises(TaskCancelled):
        task()
    assert task.attached == 0
    assert isinstance(task.exception, TaskCancelled)


def _cyclic_settings(space, context, work_dir, hac_fitness):
    return _settings(
        space,
        context,
        work_dir,
        hac_fitness,
        ring_closures=WIDE_RINGS,
        submit_fitness=True,
        provider=FitnessProvider.from_config(hac_fitness),
    )


def test_failing_cyclic_alternative_becomes_error_candidate(
    make_space, scaffold_root, context, work_dir, hac_fitness, monkeypatch
) -> None:
    space = make_space(CHAIN_LIBRARY, compatibility=RCA_COMPAT)
    settings = _cyclic_settings(space, context, work_dir, hac_fitness)
    evaluate = GraphBuildingTask._evaluate
    seen: list[int] = []

    def fail_first(self, graph, chem):
        seen.append(graph.graph_id)
        if len(seen) == 1:
            raise RuntimeError("force field exploded")
        return evaluate(self, graph, chem)

    monkeypatch.setattr(GraphBuildingTask, "_evaluate", fail_first)
    candidates = _task(settings, scaffold_root(space), [1, 2, 1, 2]).run()

    assert len(candidates) == 6
    (bad,) = [c for c in candidates if c.error is not None]
    assert bad.name == f"G{seen[0]:08d}"
    assert "force field exploded" in bad.error
    assert bad.fitness is None
    assert all(c.has_fitness and c.graph.rings for c in candidates if c is not bad)
    assert settings.storage.count(1) == 6


def test_cyclic_alternative_without_conformer_is_rejected(
    make_space, scaffold_root, context, work_dir, hac_fitness, monkeypatch
) -> None:
    space = make_space(CHAIN_LIBRARY, compatibility=RCA_COMPAT)
    settings = _cyclic_settings(space, context, work_dir, hac_fitness)
    convert = settings.assembler.convert_graph_to_mol
    rejected: list[int] = []

    def no_conformer_for_first(graph, align=True):
        if not rejected:
            rejected.append(graph.graph_id)
            raise GeometryError(f"3-D embedding failed for graph {graph.graph_id}")
        return convert(graph, align=align)

    monkeypatch.setattr(settings.assembler, "convert_graph_to_mol", no_conformer_for_first)
    candidates = _task(settings, scaffold_root(space), [1, 2, 1, 2]).run()

    assert len(candidates) == 5
    assert all(c.has_fitness for c in candidates)
    assert rejected[0] not in {c.graph_id for c in candidates}
    stored = {s.graph.graph_id for s in settings.storage.load_level(1, space.get_block)}
    assert len(stored) == 5 and rejected[0] not in stored
