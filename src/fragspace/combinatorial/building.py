"""Turning one combination into graphs, and those graphs into evaluated candidates."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from ..candidate import Candidate
from ..errors import EvaluationError, GeometryError, GraphBuildError, TaskCancelled
from ..graph.model import Graph
from ..graph.rings import make_graphs_with_different_ring_sets
from ..graph.validation import (
    GraphChemistry,
    check_graph_consistency,
    describe_graph,
    needs_capping_groups,
    replace_unused_rcas_with_caps,
)
from ..library.combinations import Combination
from ..tasks.base import CancelToken, Task
from ..tasks.fitness import FitnessTask, UIDRegistry
from .storage import LevelStorage

if TYPE_CHECKING:
    from ..assembly.three_dim import ThreeDimAssembler
    from ..config.models import Constraints, FitnessConfig, RingClosureConfig
    from ..fitness.provider import FitnessProvider
    from ..library.space import FragmentSpace
    from ..utils.counters import RunContext

logger = logging.getLogger(__name__)


@dataclass
class BuildSettings:
    """Run-wide collaborators shared by every GraphBuildingTask."""

    space: FragmentSpace
    assembler: ThreeDimAssembler
    context: RunContext
    storage: LevelStorage
    fitness: FitnessConfig
    ring_closures: RingClosureConfig
    work_dir: Path
    constraints: Constraints | None = None
    provider: FitnessProvider | None = None
    submit_fitness: bool = True
    uid_registry: UIDRegistry | None = None


class GraphBuildingTask(Task):
    """Applies one combination to a clone of a root graph.

    Returns the evaluated Candidates: none for a rejected or intermediate graph, one
    for an acyclic final graph, one per cyclic alternative otherwise.
    """

    def __init__(
        self,
        settings: BuildSettings,
        root: Graph,
        combination: Combination,
        level: int,
        pointer: list[int] | None = None,
        token: CancelToken | None = None,
    ) -> None:
        super().__init__(settings.context.task_ids.next(), token)
        self.settings = settings
        self.root_graph_id = root.graph_id
        self.graph = root.clone(graph_id=settings.context.graph_ids.next())
        self.combination = combination
        self.level = level
        self.pointer = list(pointer) if pointer is not None else None
        self.attached = 0
        self.rejected = False
        self.intermediate = False

    def attach_fragments(self) -> None:
        """Append one vertex per non-empty choice; register new symmetric sets."""
        space = self.settings.space
        by_key: dict[tuple[int, int], list[int]] = {}
        next_id = self.graph.max_vertex_id() + 1
        for (vid, ap_idx), choice in self.combination.items():
            if choice.is_empty:
                continue
            src_ap = self.graph.get_vertex(vid).get_ap(ap_idx)
            vertex = space.new_vertex(next_id, choice.bb_type, choice.bb_id, level=self.level)
            next_id += 1
            self.graph.append_vertex_on_ap(
                src_ap, vertex.get_ap(choice.ap_index), space.bond_type_for(src_ap.ap_class)
            )
            self.attached += 1
            if choice.sym_key is not None:
                by_key.setdefault(choice.sym_key, []).append(vertex.vertex_id)
        for members in by_key.values():
            if len(members) > 1:
                self.graph.add_symmetric_set(members)

    def run(self) -> list[Candidate]:
        s = self.settings
        self.token.check()
        self.attach_fragments()
        chem = check_graph_consistency(
            self.graph, s.space, s.constraints, s.assembler, open_level=self.level
        )
        if chem is None:
            self.rejected = True
            return []
        self.token.check()

        if needs_capping_groups(self.graph, s.space):
            self.intermediate = True
            s.storage.store(self.graph, self.root_graph_id, self.level, self.pointer)
            return []

        alternatives = make_graphs_with_different_ring_sets(
            self.graph, s.space, s.ring_closures, s.assembler, s.context
        )
        if not alternatives:
            # Stored with its RCAs so deeper levels can still close rings
            s.storage.store(self.graph, self.root_graph_id, self.level, self.pointer)
            final = self.graph.clone()
            if replace_unused_rcas_with_caps(final, s.space):
                chem = describe_graph(final, s.assembler)
            try:
                candidate = self._evaluate(final, chem)
            except GeometryError as e:
                logger.info("Graph %s rejected: %s", final.graph_id, e)
                return []
            return [candidate] if candidate is not None else []

        candidates: list[Candidate] = []
        for alt in alternatives:
            self.token.check()
            try:
                candidate = self._evaluate(alt, describe_graph(alt, s.assembler))
            except TaskCancelled:
                raise
            except GeometryError as e:
                logger.info("Cyclic alternative %s rejected: %s", alt.graph_id, e)
                continue
            except Exception as e:
                err = GraphBuildError(
                    f"Cyclic alternative {alt.graph_id} of graph {self.graph.graph_id}: {e}"
                )
                logger.warning("%s", err)
                candidate = Candidate(
                    name=f"G{alt.graph_id:08d}",
                    graph=alt,
                    error=str(err),
                    level=self.level,
                    parent_graph_id=self.root_graph_id,
                )
            s.storage.store(alt, self.root_graph_id, self.level, self.pointer)
            if candidate is not None:
                candidates.append(candidate)
        return candidates

    def _evaluate(self, graph: Graph, chem: GraphChemistry) -> Candidate | None:
        s = self.settings
        candidate = Candidate(
            graph=graph,
            uid=chem.uid,
            smiles=chem.smiles,
            level=self.level,
            parent_graph_id=self.root_graph_id,
        )
        if not s.submit_fitness:
            candidate.name = f"G{graph.graph_id:08d}"
            return candidate
        registry = s.uid_registry
        if s.fitness.skip_duplicates and registry is not None and chem.uid in registry:
            logger.debug("Graph %s: UID %s already evaluated", graph.graph_id, chem.uid)
            return None
        task = FitnessTask(
            candidate,
            s.fitness,
            s.context,
            s.work_dir,
            assembler=s.assembler,
            provider=s.provider,
            token=self.token,
            uid_registry=registry,
        )
        try:
            return task.run()
        except TaskCancelled:
            raise
        except EvaluationError as e:
            logger.warning("Evaluation of %s failed: %s", candidate.name, e)
            candidate.error = candidate.error or str(e)
            return candidate
