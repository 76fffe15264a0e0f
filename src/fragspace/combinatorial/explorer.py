"""Layer-by-layer exhaustive exploration of a fragment space."""

from __future__ import annotations

import itertools
import logging
import threading
from pathlib import Path

from ..assembly.three_dim import ThreeDimAssembler
from ..candidate import RESULT_HEADER, Candidate
from ..config.models import RunConfig
from ..fitness.provider import FitnessProvider
from ..graph.model import BBType, Graph
from ..library.combinations import CombinationEnumerator
from ..library.space import FragmentSpace
from ..tasks.batch import TasksBatchManager
from ..tasks.fitness import UIDRegistry
from ..utils.counters import RunContext
from ..utils.io import read_csv_rows, write_csv
from ..utils.run import log_event, run_dir
from .building import BuildSettings, GraphBuildingTask
from .checkpoint import Checkpoint
from .storage import LevelStorage

logger = logging.getLogger(__name__)

RESULTS_FILE = "results.csv"


class CombinatorialExplorer:
    """Grows graphs level by level from the scaffolds of a fragment space.

    Level 0 holds one graph per scaffold. Level L decorates the free APs of the
    vertices added at level L-1 of every graph stored at the previous level.
    """

    def __init__(
        self,
        cfg: RunConfig,
        base_dir: str | Path | None = None,
        resume: bool = False,
        space: FragmentSpace | None = None,
    ) -> None:
        cfg = cfg.with_base_dir(base_dir)
        self.cfg = cfg
        self.resume = resume
        self.work_dir = run_dir(cfg.work_dir)
        self.space = space or FragmentSpace.from_config(cfg.fragment_space, base_dir)
        self.context = RunContext(seed=cfg.explorer.seed)
        self.assembler = ThreeDimAssembler(seed_source=self.context.random_seed)
        self.storage = LevelStorage(self.work_dir)
        self.manager = TasksBatchManager(cfg.explorer.termination_timeout)
        provider = None
        if not cfg.fitness.use_external:
            provider = FitnessProvider.from_config(cfg.fitness)
        registry = None
        if cfg.fitness.uid_file:
            uid_path = Path(cfg.fitness.uid_file)
            if not uid_path.is_absolute():
                uid_path = self.work_dir / uid_path
            registry = UIDRegistry(uid_path)
        self.settings = BuildSettings(
            space=self.space,
            assembler=self.assembler,
            context=self.context,
            storage=self.storage,
            fitness=cfg.fitness,
            ring_closures=cfg.ring_closures,
            work_dir=self.work_dir,
            constraints=cfg.constraints,
            provider=provider,
            submit_fitness=cfg.explorer.submit_fitness,
            uid_registry=registry,
        )
        self.candidates: list[Candidate] = []
        self._stop = threading.Event()
        self._stage = "setup"

    def stop(self) -> None:
        self._stop.set()
        self.manager.stop()

    def run(self) -> list[Candidate]:
        ex = self.cfg.explorer
        ckpt = Checkpoint.load(self.work_dir) if self.resume else None
        log_event(
            self.work_dir,
            "run_start",
            max_level=ex.max_level,
            workers=ex.num_workers,
            resume=ckpt is not None,
        )
        try:
            if ckpt is not None:
                self.context.restore(ckpt.counter_state())
                first_level = ckpt.level
                logger.info("Resuming at level %d, root #%d", ckpt.level, ckpt.root_position)
            else:
                self.storage.clear()
                self._stage = "level_0"
                self.make_scaffold_level()
                first_level = 1
            for level in range(first_level, ex.max_level + 1):
                if self._stop.is_set():
                    break
                self._stage = f"level_{level}"
                resume_from = ckpt if ckpt is not None and ckpt.level == level else None
                produced = self.explore_level(level, resume_from)
                if produced == 0:
                    log_event(self.work_dir, "level_empty", level=level)
                    break
        except Exception as e:
            log_event(self.work_dir, "run_failed", stage=self._stage, error=str(e))
            raise
        finally:
            self.write_results()
        log_event(
            self.work_dir,
            "run_end",
            candidates=len(self.candidates),
            stopped=self._stop.is_set(),
        )
        return self.candidates

    def make_scaffold_level(self) -> list[Graph]:
        graphs: list[Graph] = []
        for block in self.space.blocks(BBType.SCAFFOLD):
            graph = Graph(self.context.graph_ids.next())
            graph.add_vertex(self.space.new_vertex(0, BBType.SCAFFOLD, block.bb_id, level=0))
            self.storage.store(graph, -1, 0)
            graphs.append(graph)
        log_event(self.work_dir, "level_end", level=0, graphs=len(graphs))
        return graphs

    def explore_level(self, level: int, ckpt: Checkpoint | None = None) -> int:
        """Run every combination on every root of ``level - 1``; returns graphs stored."""
        ex = self.cfg.explorer
        roots = self.storage.load_level(level - 1, self.space.get_block)
        first = ckpt.root_position if ckpt is not None else 0
        log_event(self.work_dir, "level_start", level=level, roots=len(roots), first_root=first)
        for pos in range(first, len(roots)):
            root = roots[pos].graph
            start = None
            if ckpt is not None and pos == ckpt.root_position:
                start = ckpt.last_pointer
            enumerator = CombinationEnumerator(root, self.space, level, start=start)
            combos = iter(enumerator)
            while batch := list(itertools.islice(combos, ex.batch_size)):
                if self._stop.is_set():
                    return self.storage.count(level)
                tasks = [
                    GraphBuildingTask(self.settings, root, combination, level, pointer)
                    for pointer, combination in batch
                ]
                results = self.manager.execute_tasks(tasks, ex.num_workers)
                if self._stop.is_set():
                    # Partial batch: dropped here, redone on resume
                    log_event(
                        self.work_dir, "batch_dropped", level=level, root=root.graph_id
                    )
                    return self.storage.count(level)
                self.candidates.extend(results)
                self.checkpoint(level, root.graph_id, pos, batch[-1][0])
                log_event(
                    self.work_dir,
                    "batch_done",
                    level=level,
                    root=root.graph_id,
                    tasks=len(tasks),
                    rejected=sum(t.rejected for t in tasks),
                    candidates=len(results),
                )
            self.checkpoint(level, -1, pos + 1, None)
        produced = self.storage.count(level)
        if level < ex.max_level:
            self.checkpoint(level + 1, -1, 0, None)
        log_event(self.work_dir, "level_end", level=level, graphs=produced)
        return produced

    def checkpoint(
        self, level: int, root_graph_id: int, root_position: int, pointer: list[int] | None
    ) -> None:
        Checkpoint(
            level=level,
            root_graph_id=root_graph_id,
            root_position=root_position,
            last_pointer=pointer,
            **self.context.state(),
        ).save(self.work_dir)
        log_event(
            self.work_dir,
            "checkpoint",
            level=level,
            root_position=root_position,
            pointer=pointer,
        )

    def write_results(self) -> Path:
        path = self.work_dir / RESULTS_FILE
        rows: list[list] = read_csv_rows(path) if self.resume else []
        rows.extend(c.summary_row() for c in self.candidates)
        write_csv(path, RESULT_HEADER, rows)
        return path
