from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from . import __version__
from .candidate import Candidate
from .config.models import RunConfig, validate_config_payload
from .errors import ConfigurationError, FragSpaceError, TaskBatchError
from .utils.io import dump_json, load_mapping, write_text
from .utils.run import log_event, new_run_id, snapshot_config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fragspace",
        description="Combinatorial molecule design: grow graphs from building blocks and score them.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"fragspace {__version__}",
        help="Show version and exit",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )

    subparsers = parser.add_subparsers(dest="command")

    explore_parser = subparsers.add_parser(
        "explore", help="Enumerate and score graphs level by level"
    )
    explore_parser.add_argument("--config", type=str, required=True, help="Run YAML/JSON")
    explore_parser.add_argument(
        "--resume", action="store_true", help="Continue from the checkpoint in work_dir"
    )

    evaluate_parser = subparsers.add_parser(
        "evaluate", help="Score a single graph (JSON as written in the levels/ directory)"
    )
    evaluate_parser.add_argument("--config", type=str, required=True, help="Run YAML/JSON")
    evaluate_parser.add_argument("--graph", type=str, required=True, help="Graph JSON file")

    schema_parser = subparsers.add_parser("schema", help="Print the run config JSON Schema")
    schema_parser.add_argument(
        "--out",
        type=str,
        required=False,
        help="Optional path to write the JSON schema",
    )
    return parser


def _load_config(path: str) -> tuple[RunConfig, dict]:
    payload = load_mapping(path, "Run config")
    return validate_config_payload(payload), payload


def _cmd_explore(config_path: str, resume: bool) -> int:
    from .combinatorial.explorer import CombinatorialExplorer

    cfg, payload = _load_config(config_path)
    explorer = CombinatorialExplorer(cfg, base_dir=Path(config_path).parent, resume=resume)
    run_id = new_run_id()
    snapshot_config(explorer.work_dir, payload)
    log_event(explorer.work_dir, "run_id", run_id=run_id)
    try:
        candidates = explorer.run()
    except (KeyboardInterrupt, TaskBatchError) as e:
        if isinstance(e, TaskBatchError) and not isinstance(e.__cause__, KeyboardInterrupt):
            raise
        explorer.stop()
        sys.stderr.write("Interrupted; resume with --resume.\n")
        return 130
    scored = [c for c in candidates if c.has_fitness]
    best = max(scored, key=lambda c: c.fitness, default=None)
    summary = {
        "run_id": run_id,
        "work_dir": str(explorer.work_dir),
        "candidates": len(candidates),
        "scored": len(scored),
        "best": {"name": best.name, "smiles": best.smiles, "fitness": best.fitness}
        if best is not None
        else None,
    }
    sys.stdout.write(json.dumps(summary) + "\n")
    return 0


def _cmd_evaluate(config_path: str, graph_path: str) -> int:
    from .assembly.three_dim import ThreeDimAssembler
    from .combinatorial.checkpoint import Checkpoint
    from .fitness.provider import FitnessProvider
    from .graph.model import Graph
    from .library.space import FragmentSpace
    from .tasks.batch import TasksBatchManager
    from .tasks.fitness import FitnessTask
    from .utils.counters import RunContext
    from .utils.run import run_dir

    cfg, _ = _load_config(config_path)
    cfg = cfg.with_base_dir(Path(config_path).parent)
    space = FragmentSpace.from_config(cfg.fragment_space, Path(config_path).parent)
    data = load_mapping(graph_path, "Graph file")
    graph = Graph.from_dict(data.get("graph", data), space.get_block)
    work_dir = run_dir(cfg.work_dir)
    context = RunContext(seed=cfg.explorer.seed)
    ckpt = Checkpoint.load(work_dir)
    if ckpt is not None:
        # Continue numbering after an exploration in the same work_dir
        context.restore(ckpt.counter_state())
    provider = None if cfg.fitness.use_external else FitnessProvider.from_config(cfg.fitness)
    task = FitnessTask(
        Candidate(graph=graph),
        cfg.fitness,
        context,
        work_dir,
        assembler=ThreeDimAssembler(seed_source=context.random_seed),
        provider=provider,
    )
    manager = TasksBatchManager(cfg.explorer.termination_timeout)
    (candidate,) = manager.execute_tasks([task], 1)
    sys.stdout.write(
        json.dumps(
            {
                "name": candidate.name,
                "uid": candidate.uid,
                "smiles": candidate.smiles,
                "fitness": candidate.fitness,
                "error": candidate.error,
                "sdf": str(candidate.sdf_path) if candidate.sdf_path else None,
            }
        )
        + "\n"
    )
    return 0


def _cmd_schema(out: str | None) -> int:
    data = dump_json(RunConfig.json_schema(), indent=2)
    if out:
        write_text(out, data)
        sys.stdout.write(f"Wrote schema to {out}\n")
    else:
        sys.stdout.write(data + "\n")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        if args.command == "explore":
            return _cmd_explore(args.config, args.resume)
        if args.command == "evaluate":
            return _cmd_evaluate(args.config, args.graph)
        if args.command == "schema":
            return _cmd_schema(args.out)
    except ConfigurationError as e:
        sys.stderr.write(f"Configuration error: {e}\n")
        return 2
    except FragSpaceError as e:
        sys.stderr.write(f"Run failed: {e}\n")
        return 1
    # Default: print help
    parser.print_help()
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
