"""
Command-line interface.

Usage:
    graph-plan graph resources.json            # print execution waves
    graph-plan graph resources.json --dot      # Graphviz DOT
    graph-plan plan resources.json --state s.json [--json] [--destroy]
    graph-plan apply resources.json --state s.json

``apply`` runs against the in-memory provider: nothing is created in a
real cloud, but the state file is written as if it had been.

The resources document holds a ``resources`` list and an optional
``schemas`` list; see `ResourceSet.from_dict` and
`SchemaRegistry.from_dict`.
"""

import argparse
import json
import signal
import sys
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from types import FrameType
from typing import Any

from graph_plan._config import EngineConfig
from graph_plan._errors import GraphPlanError
from graph_plan._executor import Executor
from graph_plan._graph import build_graph
from graph_plan._logging import configure_logging, get_logger
from graph_plan._plan import Planner
from graph_plan._provider import InMemoryProvider
from graph_plan._resources import ResourceSet, SchemaRegistry
from graph_plan._state import FileStateStore

__all__ = ["main"]

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CHANGES = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="graph-plan",
        description="Plan and apply declarative resource graphs.",
    )
    parser.add_argument("--log-level", help="minimum log level (default from config)")
    parser.add_argument("--log-json", action="store_true", help="log JSON lines")
    sub = parser.add_subparsers(dest="command", required=True)

    graph = sub.add_parser("graph", help="show the dependency graph")
    graph.add_argument("resources", type=Path)
    graph.add_argument("--dot", action="store_true", help="output Graphviz DOT")

    for name, text in (("plan", "show the plan"), ("apply", "plan and apply")):
        cmd = sub.add_parser(name, help=text)
        cmd.add_argument("resources", type=Path)
        cmd.add_argument("--state", type=Path, help="state file path")
        cmd.add_argument("--json", action="store_true", help="output JSON")
        cmd.add_argument("--destroy", action="store_true", help="destroy everything")
        cmd.add_argument(
            "--target",
            action="append",
            dest="targets",
            metavar="ADDRESS",
            help="limit to this resource (repeatable)",
        )
        if name == "plan":
            cmd.add_argument(
                "--detailed-exitcode",
                action="store_true",
                help="exit with 2 when the plan has changes",
            )
    return parser


def _load_document(path: Path) -> tuple[ResourceSet, SchemaRegistry]:
    with path.open(encoding="utf-8") as f:
        document: dict[str, Any] = json.load(f)
    return ResourceSet.from_dict(document), SchemaRegistry.from_dict(document)


def _cmd_graph(args: argparse.Namespace, config: EngineConfig) -> int:
    resources, _ = _load_document(args.resources)
    graph = build_graph(resources)
    if args.dot:
        print(graph.to_dot())
        return EXIT_OK
    for index, wave in enumerate(graph.waves()):
        print(f"wave {index}:")
        for address in wave:
            deps = sorted(graph.dependencies(address))
            suffix = f"  <- {', '.join(deps)}" if deps else ""
            print(f"  {address}{suffix}")
    return EXIT_OK


def _cmd_plan(args: argparse.Namespace, config: EngineConfig) -> int:
    resources, schemas = _load_document(args.resources)
    store = FileStateStore(args.state or config.state_path)
    plan = Planner(config, schemas).plan(
        resources, store.load(), targets=args.targets, destroy=args.destroy
    )
    print(plan.to_json() if args.json else plan.render())
    if args.detailed_exitcode and plan.has_changes:
        return EXIT_CHANGES
    return EXIT_OK


@contextmanager
def cancel_on_interrupt(executor: Executor) -> Iterator[None]:
    """Cancel the executor's apply on SIGINT instead of raising KeyboardInterrupt.

    In-flight operations drain and their state is written; the previous
    handler is restored on exit.
    """

    def _handle_signal(signum: int, frame: FrameType | None) -> None:
        logger.info("apply_signal_received", signal=signum)
        executor.cancel()

    previous = signal.signal(signal.SIGINT, _handle_signal)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _cmd_apply(args: argparse.Namespace, config: EngineConfig) -> int:
    resources, schemas = _load_document(args.resources)
    store = FileStateStore(args.state or config.state_path)
    plan = Planner(config, schemas).plan(
        resources, store.load(), targets=args.targets, destroy=args.destroy
    )
    if not args.json:
        print(plan.render())
        print()
    executor = Executor(InMemoryProvider(), store, config)
    with cancel_on_interrupt(executor):
        report = executor.apply(plan)
    print(json.dumps(report.to_dict(), indent=2) if args.json else report.render())
    return EXIT_OK if report.ok else EXIT_ERROR


_COMMANDS = {
    "graph": _cmd_graph,
    "plan": _cmd_plan,
    "apply": _cmd_apply,
}


def main(argv: Sequence[str] | None = None) -> int:
    """Run the CLI and return the exit status."""
    args = _build_parser().parse_args(argv)
    overrides: dict[str, Any] = {}
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.log_json:
        overrides["log_json"] = True
    config = EngineConfig(**overrides)
    configure_logging(json_format=config.log_json, log_level=config.log_level)

    try:
        return _COMMANDS[args.command](args, config)
    except (GraphPlanError, OSError, KeyError, ValueError) as exc:
        logger.debug("command_failed", command=args.command, error=str(exc))
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
