from __future__ import annotations

import argparse
import json
import sys

from loguru import logger

from tasklane.config import DependsOrder, TaskRegistry, ValidationError, load_file
from tasklane.graph import GraphError, resolve, resolve_all
from tasklane.matchers import Diagnostic
from tasklane.orchestrator import Orchestrator
from tasklane.presentation import PresentationCoordinator
from tasklane.scheduler import NodeState, RunReport, TaskFailure

from .args import build_parser

EXIT_OK = 0
EXIT_TASK_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130


def _configure_logging(level: str = "WARNING") -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=(
            "<green>{time:HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{module}</cyan>:<cyan>{line}</cyan> - {message}"
        ),
    )


def main() -> None:
    raise SystemExit(run_cli())


def run_cli(argv: list[str] | None = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
        _configure_logging(args.log_level)

        match args.command:
            case "run":
                return cmd_run(args)
            case "list":
                return cmd_list(args)
            case "graph":
                return cmd_graph(args)
            case "watch":
                return cmd_watch(args)
            case _:
                return EXIT_CONFIG_ERROR

    except (ValidationError, GraphError, KeyError) as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_CONFIG_ERROR

    except KeyboardInterrupt:
        return EXIT_INTERRUPTED


def cmd_run(args: argparse.Namespace) -> int:
    registry = load_file(args.config)
    target = args.target or registry.default_task(args.group).id
    report = _orchestrator(registry, args).run(target)
    _print_result(report)
    _print_diagnostics(report.diagnostics, args.diagnostics)

    if report.interrupted:
        return EXIT_INTERRUPTED
    try:
        report.raise_for_failure()
    except TaskFailure as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_TASK_FAILURE
    return EXIT_OK


def cmd_list(args: argparse.Namespace) -> int:
    registry = load_file(args.config)
    for task in registry:
        if args.group is not None and task.group != args.group:
            continue
        print(task.id)
    return EXIT_OK


def cmd_graph(args: argparse.Namespace) -> int:
    registry = load_file(args.config)
    plan = resolve(registry, args.target) if args.target else resolve_all(registry)
    for node in plan:
        deps = [plan.nodes[dep].task_id for dep in node.deps]
        separator = " -> " if node.order is DependsOrder.SEQUENCE else " "
        print(f"{node.task_id}: {separator.join(deps)}".rstrip())
    return EXIT_OK


def cmd_watch(args: argparse.Namespace) -> int:
    registry = load_file(args.config)
    orchestrator = _orchestrator(registry, args)
    reports: list[RunReport] = []

    def on_report(report: RunReport) -> None:
        reports.append(report)
        _print_result(report)
        _print_diagnostics(report.diagnostics, args.diagnostics)

    orchestrator.watch(args.target, args.paths, interval=args.interval, on_report=on_report)
    if reports and reports[-1].interrupted:
        return EXIT_INTERRUPTED
    return EXIT_OK


def _orchestrator(registry: TaskRegistry, args: argparse.Namespace) -> Orchestrator:
    return Orchestrator(
        registry,
        concurrency=args.concurrency,
        continue_on_failure=args.continue_on_failure,
        coordinator=PresentationCoordinator(sink=_print_panel_line),
    )


def _print_panel_line(panel: str, line: str) -> None:
    print(f"[{panel}] {line}", flush=True)


def _print_result(report: RunReport) -> None:
    for tid in report.order:
        state = report.states[tid]
        record = report.records.get(tid)
        match state:
            case NodeState.SUCCEEDED:
                print(f"OK {tid}, {record.duration_s:.3f}s, exit code = {record.returncode}")
            case NodeState.FAILED if record.error is not None:
                print(f"ERROR {tid}, {record.error}")
            case NodeState.FAILED:
                suffix = " (ignored)" if tid in report.tolerated else ""
                print(
                    f"FAIL {tid}, {record.duration_s:.3f}s, exit code = {record.returncode}{suffix}"
                )
            case NodeState.CANCELLED:
                print(f"CANCEL {tid}")
            case _:
                print(f"SKIP {tid}")


def _print_diagnostics(diagnostics: list[Diagnostic], fmt: str) -> None:
    if fmt == "none":
        return
    for diagnostic in diagnostics:
        if fmt == "json":
            print(json.dumps(diagnostic.to_dict()), file=sys.stderr)
        else:
            print(f"{diagnostic.format()} [{diagnostic.task_id}]", file=sys.stderr)
