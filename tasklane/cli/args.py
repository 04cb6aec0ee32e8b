from __future__ import annotations

import argparse


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tasklane")

    parser.add_argument(
        "--config",
        default="tasklane.yml",
        help="Path to config file",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
        help="Log level for messages written to stderr (default: WARNING)",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        required=True,
    )

    # run
    run = subparsers.add_parser("run", help="Run a task and its dependencies")
    run.add_argument(
        "target",
        nargs="?",
        help="Task id (default: the default task of --group)",
    )
    run.add_argument(
        "--group",
        default="build",
        help="Group whose default task runs when no target is given (default: build)",
    )
    _add_run_options(run)

    # list
    listing = subparsers.add_parser("list", help="List tasks")
    listing.add_argument("--group", default=None, help="Only list tasks of this group")

    # graph
    graph = subparsers.add_parser("graph", help="Show the execution plan")
    graph.add_argument("target", nargs="?", help="Task id (default: every task)")

    # watch
    watch = subparsers.add_parser("watch", help="Re-run a task when files change")
    watch.add_argument("target", help="Task id")
    watch.add_argument(
        "--path",
        dest="paths",
        action="append",
        required=True,
        help="Glob pattern of files to watch, relative to the current directory (repeatable)",
    )
    watch.add_argument(
        "--interval",
        type=float,
        default=0.5,
        help="Polling interval in seconds (default: 0.5)",
    )
    _add_run_options(watch)

    return parser


def _add_run_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-j",
        "--concurrency",
        type=_positive_int,
        default=None,
        help="Maximum number of tasks running at once",
    )
    parser.add_argument(
        "--continue-on-failure",
        action="store_true",
        default=None,
        help="Run dependents even when a dependency failed",
    )
    parser.add_argument(
        "--diagnostics",
        choices=["json", "text", "none"],
        default="json",
        help="How problem matcher results are written to stderr (default: json)",
    )
