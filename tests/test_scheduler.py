from __future__ import annotations

import os
import threading
import time
from pathlib import Path

import pytest

from helpers import append_line, task_def
from tasklane.config import load_registry
from tasklane.graph import resolve
from tasklane.matchers.types import Severity
from tasklane.presentation import PresentationCoordinator
from tasklane.scheduler import NodeState, Scheduler, TaskFailure

SLEEP = "import time; time.sleep(0.5)"


def _run(definitions: dict, target: str, **kwargs):
    registry = load_registry(definitions)
    return Scheduler(registry, **kwargs).execute(resolve(registry, target))


def test_runs_in_dependency_order(tmp_path: Path) -> None:
    log = tmp_path / "log.txt"
    report = _run(
        {
            "tasks": {
                "a": task_def(append_line(log, "a")),
                "b": task_def(append_line(log, "b"), dependsOn=["a"]),
                "c": task_def(append_line(log, "c"), dependsOn=["b"]),
            }
        },
        "c",
    )

    assert report.ok
    assert report.succeeded == ["a", "b", "c"]
    assert report.dispatch_order == ["a", "b", "c"]
    assert log.read_text(encoding="utf-8").splitlines() == ["a", "b", "c"]


def test_sequence_completes_each_dependency_before_the_next_starts() -> None:
    report = _run(
        {
            "tasks": {
                "A": task_def(SLEEP),
                "B": task_def(SLEEP),
                "C": task_def(SLEEP),
                "all": task_def("pass", dependsOn=["A", "B", "C"], dependsOrder="sequence"),
            }
        },
        "all",
        concurrency=4,
    )

    a, b, c, root = (report.records[t] for t in ("A", "B", "C", "all"))
    assert report.ok
    assert a.ended_at <= b.started_at
    assert b.ended_at <= c.started_at
    assert c.ended_at <= root.started_at


def test_parallel_dependencies_all_start_before_any_finishes() -> None:
    report = _run(
        {
            "tasks": {
                "A": task_def(SLEEP),
                "B": task_def(SLEEP),
                "both": task_def("pass", dependsOn=["A", "B"]),
            }
        },
        "both",
        concurrency=4,
    )

    a, b, root = (report.records[t] for t in ("A", "B", "both"))
    assert report.dispatch_order[:2] == ["A", "B"]
    assert max(a.started_at, b.started_at) < min(a.ended_at, b.ended_at)
    assert root.started_at >= max(a.ended_at, b.ended_at)


def test_concurrency_limit_is_respected() -> None:
    report = _run(
        {
            "tasks": {
                "A": task_def(SLEEP),
                "B": task_def(SLEEP),
                "both": task_def("pass", dependsOn=["A", "B"]),
            }
        },
        "both",
        concurrency=1,
    )

    a, b = report.records["A"], report.records["B"]
    assert a.ended_at <= b.started_at


def test_failed_dependency_skips_dependent() -> None:
    report = _run(
        {
            "tasks": {
                "A": task_def("raise SystemExit(1)"),
                "B": task_def("pass", dependsOn=["A"], dependsOrder="sequence"),
            }
        },
        "B",
    )

    assert report.states == {"A": NodeState.FAILED, "B": NodeState.SKIPPED}
    assert "B" not in report.records
    assert not report.ok
    with pytest.raises(TaskFailure) as e:
        report.raise_for_failure()
    assert e.value.failed == ["A"]
    assert e.value.skipped == ["B"]


def test_failure_in_sequence_skips_the_rest_of_the_chain(tmp_path: Path) -> None:
    log = tmp_path / "log.txt"
    report = _run(
        {
            "tasks": {
                "A": task_def(append_line(log, "A") + "; raise SystemExit(2)"),
                "B": task_def(append_line(log, "B")),
                "all": task_def("pass", dependsOn=["A", "B"], dependsOrder="sequence"),
            }
        },
        "all",
    )

    assert report.failed == ["A"]
    assert report.skipped == ["B", "all"]
    assert log.read_text(encoding="utf-8").splitlines() == ["A"]


def test_failure_does_not_stop_independent_branches() -> None:
    report = _run(
        {
            "tasks": {
                "bad": task_def("raise SystemExit(1)"),
                "after_bad": task_def("pass", dependsOn=["bad"]),
                "good": task_def("pass"),
                "root": task_def("pass", dependsOn=["after_bad", "good"]),
            }
        },
        "root",
    )

    assert report.states["good"] is NodeState.SUCCEEDED
    assert report.states["after_bad"] is NodeState.SKIPPED
    assert report.states["root"] is NodeState.SKIPPED


def test_continue_on_failure_runs_dependents() -> None:
    report = _run(
        {
            "tasks": {
                "A": task_def("raise SystemExit(1)"),
                "B": task_def("pass", dependsOn=["A"]),
            }
        },
        "B",
        continue_on_failure=True,
    )

    assert report.states == {"A": NodeState.FAILED, "B": NodeState.SUCCEEDED}
    assert not report.ok


def test_continue_on_failure_defaults_to_registry_option() -> None:
    registry = load_registry(
        {
            "options": {"continueOnFailure": True, "concurrency": 2},
            "tasks": {
                "A": task_def("raise SystemExit(1)"),
                "B": task_def("pass", dependsOn=["A"]),
            },
        }
    )
    scheduler = Scheduler(registry)

    report = scheduler.execute(resolve(registry, "B"))

    assert scheduler.concurrency == 2
    assert report.states["B"] is NodeState.SUCCEEDED


def test_ignore_failure_task_does_not_block_or_fail_the_run() -> None:
    report = _run(
        {
            "tasks": {
                "lint": task_def("raise SystemExit(3)", ignoreFailure=True),
                "build": task_def("pass", dependsOn=["lint"]),
            }
        },
        "build",
    )

    assert report.states == {"lint": NodeState.FAILED, "build": NodeState.SUCCEEDED}
    assert report.tolerated == frozenset({"lint"})
    assert report.ok
    report.raise_for_failure()


def test_infrastructure_error_is_contained(tmp_path: Path) -> None:
    report = _run(
        {
            "tasks": {
                "ghost": {"command": str(tmp_path / "nope"), "ignoreFailure": True},
                "other": task_def("pass"),
                "root": task_def("pass", dependsOn=["ghost", "other"]),
            }
        },
        "root",
    )

    assert report.states["ghost"] is NodeState.FAILED
    assert report.records["ghost"].error
    assert report.states["other"] is NodeState.SUCCEEDED
    # A command that never launched did not run to completion.
    assert report.states["root"] is NodeState.SKIPPED
    assert "ghost" not in report.tolerated


def test_diagnostics_are_extracted_per_task() -> None:
    report = _run(
        {
            "tasks": {
                "compile": task_def(
                    "import sys; print('main.c:3:14: warning: unused variable x', file=sys.stderr)",
                    problemMatchers=["$gcc"],
                ),
            }
        },
        "compile",
    )

    [diagnostic] = report.diagnostics
    assert diagnostic.task_id == "compile"
    assert diagnostic.file == "main.c"
    assert (diagnostic.line, diagnostic.column) == (3, 14)
    assert diagnostic.severity is Severity.WARNING


def test_output_goes_to_the_task_panel() -> None:
    coordinator = PresentationCoordinator()
    _run(
        {
            "tasks": {
                "hello": task_def(
                    "print('hi')", presentation={"panel": "dedicated", "echo": False}
                ),
            }
        },
        "hello",
        coordinator=coordinator,
    )

    assert coordinator.panel("hello").snapshot() == ["hi"]


def test_cancel_terminates_running_and_skips_pending() -> None:
    registry = load_registry(
        {
            "tasks": {
                "done": task_def("pass"),
                "slow": task_def("import time; print('go', flush=True); time.sleep(30)", dependsOn=["done"]),
                "later": task_def("pass", dependsOn=["slow"]),
            }
        }
    )
    started = threading.Event()

    def sink(panel: str, line: str) -> None:
        if line == "go":
            started.set()

    scheduler = Scheduler(registry, coordinator=PresentationCoordinator(sink=sink))
    canceller = threading.Thread(target=lambda: started.wait(10) and scheduler.cancel())
    canceller.start()

    t0 = time.monotonic()
    report = scheduler.execute(resolve(registry, "later"))
    canceller.join()

    assert time.monotonic() - t0 < 20
    assert report.states == {
        "done": NodeState.SUCCEEDED,
        "slow": NodeState.CANCELLED,
        "later": NodeState.SKIPPED,
    }
    assert report.interrupted
    assert not report.ok


def test_same_plan_twice_gives_the_same_structure() -> None:
    registry = load_registry(
        {
            "tasks": {
                "A": task_def("pass"),
                "B": task_def("pass"),
                "C": task_def("pass", dependsOn=["A", "B"], dependsOrder="sequence"),
            }
        }
    )
    plan = resolve(registry, "C")

    first = Scheduler(registry).execute(plan)
    second = Scheduler(registry).execute(plan)

    assert first.states == second.states
    assert first.dispatch_order == second.dispatch_order == ["A", "B", "C"]
    assert set(first.records) == set(second.records)


def test_concurrency_must_be_positive() -> None:
    registry = load_registry({"tasks": {"A": task_def("pass")}})
    with pytest.raises(ValueError):
        Scheduler(registry, concurrency=0)


IGNORES_SIGTERM = (
    "import signal, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); "
    "print('go', flush=True); time.sleep(30)"
)


@pytest.mark.skipif(os.name != "posix", reason="needs POSIX signals")
def test_cancel_waits_on_one_deadline_for_all_running_tasks() -> None:
    registry = load_registry(
        {
            "tasks": {
                "A": task_def(IGNORES_SIGTERM),
                "B": task_def(IGNORES_SIGTERM),
                "C": task_def(IGNORES_SIGTERM),
                "all": task_def("pass", dependsOn=["A", "B", "C"]),
            }
        }
    )
    lock = threading.Lock()
    seen: list[str] = []
    all_started = threading.Event()

    def sink(panel: str, line: str) -> None:
        if line == "go":
            with lock:
                seen.append(line)
                if len(seen) == 3:
                    all_started.set()

    scheduler = Scheduler(
        registry,
        concurrency=3,
        coordinator=PresentationCoordinator(sink=sink),
        kill_timeout=1.0,
    )
    elapsed: list[float] = []

    def cancel_when_started() -> None:
        if all_started.wait(10):
            t0 = time.monotonic()
            scheduler.cancel()
            elapsed.append(time.monotonic() - t0)

    canceller = threading.Thread(target=cancel_when_started)
    canceller.start()
    report = scheduler.execute(resolve(registry, "all"))
    canceller.join()

    # Three tasks killed one after another would take at least 3 s.
    assert elapsed and elapsed[0] < 2.5
    assert report.cancelled == ["A", "B", "C"]
    assert report.states["all"] is NodeState.SKIPPED
