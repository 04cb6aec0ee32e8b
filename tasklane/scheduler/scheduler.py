from __future__ import annotations

import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Mapping

from loguru import logger

from tasklane.config.types import TaskRegistry
from tasklane.executor import (
    CancellationError,
    ExecutionInfrastructureError,
    Executor,
    ExitKind,
    RunRecord,
)
from tasklane.graph.types import ExecutionPlan, PlanNode
from tasklane.matchers import MatcherRegistry
from tasklane.presentation import PresentationCoordinator

from .types import NodeState, RunReport


class Scheduler:
    def __init__(
        self,
        registry: TaskRegistry,
        *,
        concurrency: int | None = None,
        continue_on_failure: bool | None = None,
        coordinator: PresentationCoordinator | None = None,
        matchers: MatcherRegistry | None = None,
        base_env: Mapping[str, str] | None = None,
        kill_timeout: float = 5.0,
    ):
        if concurrency is None:
            concurrency = registry.options.concurrency
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        if continue_on_failure is None:
            continue_on_failure = registry.options.continue_on_failure

        self.registry = registry
        self.concurrency = concurrency
        self.continue_on_failure = continue_on_failure
        self.coordinator = coordinator or PresentationCoordinator()
        self.matchers = matchers or MatcherRegistry(registry.matchers)
        self.base_env = dict(base_env or {})
        self.kill_timeout = kill_timeout
        self._cancel = threading.Event()
        self._lock = threading.Lock()
        self._active: dict[str, Executor] = {}

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        self._cancel.set()
        with self._lock:
            active = list(self._active.values())

        logger.info("Cancelling run, terminating {} running task(s)", len(active))
        for executor in active:
            executor.request_stop()
        # Shared deadline for every running task.
        deadline = time.monotonic() + self.kill_timeout
        for executor in active:
            executor.kill_after(deadline)

    def execute(self, plan: ExecutionPlan) -> RunReport:
        states = {node.index: NodeState.PENDING for node in plan.nodes}
        records: dict[str, RunRecord] = {}
        tolerated: set[int] = set()
        dispatch_order: list[str] = []
        running: dict[Future[NodeState], int] = {}

        with ThreadPoolExecutor(
            max_workers=self.concurrency, thread_name_prefix="tasklane"
        ) as pool:
            while True:
                try:
                    self._promote(plan, states, tolerated)

                    for index in plan.order:
                        if self._cancel.is_set() or len(running) >= self.concurrency:
                            break
                        if states[index] is not NodeState.READY:
                            continue

                        node = plan.nodes[index]
                        task = self.registry.get_task(node.task_id)
                        record = RunRecord(task.id, task.command_line())
                        records[task.id] = record
                        states[index] = NodeState.RUNNING
                        dispatch_order.append(task.id)
                        logger.info("Starting '{}'", task.id)
                        running[pool.submit(self._run_node, node, record)] = index

                    if self._cancel.is_set():
                        for index, state in states.items():
                            if state is NodeState.PENDING or state is NodeState.READY:
                                states[index] = NodeState.SKIPPED

                    if not running:
                        break

                    done, _ = wait(running, return_when=FIRST_COMPLETED)
                    for future in done:
                        index = running[future]
                        state = future.result()
                        states[index] = state
                        del running[future]
                        self._note_finished(plan.nodes[index], state, records, tolerated)

                except KeyboardInterrupt:
                    logger.warning("Interrupted, cancelling remaining tasks")
                    self.cancel()

        for index, state in states.items():
            if not state.is_terminal:
                states[index] = NodeState.SKIPPED

        report = RunReport(
            plan=plan,
            states={plan.nodes[i].task_id: state for i, state in states.items()},
            records=records,
            dispatch_order=dispatch_order,
            tolerated=frozenset(plan.nodes[i].task_id for i in tolerated),
            interrupted=self._cancel.is_set(),
        )
        logger.info(
            "Run finished: {} succeeded, {} failed, {} skipped, {} cancelled",
            len(report.succeeded),
            len(report.failed),
            len(report.skipped),
            len(report.cancelled),
        )
        return report

    def _promote(
        self, plan: ExecutionPlan, states: dict[int, NodeState], tolerated: set[int]
    ) -> None:
        # Plan order is topological, so one pass settles cascading skips.
        for index in plan.order:
            if states[index] is not NodeState.PENDING:
                continue

            waits_on = plan.nodes[index].waits_on
            if not all(states[dep].is_terminal for dep in waits_on):
                continue

            blocked = [
                plan.nodes[dep].task_id
                for dep in waits_on
                if not self._satisfied(dep, states, tolerated)
            ]
            if blocked and not self.continue_on_failure:
                states[index] = NodeState.SKIPPED
                logger.info(
                    "Skipping '{}': {} did not succeed",
                    plan.nodes[index].task_id,
                    ", ".join(blocked),
                )
            else:
                states[index] = NodeState.READY

    @staticmethod
    def _satisfied(index: int, states: dict[int, NodeState], tolerated: set[int]) -> bool:
        state = states[index]
        return state is NodeState.SUCCEEDED or (
            state is NodeState.FAILED and index in tolerated
        )

    def _note_finished(
        self,
        node: PlanNode,
        state: NodeState,
        records: dict[str, RunRecord],
        tolerated: set[int],
    ) -> None:
        task = self.registry.get_task(node.task_id)
        record = records[node.task_id]
        if (
            state is NodeState.FAILED
            and task.ignore_failure
            and record.outcome is ExitKind.FAILURE
        ):
            tolerated.add(node.index)
            logger.info("'{}' failed with exit code {} (ignored)", task.id, record.returncode)
            return

        match state:
            case NodeState.SUCCEEDED:
                logger.info("'{}' succeeded in {:.3f}s", task.id, record.duration_s)
            case NodeState.FAILED:
                logger.info("'{}' failed ({})", task.id, record.error or f"exit code {record.returncode}")
            case _:
                logger.info("'{}' {}", task.id, state.value)

    def _run_node(self, node: PlanNode, record: RunRecord) -> NodeState:
        task = self.registry.get_task(node.task_id)
        panel_name = self.coordinator.panel_for(task.id, task.presentation)
        handle = self.coordinator.acquire(panel_name, task.presentation)
        executor = Executor(
            task,
            record,
            base_env=self.base_env,
            on_output=lambda stream, text: handle.write(text, stream=stream),
            kill_timeout=self.kill_timeout,
        )

        with self._lock:
            self._active[task.id] = executor
        if self._cancel.is_set():
            executor.terminate()

        state = NodeState.FAILED
        try:
            handle.echo(record.command_line)
            executor.run()
        except CancellationError:
            state = NodeState.CANCELLED
        except ExecutionInfrastructureError as exc:
            logger.warning("{}", exc)
            handle.write(f"{exc}\n", stream="stderr")
        else:
            match record.outcome:
                case ExitKind.SUCCESS:
                    state = NodeState.SUCCEEDED
                case ExitKind.KILLED if self._cancel.is_set():
                    state = NodeState.CANCELLED
                case _:
                    state = NodeState.FAILED
        finally:
            with self._lock:
                self._active.pop(task.id, None)

            record.diagnostics = self.matchers.match_all(
                task.problem_matchers, record.output, task_id=task.id
            )
            handle.release(succeeded=state is NodeState.SUCCEEDED)

        return state
