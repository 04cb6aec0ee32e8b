from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from tasklane.executor.types import RunRecord
from tasklane.graph.types import ExecutionPlan
from tasklane.matchers.types import Diagnostic


class NodeState(str, Enum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset(
    {NodeState.SUCCEEDED, NodeState.FAILED, NodeState.SKIPPED, NodeState.CANCELLED}
)


class TaskFailure(Exception):
    def __init__(self, failed: list[str], skipped: list[str], cancelled: list[str]):
        parts = []
        if failed:
            parts.append("failed: " + ", ".join(failed))
        if skipped:
            parts.append("skipped: " + ", ".join(skipped))
        if cancelled:
            parts.append("cancelled: " + ", ".join(cancelled))
        super().__init__("Run did not succeed (" + "; ".join(parts) + ")")
        self.failed = failed
        self.skipped = skipped
        self.cancelled = cancelled


@dataclass(frozen=True)
class RunReport:
    plan: ExecutionPlan
    states: dict[str, NodeState]
    records: dict[str, RunRecord]
    dispatch_order: list[str] = field(default_factory=list)
    # Failed `ignoreFailure` tasks that still ran to completion.
    tolerated: frozenset[str] = frozenset()
    interrupted: bool = False

    @property
    def order(self) -> list[str]:
        return self.plan.task_order()

    def _with_state(self, state: NodeState) -> list[str]:
        return [tid for tid in self.order if self.states[tid] is state]

    @property
    def succeeded(self) -> list[str]:
        return self._with_state(NodeState.SUCCEEDED)

    @property
    def failed(self) -> list[str]:
        return self._with_state(NodeState.FAILED)

    @property
    def skipped(self) -> list[str]:
        return self._with_state(NodeState.SKIPPED)

    @property
    def cancelled(self) -> list[str]:
        return self._with_state(NodeState.CANCELLED)

    @property
    def diagnostics(self) -> list[Diagnostic]:
        return [
            diagnostic
            for tid in self.order
            if tid in self.records
            for diagnostic in self.records[tid].diagnostics
        ]

    @property
    def ok(self) -> bool:
        if self.interrupted:
            return False
        for tid, state in self.states.items():
            if state is NodeState.SKIPPED or state is NodeState.SUCCEEDED:
                continue
            if state is NodeState.FAILED and tid in self.tolerated:
                continue
            return False
        return True

    def raise_for_failure(self) -> None:
        if not self.ok:
            failed = [tid for tid in self.failed if tid not in self.tolerated]
            raise TaskFailure(failed, self.skipped, self.cancelled)
