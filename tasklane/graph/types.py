from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Mapping

from tasklane.config.types import DependsOrder


class GraphError(Exception):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)


class CycleError(GraphError):
    def __init__(self, cycle: list[str]):
        super().__init__("Cycle detected: " + " -> ".join(cycle))
        self.cycle = cycle


class UnknownTaskError(GraphError):
    def __init__(self, task_id: str, referenced_by: str | None = None):
        if referenced_by is None:
            message = f"Unknown task '{task_id}'"
        else:
            message = f"Task '{referenced_by}' depends on unknown task '{task_id}'"
        super().__init__(message)
        self.task_id = task_id
        self.referenced_by = referenced_by


@dataclass(frozen=True)
class PlanNode:
    index: int
    task_id: str
    deps: tuple[int, ...]
    order: DependsOrder
    # Predecessors added by a dependent's `sequence` ordering.
    after: tuple[int, ...] = ()

    @property
    def waits_on(self) -> tuple[int, ...]:
        return tuple(dict.fromkeys(self.deps + self.after))


@dataclass(frozen=True)
class ExecutionPlan:
    nodes: tuple[PlanNode, ...]
    order: tuple[int, ...]
    roots: tuple[int, ...]
    by_id: Mapping[str, int]

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[PlanNode]:
        for index in self.order:
            yield self.nodes[index]

    def __contains__(self, task_id: object) -> bool:
        return task_id in self.by_id

    def node(self, task_id: str) -> PlanNode:
        if task_id not in self.by_id:
            raise KeyError(task_id)
        return self.nodes[self.by_id[task_id]]

    def task_order(self) -> list[str]:
        return [self.nodes[index].task_id for index in self.order]

    def dependents(self, index: int) -> list[int]:
        return [node.index for node in self if index in node.waits_on]
