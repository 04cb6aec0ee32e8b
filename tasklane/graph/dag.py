from __future__ import annotations

from enum import Enum, auto
from types import MappingProxyType
from typing import Callable, Hashable, Iterable, Sequence, TypeVar

from loguru import logger

from tasklane.config.types import DependsOrder, TaskRegistry

from .types import CycleError, ExecutionPlan, PlanNode, UnknownTaskError

K = TypeVar("K", bound=Hashable)


class _Visit(Enum):
    UNVISITED = auto()
    VISITING = auto()
    VISITED = auto()


def resolve(registry: TaskRegistry, root: str) -> ExecutionPlan:
    if not registry.has_task(root):
        raise UnknownTaskError(root)

    plan = _build(registry, [root])
    logger.debug("Resolved '{}' into {}", root, " -> ".join(plan.task_order()))
    return plan


def resolve_all(registry: TaskRegistry) -> ExecutionPlan:
    return _build(registry, registry.tasks_ids())


def _build(registry: TaskRegistry, roots: Sequence[str]) -> ExecutionPlan:
    def deps_of(task_id: str) -> list[str]:
        deps = registry.get_task(task_id).depends_on
        for dep in deps:
            if not registry.has_task(dep):
                raise UnknownTaskError(dep, referenced_by=task_id)
        return deps

    # Post-order over declared dependencies: every task comes after its deps.
    ids = _toposort(roots, deps_of, str)
    index = {task_id: i for i, task_id in enumerate(ids)}

    after: dict[int, list[int]] = {i: [] for i in range(len(ids))}
    for task_id in ids:
        task = registry.get_task(task_id)
        if task.depends_order is not DependsOrder.SEQUENCE:
            continue
        chain = [index[dep] for dep in task.depends_on]
        for prev, nxt in zip(chain, chain[1:]):
            if prev not in after[nxt]:
                after[nxt].append(prev)

    nodes = tuple(
        PlanNode(
            index=i,
            task_id=task_id,
            deps=tuple(index[dep] for dep in registry.get_task(task_id).depends_on),
            order=registry.get_task(task_id).depends_order,
            after=tuple(after[i]),
        )
        for i, task_id in enumerate(ids)
    )

    # Sequence edges can contradict each other, so sort again over all edges.
    order = _toposort(
        range(len(nodes)),
        lambda i: nodes[i].waits_on,
        lambda i: nodes[i].task_id,
    )

    return ExecutionPlan(
        nodes=nodes,
        order=tuple(order),
        roots=tuple(index[root] for root in roots),
        by_id=MappingProxyType(index),
    )


def _toposort(
    roots: Iterable[K],
    edges: Callable[[K], Iterable[K]],
    label: Callable[[K], str],
) -> list[K]:
    state: dict[K, _Visit] = {}
    out: list[K] = []
    stack: list[K] = []
    pos: dict[K, int] = {}

    def visit(key: K) -> None:
        current = state.get(key, _Visit.UNVISITED)
        if current == _Visit.VISITING:
            start = pos[key]
            raise CycleError([label(k) for k in stack[start:] + [key]])
        if current == _Visit.VISITED:
            return

        state[key] = _Visit.VISITING
        pos[key] = len(stack)
        stack.append(key)

        for dep in edges(key):
            visit(dep)

        stack.pop()
        pos.pop(key)
        state[key] = _Visit.VISITED
        out.append(key)

    for key in roots:
        visit(key)

    return out
