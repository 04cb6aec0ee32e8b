from .dag import resolve, resolve_all
from .types import CycleError, ExecutionPlan, GraphError, PlanNode, UnknownTaskError

__all__ = [
    "resolve",
    "resolve_all",
    "CycleError",
    "ExecutionPlan",
    "GraphError",
    "PlanNode",
    "UnknownTaskError",
]
