from .executor import Executor, OutputCallback
from .types import (
    CancellationError,
    ExecutionError,
    ExecutionInfrastructureError,
    ExitKind,
    RunRecord,
)

__all__ = [
    "Executor",
    "OutputCallback",
    "CancellationError",
    "ExecutionError",
    "ExecutionInfrastructureError",
    "ExitKind",
    "RunRecord",
]
