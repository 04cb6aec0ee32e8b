from .scheduler import Scheduler
from .types import NodeState, RunReport, TaskFailure

__all__ = ["Scheduler", "NodeState", "RunReport", "TaskFailure"]
