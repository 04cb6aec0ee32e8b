import shlex
from dataclasses import dataclass, field
from enum import Enum

from tasklane.matchers.types import MatcherConfig
from tasklane.presentation.types import PresentationPolicy


class TaskType(str, Enum):
    PROCESS = "process"
    SHELL = "shell"


class DependsOrder(str, Enum):
    PARALLEL = "parallel"
    SEQUENCE = "sequence"


@dataclass
class TaskConfig:
    id: str
    command: str
    args: list[str] = field(default_factory=list)
    type: TaskType = TaskType.PROCESS
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None
    group: str | None = None
    is_default: bool = False
    depends_on: list[str] = field(default_factory=list)
    depends_order: DependsOrder = DependsOrder.PARALLEL
    problem_matchers: list[str] = field(default_factory=list)
    presentation: PresentationPolicy = field(default_factory=PresentationPolicy)
    ignore_failure: bool = False
    detail: str | None = None

    def argv(self) -> list[str]:
        return [self.command, *self.args]

    def command_line(self) -> str:
        # Shell commands keep their own syntax; only the args are quoted.
        if self.type is TaskType.SHELL:
            return " ".join([self.command, *(shlex.quote(arg) for arg in self.args)])
        return shlex.join(self.argv())


@dataclass
class RegistryOptions:
    concurrency: int = 4
    continue_on_failure: bool = False


@dataclass
class TaskRegistry:
    tasks: dict[str, TaskConfig]
    matchers: dict[str, MatcherConfig] = field(default_factory=dict)
    options: RegistryOptions = field(default_factory=RegistryOptions)

    def __iter__(self):
        for task_id in sorted(self.tasks):
            yield self.tasks[task_id]

    def __len__(self):
        return len(self.tasks)

    def has_task(self, id: str) -> bool:
        return id in self.tasks

    def get_task(self, id: str) -> TaskConfig:
        if not self.has_task(id):
            raise KeyError(id)

        return self.tasks[id]

    def tasks_ids(self) -> list[str]:
        return sorted(self.tasks.keys())

    def tasks_in_group(self, kind: str) -> list[TaskConfig]:
        return [task for task in self if task.group == kind]

    def default_task(self, kind: str) -> TaskConfig:
        candidates = self.tasks_in_group(kind)
        defaults = [task for task in candidates if task.is_default]

        if len(defaults) > 1:
            names = ", ".join(task.id for task in defaults)
            raise ValidationError(f"Group '{kind}' has several default tasks: {names}")
        if defaults:
            return defaults[0]
        if len(candidates) == 1:
            return candidates[0]
        if not candidates:
            raise ValidationError(f"No task in group '{kind}'")
        raise ValidationError(
            f"Group '{kind}' has {len(candidates)} tasks and none is marked isDefault"
        )


class ValidationError(Exception):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)


class UnsupportedConfigFormatError(ValidationError):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)
