from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum

from tasklane.matchers.types import Diagnostic


class ExitKind(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    KILLED = "killed"
    ERROR = "error"


@dataclass
class RunRecord:
    task_id: str
    command_line: str
    started_at: float | None = None
    ended_at: float | None = None
    returncode: int | None = None
    outcome: ExitKind | None = None
    error: str | None = None
    diagnostics: list[Diagnostic] = field(default_factory=list)
    _stdout: list[str] = field(default_factory=list, repr=False)
    _stderr: list[str] = field(default_factory=list, repr=False)
    _output: list[str] = field(default_factory=list, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def stdout(self) -> str:
        with self._lock:
            return "".join(self._stdout)

    @property
    def stderr(self) -> str:
        with self._lock:
            return "".join(self._stderr)

    @property
    def output(self) -> str:
        """stdout and stderr interleaved in arrival order."""
        with self._lock:
            return "".join(self._output)

    @property
    def finished(self) -> bool:
        return self.outcome is not None

    @property
    def duration_s(self) -> float:
        if self.started_at is None or self.ended_at is None:
            return 0.0
        return self.ended_at - self.started_at

    def append_output(self, stream: str, text: str) -> None:
        with self._lock:
            if stream == "stderr":
                self._stderr.append(text)
            else:
                self._stdout.append(text)
            self._output.append(text)


class ExecutionError(Exception):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)


class ExecutionInfrastructureError(ExecutionError):
    def __init__(self, task_id: str, cause: OSError):
        super().__init__(f"{task_id}: could not launch command: {cause}")
        self.task_id = task_id
        self.cause = cause


class CancellationError(ExecutionError):
    def __init__(self, task_id: str):
        super().__init__(f"{task_id}: cancelled before launch")
        self.task_id = task_id
