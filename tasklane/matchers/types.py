from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

SLOTS = ("file", "line", "column", "severity", "message")


class Severity(str, Enum):
    FATAL = "fatal"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    NOTE = "note"


@dataclass(frozen=True)
class MatcherConfig:
    name: str
    regexp: re.Pattern[str]
    # slot -> regex group (name or index)
    groups: Mapping[str, str | int] = field(default_factory=dict)
    severity: Severity = Severity.ERROR
    owner: str | None = None


@dataclass(frozen=True)
class Diagnostic:
    file: str | None
    line: int | None
    column: int | None
    severity: Severity
    message: str
    matcher: str
    task_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.task_id,
            "matcher": self.matcher,
            "file": self.file,
            "line": self.line,
            "column": self.column,
            "severity": self.severity.value,
            "message": self.message,
        }

    def format(self) -> str:
        location = ":".join(
            str(part) for part in (self.file, self.line, self.column) if part is not None
        )
        prefix = f"{location}: " if location else ""
        return f"{prefix}{self.severity.value}: {self.message}"
