from __future__ import annotations

import re
from typing import Iterable, Iterator, Mapping

from .builtin import BUILTIN_MATCHERS
from .types import Diagnostic, MatcherConfig, Severity

_SEVERITY_WORD_RE = re.compile(r"\b(fatal|error|warning|warn|info|note|hint)\b", re.I)

_SEVERITY_WORDS = {
    "fatal": Severity.FATAL,
    "error": Severity.ERROR,
    "warning": Severity.WARNING,
    "warn": Severity.WARNING,
    "info": Severity.INFO,
    "note": Severity.NOTE,
    "hint": Severity.NOTE,
}


def severity_from_text(text: str) -> Severity | None:
    match = _SEVERITY_WORD_RE.search(text)
    if match is None:
        return None
    return _SEVERITY_WORDS[match.group(1).lower()]


class DiagnosticStream:
    """Lazy, restartable view of the diagnostics a matcher finds in some output."""

    def __init__(self, matcher: MatcherConfig, text: str, task_id: str | None = None) -> None:
        self.matcher = matcher
        self.text = text
        self.task_id = task_id

    def __iter__(self) -> Iterator[Diagnostic]:
        for line in self.text.splitlines():
            match = self.matcher.regexp.search(line)
            if match is not None:
                yield self._build(match, line)

    def _build(self, match: re.Match[str], line: str) -> Diagnostic:
        groups = self.matcher.groups

        def slot(name: str) -> str | None:
            if name not in groups:
                return None
            value = match.group(groups[name])
            return value.strip() if value else None

        severity = None
        captured = slot("severity")
        if captured:
            severity = severity_from_text(captured)
        if severity is None:
            outside = self._outside_slots(match, line)
            severity = severity_from_text(outside) or self.matcher.severity

        line_no = slot("line")
        column = slot("column")
        message = slot("message")

        return Diagnostic(
            file=slot("file"),
            line=int(line_no) if line_no else None,
            column=int(column) if column else None,
            severity=severity,
            message=message if message is not None else line.strip(),
            matcher=self.matcher.name,
            task_id=self.task_id,
        )

    def _outside_slots(self, match: re.Match[str], line: str) -> str:
        # Paths and message bodies may contain severity words of their own.
        spans = sorted(
            match.span(self.matcher.groups[name])
            for name in ("file", "message")
            if name in self.matcher.groups and match.start(self.matcher.groups[name]) != -1
        )
        pieces, pos = [], 0
        for start, end in spans:
            pieces.append(line[pos:start])
            pos = max(pos, end)
        pieces.append(line[pos:])
        return " ".join(pieces)


class MatcherRegistry:
    def __init__(self, matchers: Mapping[str, MatcherConfig] | None = None) -> None:
        self._matchers: dict[str, MatcherConfig] = {**BUILTIN_MATCHERS, **(matchers or {})}

    def has_matcher(self, pattern_id: str) -> bool:
        return pattern_id in self._matchers

    def get(self, pattern_id: str) -> MatcherConfig:
        if not self.has_matcher(pattern_id):
            raise KeyError(pattern_id)

        return self._matchers[pattern_id]

    def match(
        self, pattern_id: str, output_text: str, *, task_id: str | None = None
    ) -> DiagnosticStream:
        return DiagnosticStream(self.get(pattern_id), output_text, task_id)

    def match_all(
        self, pattern_ids: Iterable[str], output_text: str, *, task_id: str | None = None
    ) -> list[Diagnostic]:
        diagnostics: list[Diagnostic] = []
        for pattern_id in pattern_ids:
            diagnostics.extend(self.match(pattern_id, output_text, task_id=task_id))
        return diagnostics
