from __future__ import annotations

import threading
from collections import deque
from itertools import count

from loguru import logger

from .types import PanelKind, PanelSink, PresentationPolicy, RevealKind

REUSE_MESSAGE = "Panel will be reused by tasks."
MAX_PANEL_LINES = 10_000


class Panel:
    def __init__(self, name: str, max_lines: int = MAX_PANEL_LINES) -> None:
        self.name = name
        # Oldest lines are dropped once the panel is full.
        self.lines: deque[str] = deque(maxlen=max_lines)
        self.active = 0
        self.revealed = False
        self.lock = threading.Lock()

    def snapshot(self) -> list[str]:
        with self.lock:
            return list(self.lines)


class PanelHandle:
    """One task invocation's view of a panel; only whole lines reach the panel."""

    def __init__(
        self,
        coordinator: PresentationCoordinator,
        panel: Panel,
        policy: PresentationPolicy,
    ) -> None:
        self._coordinator = coordinator
        self.panel = panel
        self.policy = policy
        self._partial: dict[str, str] = {}
        self._held: deque[str] = deque(maxlen=coordinator.max_lines)
        self._lock = threading.Lock()
        self._released = False

    def echo(self, command_line: str) -> None:
        if self.policy.echo:
            self._coordinator._emit(self, f"> {command_line}")

    def write(self, text: str, stream: str = "stdout") -> None:
        with self._lock:
            if self._released:
                raise RuntimeError(f"panel handle for '{self.panel.name}' already released")
            buffered = self._partial.pop(stream, "") + text
            *complete, rest = buffered.split("\n")
            if rest:
                self._partial[stream] = rest

        for line in complete:
            self._coordinator._emit(self, line.rstrip("\r"))

    def release(self, *, succeeded: bool) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
            leftovers = [self._partial.pop(s) for s in sorted(self._partial)]

        for line in leftovers:
            self._coordinator._emit(self, line.rstrip("\r"))

        if self.policy.show_reuse_message and self.policy.panel is not PanelKind.NEW:
            self._coordinator._emit(self, REUSE_MESSAGE)

        self._coordinator._release(self, succeeded=succeeded)

    def _hold(self, line: str) -> None:
        self._held.append(line)

    def _take_held(self) -> list[str]:
        held = list(self._held)
        self._held.clear()
        return held

    def __enter__(self) -> PanelHandle:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release(succeeded=exc_type is None)


class PresentationCoordinator:
    def __init__(
        self, sink: PanelSink | None = None, *, max_lines: int = MAX_PANEL_LINES
    ) -> None:
        if max_lines < 1:
            raise ValueError(f"max_lines must be at least 1, got {max_lines}")
        self._sink = sink
        self.max_lines = max_lines
        self._sink_lock = threading.Lock()
        self._panels: dict[str, Panel] = {}
        self._lock = threading.Lock()
        self._counter = count(1)
        self.focused: str | None = None

    def panel_for(self, task_id: str, policy: PresentationPolicy) -> str:
        match policy.panel:
            case PanelKind.SHARED:
                return "shared"
            case PanelKind.DEDICATED:
                return task_id
            case PanelKind.NEW:
                with self._lock:
                    return f"{task_id}#{next(self._counter)}"
            case _:
                raise AssertionError("Unreachable")

    def acquire(self, panel_name: str, policy: PresentationPolicy) -> PanelHandle:
        with self._lock:
            panel = self._panels.get(panel_name)
            if panel is None:
                panel = Panel(panel_name, self.max_lines)
                self._panels[panel_name] = panel
            if policy.focus:
                self.focused = panel_name

        with panel.lock:
            # First writer clears; a clear request on a panel that is already
            # in use leaves the running task's output in place.
            if policy.clear and panel.active == 0:
                panel.lines.clear()
            panel.active += 1
            if policy.reveal is RevealKind.ALWAYS:
                panel.revealed = True
            logger.debug("Acquired panel '{}' (active={})", panel_name, panel.active)

        return PanelHandle(self, panel, policy)

    def panel(self, name: str) -> Panel:
        with self._lock:
            if name not in self._panels:
                raise KeyError(name)
            return self._panels[name]

    def panel_names(self) -> list[str]:
        with self._lock:
            return sorted(self._panels)

    def _emit(self, handle: PanelHandle, line: str) -> None:
        panel = handle.panel
        with panel.lock:
            panel.lines.append(line)
            match handle.policy.reveal:
                case RevealKind.ALWAYS:
                    self._forward(panel.name, [line])
                case RevealKind.SILENT:
                    handle._hold(line)
                case RevealKind.NEVER:
                    pass

    def _release(self, handle: PanelHandle, *, succeeded: bool) -> None:
        panel = handle.panel
        with panel.lock:
            panel.active -= 1
            held = handle._take_held()
            if handle.policy.reveal is RevealKind.SILENT and not succeeded:
                panel.revealed = True
                self._forward(panel.name, held)
            logger.debug("Released panel '{}' (active={})", panel.name, panel.active)
            drop = handle.policy.panel is PanelKind.NEW and panel.active == 0

        if drop:
            with self._lock:
                if self._panels.get(panel.name) is panel:
                    del self._panels[panel.name]

    def _forward(self, panel_name: str, lines: list[str]) -> None:
        if self._sink is None or not lines:
            return
        with self._sink_lock:
            for line in lines:
                self._sink(panel_name, line)
