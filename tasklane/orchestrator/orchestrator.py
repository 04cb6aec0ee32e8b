from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, Iterable, Mapping

from loguru import logger

from tasklane.config.types import TaskRegistry
from tasklane.graph import ExecutionPlan, resolve
from tasklane.presentation import PresentationCoordinator
from tasklane.scheduler import RunReport, Scheduler

from .watcher import FileWatcher

ReportCallback = Callable[[RunReport], None]


class Orchestrator:
    def __init__(
        self,
        registry: TaskRegistry,
        *,
        concurrency: int | None = None,
        continue_on_failure: bool | None = None,
        coordinator: PresentationCoordinator | None = None,
        base_env: Mapping[str, str] | None = None,
    ):
        self.registry = registry
        self.concurrency = concurrency
        self.continue_on_failure = continue_on_failure
        self.coordinator = coordinator or PresentationCoordinator()
        self.base_env = dict(base_env or {})
        self._lock = threading.Lock()
        self._scheduler: Scheduler | None = None
        self._watcher: FileWatcher | None = None
        self._changed = threading.Event()

    @property
    def watching(self) -> bool:
        with self._lock:
            return self._watcher is not None

    def plan(self, target: str) -> ExecutionPlan:
        return resolve(self.registry, target)

    def run(self, target: str) -> RunReport:
        return self._execute(self.plan(target))

    def cancel(self) -> None:
        with self._lock:
            scheduler = self._scheduler
        if scheduler is not None:
            scheduler.cancel()

    def watch(
        self,
        target: str,
        patterns: Iterable[str],
        *,
        root: str | Path = ".",
        interval: float = 0.5,
        on_report: ReportCallback | None = None,
        stop: threading.Event | None = None,
        max_runs: int | None = None,
    ) -> int:
        """Run `target` on start and after every change; returns the number of runs."""
        plan = self.plan(target)
        stop = stop or threading.Event()
        runs = 0

        watcher = FileWatcher(patterns, self._on_change, root=root, interval=interval)
        with self._lock:
            self._watcher = watcher
        self._changed.set()
        try:
            watcher.start()
            while not stop.is_set():
                if not self._changed.wait(timeout=interval):
                    continue
                self._changed.clear()

                report = self._execute(plan)
                runs += 1
                if on_report is not None:
                    on_report(report)
                if report.interrupted:
                    logger.info("Run was interrupted, leaving watch mode")
                    break
                if max_runs is not None and runs >= max_runs:
                    break
        finally:
            watcher.close()
            with self._lock:
                self._watcher = None
            self._changed.clear()

        return runs

    def _on_change(self, paths: list[Path]) -> None:
        logger.info("Change detected in {}, scheduling a new run", ", ".join(map(str, paths)))
        self._changed.set()

    def _execute(self, plan: ExecutionPlan) -> RunReport:
        scheduler = Scheduler(
            self.registry,
            concurrency=self.concurrency,
            continue_on_failure=self.continue_on_failure,
            coordinator=self.coordinator,
            base_env=self.base_env,
        )
        with self._lock:
            self._scheduler = scheduler
        try:
            return scheduler.execute(plan)
        finally:
            with self._lock:
                self._scheduler = None
