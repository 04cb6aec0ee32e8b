from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, Iterable

from loguru import logger

ChangeCallback = Callable[[list[Path]], None]


class FileWatcher:
    """Polls files matching glob patterns and reports changed paths."""

    def __init__(
        self,
        patterns: Iterable[str],
        callback: ChangeCallback,
        *,
        root: str | Path = ".",
        interval: float = 0.5,
    ) -> None:
        self.patterns = list(patterns)
        if not self.patterns:
            raise ValueError("FileWatcher needs at least one pattern")
        self.callback = callback
        self.root = Path(root)
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._snapshot: dict[Path, tuple[int, int]] = {}

    def start(self) -> FileWatcher:
        if self._thread is not None:
            return self
        self._snapshot = self._scan()
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="tasklane-watch")
        self._thread.start()
        logger.debug("Watching {} file(s) under {}", len(self._snapshot), self.root)
        return self

    def close(self) -> None:
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(self.interval * 4, 1.0))

    def __enter__(self) -> FileWatcher:
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _scan(self) -> dict[Path, tuple[int, int]]:
        found: dict[Path, tuple[int, int]] = {}
        for pattern in self.patterns:
            for path in self.root.glob(pattern):
                try:
                    stat = path.stat()
                except OSError:
                    continue
                if path.is_file():
                    found[path] = (stat.st_mtime_ns, stat.st_size)
        return found

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            current = self._scan()
            changed = sorted(
                path
                for path in current.keys() | self._snapshot.keys()
                if current.get(path) != self._snapshot.get(path)
            )
            self._snapshot = current
            if not changed:
                continue

            logger.debug("Detected {} changed file(s)", len(changed))
            try:
                self.callback(changed)
            except Exception:
                logger.exception("Error in file watch callback")
