from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from typing import IO, Callable, Mapping

from loguru import logger

from tasklane.config.types import TaskConfig, TaskType

from .types import (
    CancellationError,
    ExecutionInfrastructureError,
    ExitKind,
    RunRecord,
)

# (stream name, chunk of text ending in a newline unless it is the last one)
OutputCallback = Callable[[str, str], None]

_POSIX = os.name == "posix"


class Executor:
    def __init__(
        self,
        task: TaskConfig,
        record: RunRecord,
        *,
        base_env: Mapping[str, str] | None = None,
        on_output: OutputCallback | None = None,
        kill_timeout: float = 5.0,
    ):
        self.task = task
        self.record = record
        self.base_env = dict(base_env or {})
        self.on_output = on_output
        self.kill_timeout = kill_timeout
        self._lock = threading.Lock()
        self._process: subprocess.Popen[str] | None = None
        self._terminated = False

    def run(self) -> RunRecord:
        task = self.task
        record = self.record
        env = {**os.environ, **self.base_env, **task.env}

        if task.type is TaskType.SHELL:
            command: str | list[str] = task.command_line()
        else:
            command = task.argv()

        with self._lock:
            if self._terminated:
                raise CancellationError(task.id)

            record.started_at = time.monotonic()
            try:
                process = subprocess.Popen(
                    command,
                    shell=task.type is TaskType.SHELL,
                    cwd=task.cwd or None,
                    env=env,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    errors="replace",
                    bufsize=1,
                    # Own process group so termination reaches the whole tree.
                    start_new_session=_POSIX,
                )
            except OSError as exc:
                record.ended_at = time.monotonic()
                record.outcome = ExitKind.ERROR
                record.error = str(exc)
                raise ExecutionInfrastructureError(task.id, exc) from exc
            self._process = process

        logger.debug("Started '{}' (pid={}): {}", task.id, process.pid, record.command_line)

        readers = [
            threading.Thread(
                target=self._pump,
                args=(process.stdout, "stdout"),
                daemon=True,
                name=f"{task.id}-stdout",
            ),
            threading.Thread(
                target=self._pump,
                args=(process.stderr, "stderr"),
                daemon=True,
                name=f"{task.id}-stderr",
            ),
        ]
        for reader in readers:
            reader.start()

        returncode = process.wait()
        for reader in readers:
            reader.join()

        with self._lock:
            terminated = self._terminated

        record.returncode = returncode
        record.ended_at = time.monotonic()
        if terminated or returncode < 0:
            record.outcome = ExitKind.KILLED
        elif returncode == 0:
            record.outcome = ExitKind.SUCCESS
        else:
            record.outcome = ExitKind.FAILURE

        logger.debug(
            "Finished '{}' with exit code {} ({})", task.id, returncode, record.outcome.value
        )
        return record

    def terminate(self) -> None:
        self.request_stop()
        self.kill_after(time.monotonic() + self.kill_timeout)

    def request_stop(self) -> None:
        with self._lock:
            self._terminated = True
            process = self._process

        if process is None or process.poll() is not None:
            return

        logger.info("Terminating '{}' (pid={})", self.task.id, process.pid)
        self._signal(process, signal.SIGTERM)

    def kill_after(self, deadline: float) -> None:
        with self._lock:
            process = self._process

        if process is None or process.poll() is not None:
            return

        try:
            process.wait(timeout=max(0.0, deadline - time.monotonic()))
        except subprocess.TimeoutExpired:
            logger.warning("'{}' ignored SIGTERM, killing it", self.task.id)
            self._signal(process, signal.SIGKILL if _POSIX else signal.SIGTERM)

    def _pump(self, pipe: IO[str] | None, stream: str) -> None:
        if pipe is None:
            return
        with pipe:
            for line in iter(pipe.readline, ""):
                self.record.append_output(stream, line)
                if self.on_output is not None:
                    self.on_output(stream, line)

    @staticmethod
    def _signal(process: subprocess.Popen[str], sig: int) -> None:
        if _POSIX:
            try:
                os.killpg(process.pid, sig)
            except ProcessLookupError:
                pass
        else:
            process.send_signal(sig)
