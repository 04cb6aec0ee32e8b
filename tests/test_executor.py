from __future__ import annotations

import os
import threading
import time
from pathlib import Path

import pytest

from helpers import py
from tasklane.config.types import TaskConfig, TaskType
from tasklane.executor import (
    CancellationError,
    ExecutionInfrastructureError,
    Executor,
    ExitKind,
    RunRecord,
)


def _task(code: str, **fields) -> TaskConfig:
    exe, flag, payload = py(code)
    return TaskConfig(id=fields.pop("id", "t"), command=exe, args=[flag, payload], **fields)


def _run(task: TaskConfig, **kwargs) -> RunRecord:
    record = RunRecord(task.id, task.command_line())
    return Executor(task, record, **kwargs).run()


def test_success_captures_output() -> None:
    record = _run(_task("import sys; print('out'); print('err', file=sys.stderr)"))

    assert record.outcome is ExitKind.SUCCESS
    assert record.returncode == 0
    assert record.stdout == "out\n"
    assert record.stderr == "err\n"
    assert sorted(record.output.splitlines()) == ["err", "out"]
    assert record.started_at is not None and record.ended_at >= record.started_at


def test_nonzero_exit_is_a_failure_not_an_exception() -> None:
    record = _run(_task("raise SystemExit(7)"))

    assert record.outcome is ExitKind.FAILURE
    assert record.returncode == 7
    assert record.error is None


def test_env_is_layered_over_inherited_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TL_INHERITED", "yes")
    code = (
        "import os, sys; "
        "ok = os.environ.get('TL_INHERITED') == 'yes' "
        "and os.environ.get('TL_BASE') == 'task' "
        "and os.environ.get('TL_TASK') == 'ok'; "
        "sys.exit(0 if ok else 2)"
    )
    task = _task(code, env={"TL_TASK": "ok", "TL_BASE": "task"})

    record = _run(task, base_env={"TL_BASE": "base"})

    assert record.outcome is ExitKind.SUCCESS


def test_cwd_is_respected(tmp_path: Path) -> None:
    wd = tmp_path / "wd"
    wd.mkdir()

    task = _task(
        "from pathlib import Path; Path('written.txt').write_text('ok', encoding='utf-8')",
        cwd=str(wd),
    )
    record = _run(task)

    assert record.outcome is ExitKind.SUCCESS
    assert (wd / "written.txt").read_text(encoding="utf-8") == "ok"


@pytest.mark.skipif(os.name != "posix", reason="uses a POSIX shell")
def test_shell_tasks_run_through_the_shell() -> None:
    task = TaskConfig(id="sh", command="echo $TL_SHELL_VALUE && exit 3", type=TaskType.SHELL, env={"TL_SHELL_VALUE": "hi"})

    record = _run(task)

    assert record.stdout == "hi\n"
    assert record.returncode == 3
    assert record.outcome is ExitKind.FAILURE


def test_output_is_streamed_before_exit() -> None:
    seen: list[tuple[str, str, bool]] = []
    task = _task("import sys, time; print('first', flush=True); time.sleep(0.5); print('second')")
    record = RunRecord(task.id, task.command_line())

    def on_output(stream: str, text: str) -> None:
        seen.append((stream, text, record.finished))

    Executor(task, record, on_output=on_output).run()

    assert [(s, t) for s, t, _ in seen] == [("stdout", "first\n"), ("stdout", "second\n")]
    assert not any(finished for _, _, finished in seen)


def test_missing_program_is_an_infrastructure_error(tmp_path: Path) -> None:
    task = TaskConfig(id="ghost", command=str(tmp_path / "does-not-exist"))
    record = RunRecord(task.id, task.command_line())

    with pytest.raises(ExecutionInfrastructureError) as e:
        Executor(task, record).run()

    assert e.value.task_id == "ghost"
    assert isinstance(e.value.cause, FileNotFoundError)
    assert record.outcome is ExitKind.ERROR
    assert record.error


@pytest.mark.skipif(os.name != "posix", reason="relies on exec permission bits")
def test_non_executable_program_is_an_infrastructure_error(tmp_path: Path) -> None:
    script = tmp_path / "script.sh"
    script.write_text("#!/bin/sh\necho hi\n", encoding="utf-8")
    script.chmod(0o644)

    task = TaskConfig(id="noexec", command=str(script))
    with pytest.raises(ExecutionInfrastructureError):
        _run(task)


def test_terminate_before_launch_cancels() -> None:
    task = _task("print('never')")
    executor = Executor(task, RunRecord(task.id, task.command_line()))
    executor.terminate()

    with pytest.raises(CancellationError):
        executor.run()

    assert executor.record.started_at is None


def test_terminate_kills_running_process() -> None:
    task = _task("import time; print('started', flush=True); time.sleep(30)")
    record = RunRecord(task.id, task.command_line())
    started = threading.Event()
    executor = Executor(task, record, on_output=lambda stream, text: started.set())

    thread = threading.Thread(target=executor.run)
    t0 = time.monotonic()
    thread.start()
    assert started.wait(timeout=10)
    executor.terminate()
    thread.join(timeout=10)

    assert not thread.is_alive()
    assert time.monotonic() - t0 < 15
    assert record.outcome is ExitKind.KILLED
