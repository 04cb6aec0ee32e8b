from __future__ import annotations

import sys
from pathlib import Path


def py(code: str) -> list[str]:
    """argv running `code` with the current interpreter."""
    return [str(Path(sys.executable)), "-c", code]


def task_def(code: str, **fields) -> dict:
    """Task definition mapping that runs `code` with the current interpreter."""
    exe, flag, payload = py(code)
    return {"command": exe, "args": [flag, payload], **fields}


def append_line(log: Path, text: str) -> str:
    return f"open(r'{log}', 'a').write('{text}\\n')"
