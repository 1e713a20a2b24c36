"""
Append-only text logs shared between concurrent subject runs.

Each record is encoded up front and written with a single ``os.write`` on a
descriptor opened with ``O_APPEND``, so lines from parallel subjects never
interleave.
"""

from __future__ import annotations

import json
import os
from pathlib import Path


def append_line(path: Path, line: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = (line.rstrip("\n") + "\n").encode("utf-8")
    fd = os.open(path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
    try:
        os.write(fd, payload)
    finally:
        os.close(fd)


def append_json(path: Path, record: dict) -> None:
    append_line(path, json.dumps(record, default=str, sort_keys=True))


def read_lines(path: Path) -> list[str]:
    if not path.exists():
        return []
    return [line for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


def read_jsonl(path: Path) -> list[dict]:
    return [json.loads(line) for line in read_lines(path)]
