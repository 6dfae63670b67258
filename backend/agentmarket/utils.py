"""
Shared utility functions: JSONL I/O, file locks, money rounding, JSON extraction.
"""
from __future__ import annotations

import json
import logging
import os
import re
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

_log = logging.getLogger(__name__)


@contextmanager
def hold_file_lock(path: Path, wait: bool = True) -> Iterator[bool]:
    """
    Advisory lock on ``path`` shared by every process using the same directory.

    Yields True while the lock is held. With ``wait=False`` a lock held
    elsewhere yields False straight away instead of blocking.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        if os.name != "posix":
            _log.warning("No advisory file locks on %s; %s is not guarded across processes", os.name, path.name)
            yield True
            return

        import fcntl

        flags = fcntl.LOCK_EX if wait else fcntl.LOCK_EX | fcntl.LOCK_NB
        try:
            fcntl.flock(f.fileno(), flags)
        except BlockingIOError:
            locked = False
        else:
            locked = True
        try:
            yield locked
        finally:
            if locked:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)


def file_signature(path: Path) -> Optional[Tuple[int, int, int]]:
    """(inode, size, mtime) of a file, or None when it does not exist."""
    try:
        st = path.stat()
    except FileNotFoundError:
        return None
    return st.st_ino, st.st_size, st.st_mtime_ns


def _dump(row: dict) -> str:
    return json.dumps(row, ensure_ascii=False, separators=(",", ":")) + "\n"


def append_jsonl(path: Path, row: dict) -> None:
    """Append one ledger row and force it to disk before returning."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(_dump(row))
        f.flush()
        os.fsync(f.fileno())


def read_jsonl(path: Path) -> List[dict]:
    if not path.exists():
        return []
    rows: List[dict] = []
    with path.open("r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                row = json.loads(line)
            except json.JSONDecodeError:
                _log.warning("%s:%d is not valid JSON; skipping", path.name, lineno)
                continue
            if isinstance(row, dict):
                rows.append(row)
    return rows


def write_jsonl_atomic(path: Path, rows: List[dict]) -> None:
    """Rewrite a whole table via temp file + rename so readers never see half a file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        f.writelines(_dump(r) for r in rows)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)


def money(v: float) -> float:
    """Round a currency amount to the ledger's fixed precision (4 places)."""
    return round(float(v), 4) + 0.0  # folds -0.0 into 0.0


def clamp(v: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, v))


def extract_json_object(text: str) -> Optional[dict]:
    """Return the first balanced JSON object in ``text`` (fenced or bare)."""
    content = text or ""
    if "```" in content:
        m = re.search(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```", content)
        if m:
            content = m.group(1)
    i = content.find("{")
    if i < 0:
        return None
    depth = 0
    in_str = False
    escaped = False
    for k, c in enumerate(content[i:], start=i):
        if in_str:
            if escaped:
                escaped = False
            elif c == "\\":
                escaped = True
            elif c == '"':
                in_str = False
            continue
        if c == '"':
            in_str = True
        elif c == "{":
            depth += 1
        elif c == "}":
            depth -= 1
            if depth == 0:
                try:
                    obj = json.loads(content[i : k + 1])
                except json.JSONDecodeError:
                    return None
                return obj if isinstance(obj, dict) else None
    return None
