"""
Ledger store: a small table store with uniqueness constraints and atomic
multi-row updates.

Two backends share one implementation:

- ``MemoryStore`` keeps every table in process memory (tests, ephemeral runs).
- ``JsonlStore`` mirrors each table to ``<root>/<table>.jsonl``. Inserts are
  appended; updates rewrite the table atomically (tmp file + replace).

Every operation runs under ``exclusive()``. For ``JsonlStore`` that is an
advisory lock on ``<root>/.ledger.lock`` plus a reload of any table another
process changed since we last looked, so several workers can share one
directory without overwriting each other's rows.

Rows are plain dicts. ``where`` filters are dicts of column -> expected value;
``None`` matches a missing/null column and a list/tuple/set matches any member.
"""
from __future__ import annotations

import copy
import logging
import threading
from contextlib import contextmanager, nullcontext
from enum import Enum
from pathlib import Path
from typing import Any, ContextManager, Dict, Iterable, Iterator, List, Optional, Tuple

from agentmarket.errors import ConflictError, DuplicateKeyError, PersistenceError
from agentmarket.utils import append_jsonl, file_signature, hold_file_lock, read_jsonl, write_jsonl_atomic

_log = logging.getLogger(__name__)

AGENTS = "economy_agents"
TRANSACTIONS = "economy_transactions"
EPOCHS = "economy_epochs"
SNAPSHOTS = "balance_snapshots"
DIARIES = "agent_diaries"
POSTS = "agent_posts"
PREDICTIONS = "predictions"
USER_POINTS = "user_points"

UNIQUE_KEYS: Dict[str, Tuple[str, ...]] = {
    AGENTS: ("id",),
    TRANSACTIONS: ("id",),
    EPOCHS: ("epoch_number",),
    SNAPSHOTS: ("agent_id", "epoch"),
    DIARIES: ("agent_id", "epoch"),
    POSTS: ("id",),
    PREDICTIONS: ("id",),
    USER_POINTS: ("user_id",),
}

Where = Optional[Dict[str, Any]]


def _plain(row: dict) -> dict:
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in row.items()}


def _matches(row: dict, where: Where) -> bool:
    if not where:
        return True
    for k, want in where.items():
        if isinstance(want, Enum):
            want = want.value
        have = row.get(k)
        if want is None:
            if have is not None:
                return False
        elif isinstance(want, (list, tuple, set, frozenset)):
            wanted = {w.value if isinstance(w, Enum) else w for w in want}
            if have not in wanted:
                return False
        elif have != want:
            return False
    return True


def _sort_key(column: str):
    def key(row: dict):
        v = row.get(column)
        return (v is None, v if v is not None else 0)
    return key


class MemoryStore:
    def __init__(self) -> None:
        self._tables: Dict[str, List[dict]] = {t: [] for t in UNIQUE_KEYS}
        self._lock = threading.RLock()
        self._hold = 0
        self._depth = 0
        self._dirty: set = set()

    # --- holds ---

    @contextmanager
    def exclusive(self) -> Iterator["MemoryStore"]:
        """Hold the whole ledger for a read-modify-write sequence. Re-entrant."""
        with self._lock:
            if self._hold:
                self._hold += 1
                try:
                    yield self
                finally:
                    self._hold -= 1
                return
            with self._ledger_lock():
                self._refresh()
                self._hold = 1
                try:
                    yield self
                finally:
                    self._hold = 0

    @contextmanager
    def claim(self, name: str) -> Iterator[None]:
        """
        Claim a named job for as long as the block runs.

        Raises ``ConflictError`` (``<name>_in_progress``) when another process
        sharing this store already holds it. Does not block.
        """
        with self._job_lock(name) as held:
            if not held:
                raise ConflictError(f"{name} is running in another process", code=f"{name}_in_progress")
            yield

    # --- reads ---

    def select(
        self,
        table: str,
        where: Where = None,
        order_by: Optional[str] = None,
        desc: bool = False,
        limit: Optional[int] = None,
    ) -> List[dict]:
        with self.exclusive():
            rows = [dict(r) for r in self._table(table) if _matches(r, where)]
        if order_by:
            rows.sort(key=_sort_key(order_by), reverse=desc)
        if limit is not None and limit >= 0:
            rows = rows[:limit]
        return rows

    def first(self, table: str, where: Where = None, order_by: Optional[str] = None, desc: bool = False) -> Optional[dict]:
        rows = self.select(table, where, order_by=order_by, desc=desc, limit=1)
        return rows[0] if rows else None

    def count(self, table: str, where: Where = None) -> int:
        with self.exclusive():
            return sum(1 for r in self._table(table) if _matches(r, where))

    def max(self, table: str, column: str, where: Where = None) -> Optional[Any]:
        with self.exclusive():
            values = [r.get(column) for r in self._table(table) if _matches(r, where)]
        values = [v for v in values if v is not None]
        return max(values) if values else None

    # --- writes ---

    def insert(self, table: str, row: dict) -> dict:
        row = _plain(row)
        with self.exclusive():
            rows = self._table(table)
            key = self._key(table, row)
            if any(self._key(table, r) == key for r in rows):
                raise DuplicateKeyError(f"{table} already has a row for {key}")
            rows.append(row)
            try:
                self._written(table, appended=row)
            except PersistenceError:
                rows.pop()
                raise
        return dict(row)

    def insert_many(self, table: str, new_rows: List[dict]) -> int:
        with self.atomic():
            for r in new_rows:
                self.insert(table, r)
        return len(new_rows)

    def update(self, table: str, where: Where, changes: dict) -> int:
        """Apply ``changes`` to matching rows. Memory is only swapped once the write has landed."""
        changes = _plain(changes)
        with self.exclusive():
            old = self._table(table)
            new: List[dict] = []
            n = 0
            for r in old:
                if _matches(r, where):
                    r = {**r, **changes}
                    n += 1
                new.append(r)
            if n:
                self._tables[table] = new
                try:
                    self._written(table)
                except PersistenceError:
                    self._tables[table] = old
                    raise
        return n

    @contextmanager
    def atomic(self) -> Iterator["MemoryStore"]:
        """All writes inside the block land together or not at all."""
        with self.exclusive():
            outer = self._depth == 0
            backup = copy.deepcopy(self._tables) if outer else None
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if outer:
                    self._tables = backup
                    self._dirty.clear()
                raise
            self._depth -= 1
            if outer and self._dirty:
                dirty, self._dirty = self._dirty, set()
                written: List[str] = []
                try:
                    self._flush(dirty, written)
                except PersistenceError:
                    _log.error("Atomic write failed; restoring %s", sorted(dirty))
                    self._tables = backup
                    self._restore(written)
                    raise

    # --- internals ---

    def _table(self, table: str) -> List[dict]:
        try:
            return self._tables[table]
        except KeyError:
            raise ValueError(f"unknown table: {table}") from None

    def _key(self, table: str, row: dict) -> tuple:
        return tuple(row.get(c) for c in UNIQUE_KEYS[table])

    def _written(self, table: str, appended: Optional[dict] = None) -> None:
        if self._depth:
            self._dirty.add(table)
            return
        self._persist(table, appended)

    def _ledger_lock(self) -> ContextManager:
        return nullcontext(True)

    def _job_lock(self, name: str) -> ContextManager:
        return nullcontext(True)

    def _refresh(self) -> None:
        pass

    def _persist(self, table: str, appended: Optional[dict]) -> None:
        pass

    def _flush(self, tables: Iterable[str], written: List[str]) -> None:
        pass

    def _restore(self, tables: Iterable[str]) -> None:
        pass


class JsonlStore(MemoryStore):
    def __init__(self, root: Path) -> None:
        super().__init__()
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._seen: Dict[str, Any] = {}
        with self.exclusive():
            for table in UNIQUE_KEYS:
                if self._tables[table]:
                    _log.info("Loaded %d rows from %s", len(self._tables[table]), self._path(table))

    def _path(self, table: str) -> Path:
        return self.root / f"{table}.jsonl"

    def _ledger_lock(self) -> ContextManager:
        return hold_file_lock(self.root / ".ledger.lock")

    def _job_lock(self, name: str) -> ContextManager:
        return hold_file_lock(self.root / f".{name}.lock", wait=False)

    def _refresh(self) -> None:
        for table in UNIQUE_KEYS:
            sig = file_signature(self._path(table))
            if table in self._seen and sig == self._seen[table]:
                continue
            try:
                self._tables[table] = read_jsonl(self._path(table))
            except OSError as e:
                _log.error("Failed to load %s: %s", table, e)
                raise PersistenceError(f"could not read {table}: {e}") from e
            self._seen[table] = sig

    def _persist(self, table: str, appended: Optional[dict]) -> None:
        path = self._path(table)
        try:
            if appended is not None:
                append_jsonl(path, appended)
            else:
                write_jsonl_atomic(path, self._tables[table])
        except OSError as e:
            self._seen.pop(table, None)
            _log.error("Failed to persist %s: %s", table, e)
            raise PersistenceError(f"could not write {table}: {e}") from e
        self._seen[table] = file_signature(path)

    def _flush(self, tables: Iterable[str], written: List[str]) -> None:
        for table in sorted(tables):
            self._persist(table, None)
            written.append(table)

    def _restore(self, tables: Iterable[str]) -> None:
        for table in tables:
            try:
                self._persist(table, None)
            except PersistenceError:
                _log.error("%s on disk is ahead of memory; it is reloaded on next access", table)


def build_store(backend: str, root: Path) -> MemoryStore:
    if backend == "memory":
        return MemoryStore()
    return JsonlStore(root)
