"""
Narrative task handoff.

The epoch trigger queues narrative work here and returns immediately. A single
worker runs tasks in submission order, retries a task that raises, and keeps
a record of every task so failures stay visible through the API.
"""
from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from agentmarket import config

_log = logging.getLogger(__name__)

QUEUED = "queued"
RUNNING = "running"
SUCCEEDED = "succeeded"
FAILED = "failed"


@dataclass
class TaskRecord:
    id: str
    kind: str
    status: str
    created_at: float
    attempts: int = 0
    errors: List[str] = field(default_factory=list)
    summary: Optional[dict] = None
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "task_id": self.id,
            "kind": self.kind,
            "status": self.status,
            "attempts": self.attempts,
            "errors": list(self.errors),
            "summary": self.summary,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


class NarrativeTaskQueue:
    def __init__(
        self,
        max_attempts: int = config.NARRATIVE_TASK_ATTEMPTS,
        inline: bool = config.NARRATIVE_INLINE,
        history: int = 200,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_attempts = max(1, max_attempts)
        self.inline = inline
        self.history = history
        self.clock = clock
        self._lock = threading.Lock()
        self._tasks: "OrderedDict[str, TaskRecord]" = OrderedDict()
        self._futures: Dict[str, Future] = {}
        self._executor = None if inline else ThreadPoolExecutor(max_workers=1, thread_name_prefix="narrative-task")

    def submit(self, kind: str, fn: Callable[[], object]) -> TaskRecord:
        record = TaskRecord(id=uuid.uuid4().hex, kind=kind, status=QUEUED, created_at=self.clock())
        with self._lock:
            self._tasks[record.id] = record
            while len(self._tasks) > self.history:
                old_id, _ = self._tasks.popitem(last=False)
                self._futures.pop(old_id, None)
        if self._executor is None:
            self._run(record, fn)
        else:
            self._futures[record.id] = self._executor.submit(self._run, record, fn)
        return record

    def _run(self, record: TaskRecord, fn: Callable[[], object]) -> None:
        record.status = RUNNING
        record.started_at = self.clock()
        while record.attempts < self.max_attempts:
            record.attempts += 1
            try:
                result = fn()
            except Exception as e:
                _log.warning("Task %s (%s) attempt %d failed: %s", record.id, record.kind, record.attempts, e)
                record.errors.append(f"attempt {record.attempts}: {type(e).__name__}: {e}")
                continue
            record.summary = result.to_dict() if hasattr(result, "to_dict") else result
            record.status = SUCCEEDED
            record.finished_at = self.clock()
            return
        record.status = FAILED
        record.finished_at = self.clock()
        _log.error("Task %s (%s) failed after %d attempts", record.id, record.kind, record.attempts)

    def get(self, task_id: str) -> Optional[TaskRecord]:
        with self._lock:
            return self._tasks.get(task_id)

    def list(self, limit: int = 50) -> List[TaskRecord]:
        with self._lock:
            records = list(self._tasks.values())
        return list(reversed(records))[:limit]

    def wait(self, task_id: str, timeout: Optional[float] = None) -> Optional[TaskRecord]:
        """Block until a queued task has finished (tests, operator scripts)."""
        fut = self._futures.get(task_id)
        if fut is not None:
            fut.result(timeout=timeout)
        return self.get(task_id)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
