"""
Orchestration of one economy cycle: epoch commit first, then the downstream
steps that may degrade without failing it.
"""
from __future__ import annotations

import logging
from typing import Callable, List, Optional, Tuple

from agentmarket.engine import EpochResult
from agentmarket.errors import EconomyError
from agentmarket.models import EventType
from agentmarket.state import Services
from agentmarket.tasks import TaskRecord

_log = logging.getLogger(__name__)


def queue_diaries(services: Services, epoch: int) -> TaskRecord:
    return services.tasks.submit("diary", lambda: services.narrator.diaries_for_epoch(epoch))


def run_epoch(services: Services, event: Optional[EventType] = None) -> Tuple[EpochResult, TaskRecord]:
    """Commit one epoch, then hand diary generation to the task queue."""
    result = services.engine.run_epoch(event=event)
    return result, queue_diaries(services, result.epoch)


def _step(errors: List[str], name: str, fn: Callable[[], object]) -> Optional[dict]:
    try:
        report = fn()
    except EconomyError as e:
        _log.warning("%s step failed: %s", name, e.message)
        errors.append(f"{name}: {e.code}: {e.message}")
        return None
    except Exception:
        _log.exception("%s step raised unexpectedly", name)
        errors.append(f"{name}: internal_error")
        return None
    errors.extend(f"{name}: {msg}" for msg in getattr(report, "errors", []))
    return report.to_dict()


def run_cycle(
    services: Services,
    event: Optional[EventType] = None,
    narrative: bool = True,
    settle: bool = True,
) -> dict:
    """
    Epoch, diaries, social posts and settlement in one invocation.

    Only the epoch step may raise; everything after it reports into ``errors``.
    """
    result = services.engine.run_epoch(event=event)
    errors: List[str] = []
    out = {
        **result.summary(),
        "diaries": None,
        "social": None,
        "settlement": None,
    }
    if narrative:
        out["diaries"] = _step(errors, "diaries", lambda: services.narrator.diaries_for_epoch(result.epoch))
        out["social"] = _step(errors, "social", services.narrator.generate_social_posts)
    if settle:
        out["settlement"] = _step(errors, "settlement", lambda: services.settlement.settle(result.epoch))
    out["errors"] = errors
    out["ok"] = True
    return out
