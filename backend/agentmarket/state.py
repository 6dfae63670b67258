"""
Service container.

All long-lived service objects hang off one ``Services`` instance so route
modules can depend on it and tests can swap in a fresh one.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from agentmarket import config
from agentmarket.engine import EpochEngine
from agentmarket.llm import TextGenerator
from agentmarket.narrative import Narrator
from agentmarket.rate_limit import FixedWindowRateLimiter
from agentmarket.settlement import SettlementService
from agentmarket.store import MemoryStore, build_store
from agentmarket.tasks import NarrativeTaskQueue

_log = logging.getLogger(__name__)


@dataclass
class Services:
    store: MemoryStore
    engine: EpochEngine
    narrator: Narrator
    settlement: SettlementService
    tasks: NarrativeTaskQueue
    bet_limiter: FixedWindowRateLimiter


def build_services(
    store: Optional[MemoryStore] = None,
    generator=None,
    tasks: Optional[NarrativeTaskQueue] = None,
    bet_limiter: Optional[FixedWindowRateLimiter] = None,
) -> Services:
    if store is None:
        backend = config.STORE_BACKEND if config.STORE_BACKEND in ("jsonl", "memory") else "jsonl"
        store = build_store(backend, config.LEDGER_DIR)
    engine = EpochEngine(store)
    return Services(
        store=store,
        engine=engine,
        narrator=Narrator(store, generator or TextGenerator()),
        settlement=SettlementService(store, engine.next_epoch_number),
        tasks=tasks or NarrativeTaskQueue(),
        bet_limiter=bet_limiter or FixedWindowRateLimiter(config.BET_RATE_LIMIT, config.BET_RATE_WINDOW_SECONDS),
    )


_services: Optional[Services] = None
_services_lock = threading.Lock()


def get_services() -> Services:
    global _services
    with _services_lock:
        if _services is None:
            _services = build_services()
            _log.info("Services ready (store=%s)", type(_services.store).__name__)
        return _services


def shutdown_services() -> None:
    global _services
    with _services_lock:
        if _services is not None:
            _services.tasks.shutdown(wait=False)
            _services = None
