"""
Epoch Engine: advances the economy by exactly one round.

A run has two phases. The compute phase is pure: it takes the participating
agents, an event and a random source and produces the ordered transaction
list plus closing balances. The persist phase claims the epoch number in the
store, then writes transactions, agent rows, balance snapshots and the
completion mark in one atomic block. A failure after the claim leaves the
epoch row behind with ``status=failed`` so the number is never silently reused.

The whole run holds the store exclusively, so the roster and the next epoch
number are read fresh from the ledger every time.
"""
from __future__ import annotations

import logging
import random
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional

from agentmarket import config
from agentmarket.behaviors import EpochContext, PeerView, rule_for
from agentmarket.errors import ConflictError, DuplicateKeyError, PersistenceError, ValidationError
from agentmarket.events import MarketEvent, draw_event, event_for
from agentmarket.models import (
    AgentStatus, BalanceSnapshot, Epoch, EpochStatus, EconomyAgent, EventType,
    Transaction, TransactionDraft, TxType, to_row,
)
from agentmarket.registry import roster
from agentmarket.store import AGENTS, EPOCHS, SNAPSHOTS, TRANSACTIONS, MemoryStore
from agentmarket.utils import money

_log = logging.getLogger(__name__)

OPPORTUNITY_BONUS_RATE = 0.10
CRISIS_MAX_LOSS = 5.0


@dataclass
class EpochResult:
    epoch: int
    event: MarketEvent
    transactions: List[Transaction]
    bankruptcies: List[str]
    agents: List[EconomyAgent]
    snapshots: List[BalanceSnapshot] = field(default_factory=list)

    def summary(self) -> dict:
        return {
            "epoch": self.epoch,
            "event": self.event.type.value,
            "event_description": self.event.description,
            "transactionCount": len(self.transactions),
            "bankruptcies": list(self.bankruptcies),
        }


@dataclass
class _Simulation:
    drafts: List[TransactionDraft]
    opening: Dict[str, float]
    closing: Dict[str, float]
    statuses: Dict[str, AgentStatus]
    bankruptcies: List[str]


class EpochEngine:
    def __init__(
        self,
        store: MemoryStore,
        *,
        starting_balance: float = config.STARTING_BALANCE,
        fee_rate: float = config.PLATFORM_FEE_RATE,
        upkeep_cost: float = config.UPKEEP_COST,
        struggling_threshold: float = config.STRUGGLING_THRESHOLD,
        bankruptcy_threshold: float = config.BANKRUPTCY_THRESHOLD,
        seed: Optional[int] = config.ECONOMY_SEED,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.starting_balance = starting_balance
        self.fee_rate = fee_rate
        self.upkeep_cost = upkeep_cost
        self.struggling_threshold = struggling_threshold
        self.bankruptcy_threshold = bankruptcy_threshold
        self.seed = seed
        self.clock = clock
        self._run_lock = threading.Lock()

    # --- roster ---

    def list_agents(self) -> List[EconomyAgent]:
        return [EconomyAgent.from_row(r) for r in self.store.select(AGENTS, order_by="id")]

    def initialize_agents(self) -> List[EconomyAgent]:
        """Create any missing persona rows. Existing agents are left untouched."""
        now = self.clock()
        created = 0
        for persona in roster():
            if self.store.first(AGENTS, {"id": persona.id}) is not None:
                continue
            agent = EconomyAgent(
                id=persona.id,
                name=persona.name,
                archetype=persona.archetype,
                strategy=persona.personality.trading_style,
                balance=money(self.starting_balance),
                created_at=now,
                updated_at=now,
            )
            try:
                self.store.insert(AGENTS, to_row(agent))
                created += 1
            except DuplicateKeyError:
                _log.info("Agent %s was created concurrently; keeping the existing row", persona.id)
        if created:
            _log.info("Initialized %d economy agents", created)
        return self.list_agents()

    # --- epochs ---

    def next_epoch_number(self) -> int:
        latest = self.store.max(EPOCHS, "epoch_number")
        return 1 if latest is None else int(latest) + 1

    def status_for(self, balance: float, previous: AgentStatus = AgentStatus.ACTIVE) -> AgentStatus:
        if previous == AgentStatus.BANKRUPT or balance < self.bankruptcy_threshold:
            return AgentStatus.BANKRUPT
        if balance < self.struggling_threshold:
            return AgentStatus.STRUGGLING
        return AgentStatus.ACTIVE

    def rng_for(self, epoch: int) -> random.Random:
        if self.seed is None:
            return random.Random()
        return random.Random(f"{self.seed}:{epoch}")

    def run_epoch(
        self,
        epoch_number: Optional[int] = None,
        *,
        event: Optional[EventType] = None,
        rng: Optional[random.Random] = None,
    ) -> EpochResult:
        """
        Run one epoch. A second run, in this process or in another one sharing
        the store, is refused with ``epoch_in_progress`` rather than queued.
        """
        if not self._run_lock.acquire(blocking=False):
            raise ConflictError("another epoch run is in progress", code="epoch_in_progress")
        try:
            with self.store.claim("epoch"), self.store.exclusive():
                return self._run_locked(epoch_number, event, rng)
        finally:
            self._run_lock.release()

    def _run_locked(
        self,
        epoch_number: Optional[int],
        event_type: Optional[EventType],
        rng: Optional[random.Random],
    ) -> EpochResult:
        expected = self.next_epoch_number()
        if epoch_number is None:
            epoch_number = expected
        elif epoch_number < expected:
            raise ConflictError(f"epoch {epoch_number} already exists", code="epoch_exists")
        elif epoch_number > expected:
            raise ValidationError(f"next epoch is {expected}, not {epoch_number}", code="epoch_gap")

        agents = self.list_agents()
        participants = [a for a in agents if a.is_participant]
        if len(participants) < 2:
            raise ConflictError(
                f"{len(participants)} active agents; at least two are needed", code="not_enough_agents"
            )

        rng = rng or self.rng_for(epoch_number)
        event = event_for(event_type, epoch_number) if event_type else draw_event(rng, epoch_number)
        _log.info("Epoch %d starting: %s (%d participants)", epoch_number, event.type.value, len(participants))

        sim = self.simulate(epoch_number, participants, event, rng)
        return self._persist(epoch_number, event, agents, sim)

    # --- compute phase ---

    def simulate(
        self,
        epoch: int,
        participants: List[EconomyAgent],
        event: MarketEvent,
        rng: random.Random,
    ) -> _Simulation:
        participants = sorted(participants, key=lambda a: a.id)
        working = {a.id: money(a.balance) for a in participants}
        opening = dict(working)
        ctx = EpochContext(
            epoch=epoch,
            event=event,
            peers=tuple(PeerView(a.id, a.archetype, a.balance, a.status) for a in participants),
        )
        applied: List[TransactionDraft] = []

        def apply(d: TransactionDraft, capped: bool = True) -> Optional[TransactionDraft]:
            amount = money(d.amount)
            if d.from_agent is not None and capped:
                amount = min(amount, money(max(working[d.from_agent], 0.0)))
            if amount <= 0:
                return None
            if d.from_agent is not None:
                working[d.from_agent] = money(working[d.from_agent] - amount)
            if d.to_agent is not None:
                working[d.to_agent] = money(working[d.to_agent] + amount)
            d = replace(d, amount=amount)
            applied.append(d)
            return d

        order = list(participants)
        rng.shuffle(order)
        for agent in order:
            view = PeerView(agent.id, agent.archetype, working[agent.id], agent.status)
            for draft in rule_for(agent.archetype)(view, ctx, rng):
                if draft.from_agent == draft.to_agent:
                    continue
                if any(p is not None and p not in working for p in (draft.from_agent, draft.to_agent)):
                    continue
                done = apply(draft)
                if done is None or done.type != TxType.TRADE:
                    continue
                fee = apply(TransactionDraft(
                    TxType.FEE, done.to_agent, None,
                    max(0.01, done.amount * self.fee_rate * event.fee_modifier),
                    "platform fee",
                ))
                if event.type == EventType.OPPORTUNITY:
                    net = done.amount - (fee.amount if fee else 0.0)
                    apply(TransactionDraft(
                        TxType.EVENT_PAYOUT, None, done.to_agent,
                        net * OPPORTUNITY_BONUS_RATE, "opportunity bonus",
                    ))

        if event.type == EventType.CRISIS:
            victim = rng.choice(participants)
            apply(TransactionDraft(
                TxType.LOSS, victim.id, None, rng.uniform(1.0, CRISIS_MAX_LOSS), "crisis loss",
            ))

        upkeep = money(self.upkeep_cost * event.upkeep_multiplier)
        for agent in participants:
            apply(TransactionDraft(TxType.FEE, agent.id, None, upkeep, "upkeep"), capped=False)

        bankruptcies: List[str] = []
        statuses: Dict[str, AgentStatus] = {}
        for agent in participants:
            if working[agent.id] < 0:
                apply(TransactionDraft(
                    TxType.BANKRUPTCY_WRITEOFF, None, agent.id, -working[agent.id], "debt written off",
                ))
                working[agent.id] = 0.0
            status = self.status_for(working[agent.id], agent.status)
            statuses[agent.id] = status
            if status == AgentStatus.BANKRUPT:
                bankruptcies.append(agent.id)

        return _Simulation(applied, opening, working, statuses, bankruptcies)

    # --- persist phase ---

    def _persist(
        self,
        epoch_number: int,
        event: MarketEvent,
        agents: List[EconomyAgent],
        sim: _Simulation,
    ) -> EpochResult:
        now = self.clock()
        claim = Epoch(
            epoch_number=epoch_number,
            event=event.type,
            event_description=event.description,
            status=EpochStatus.RUNNING,
            created_at=now,
        )
        try:
            self.store.insert(EPOCHS, to_row(claim))
        except DuplicateKeyError:
            raise ConflictError(f"epoch {epoch_number} already exists", code="epoch_exists") from None

        transactions = [
            Transaction(
                id=uuid.uuid4().hex,
                epoch=epoch_number,
                seq=i,
                from_agent=d.from_agent,
                to_agent=d.to_agent,
                amount=d.amount,
                type=d.type,
                note=d.note,
                created_at=now,
            )
            for i, d in enumerate(sim.drafts, start=1)
        ]

        try:
            with self.store.atomic():
                self.store.insert_many(TRANSACTIONS, [to_row(t) for t in transactions])

                updated: List[EconomyAgent] = []
                for agent in agents:
                    if agent.id not in sim.closing:
                        updated.append(agent)
                        continue
                    earned = sum(t.amount for t in transactions
                                 if t.to_agent == agent.id and t.type != TxType.BANKRUPTCY_WRITEOFF)
                    spent = sum(t.amount for t in transactions if t.from_agent == agent.id)
                    agent = replace(
                        agent,
                        balance=sim.closing[agent.id],
                        total_earned=money(agent.total_earned + earned),
                        total_spent=money(agent.total_spent + spent),
                        status=sim.statuses[agent.id],
                        updated_at=now,
                    )
                    self.store.update(AGENTS, {"id": agent.id}, {
                        "balance": agent.balance,
                        "total_earned": agent.total_earned,
                        "total_spent": agent.total_spent,
                        "status": agent.status.value,
                        "updated_at": now,
                    })
                    updated.append(agent)

                snapshots = [
                    BalanceSnapshot(
                        agent_id=a.id,
                        epoch=epoch_number,
                        opening_balance=sim.opening.get(a.id, a.balance),
                        closing_balance=a.balance,
                        status=a.status,
                    )
                    for a in updated
                ]
                self.store.insert_many(SNAPSHOTS, [to_row(s) for s in snapshots])

                top = max(sim.closing, key=lambda aid: (sim.closing[aid] - sim.opening[aid], aid))
                self.store.update(EPOCHS, {"epoch_number": epoch_number}, {
                    "status": EpochStatus.COMPLETED.value,
                    "total_volume": money(sum(t.amount for t in transactions if t.type == TxType.TRADE)),
                    "transaction_count": len(transactions),
                    "active_agents": len(sim.closing) - len(sim.bankruptcies),
                    "bankruptcies": len(sim.bankruptcies),
                    "top_earner": top,
                    "completed_at": self.clock(),
                })
        except Exception as e:
            _log.exception("Epoch %d failed during persistence", epoch_number)
            self._mark_failed(epoch_number, e)
            raise

        for aid in sim.bankruptcies:
            _log.info("Epoch %d: %s went bankrupt", epoch_number, aid)
        _log.info(
            "Epoch %d completed: %s, %d transactions, %d bankruptcies",
            epoch_number, event.type.value, len(transactions), len(sim.bankruptcies),
        )
        return EpochResult(
            epoch=epoch_number,
            event=event,
            transactions=transactions,
            bankruptcies=list(sim.bankruptcies),
            agents=updated,
            snapshots=snapshots,
        )

    def _mark_failed(self, epoch_number: int, error: Exception) -> None:
        try:
            self.store.update(EPOCHS, {"epoch_number": epoch_number}, {
                "status": EpochStatus.FAILED.value,
                "error": str(error)[:500],
                "completed_at": self.clock(),
            })
        except PersistenceError:
            _log.error("Could not record failure of epoch %d", epoch_number)

    # --- reads used by other services ---

    def latest_completed_epoch(self) -> Optional[Epoch]:
        row = self.store.first(EPOCHS, {"status": EpochStatus.COMPLETED.value}, order_by="epoch_number", desc=True)
        return Epoch.from_row(row) if row else None

    def transactions_for(self, epoch_number: int) -> List[Transaction]:
        rows = self.store.select(TRANSACTIONS, {"epoch": epoch_number}, order_by="seq")
        return [Transaction.from_row(r) for r in rows]
