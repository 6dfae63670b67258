"""
Narrative Generator: diary entries and social posts derived from committed
epoch facts.

Nothing here touches balances. Text generation runs on a bounded thread
pool and the batch is awaited against a single deadline; a unit still running
at the deadline is recorded as timed out, and any failure is recorded against
that unit only. Rows are written by the calling thread after the batch has
been collected, so a unit that timed out never persists anything.
"""
from __future__ import annotations

import logging
import random
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from agentmarket import config
from agentmarket.errors import ConflictError, DuplicateKeyError, UpstreamGenerationError, ValidationError
from agentmarket.models import (
    AgentStatus, BalanceSnapshot, DiaryEntry, EconomyAgent, EpochStatus,
    Mood, PostType, SocialPost, Transaction, TxType, to_row,
)
from agentmarket.registry import get_persona
from agentmarket.store import AGENTS, DIARIES, EPOCHS, POSTS, SNAPSHOTS, TRANSACTIONS, MemoryStore

_log = logging.getLogger(__name__)

BIG_MOVE = 0.10
RANK_SHIFT = 3
MAX_HIGHLIGHTS = 5
MIN_DIARY_CHARS = 10
MIN_POST_CHARS = 5
MAX_POST_CHARS = 500

DIARY_SYSTEM = (
    "You write short in-character diary entries for autonomous agents living in a "
    "simulated AI economy. Reply with JSON only."
)
SOCIAL_SYSTEM = (
    "You write short in-character social media posts for autonomous agents living in a "
    "simulated AI economy. Reply with JSON only."
)


@dataclass
class NarrativeReport:
    kind: str
    epoch: Optional[int] = None
    generated: int = 0
    errors: List[str] = field(default_factory=list)
    skipped: bool = False

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "epoch": self.epoch,
            "generated": self.generated,
            "errors": list(self.errors),
            "skipped": self.skipped,
        }


def _net(opening: float, closing: float) -> Tuple[float, float]:
    net = closing - opening
    if opening > 0:
        return net, net / opening
    return net, (1.0 if net > 0 else -1.0 if net < 0 else 0.0)


def infer_mood(
    agent_id: str,
    opening: float,
    closing: float,
    status: AgentStatus,
    transactions: Sequence[Transaction],
    newly_bankrupt: bool = False,
) -> Mood:
    """Mood from the sign and size of the epoch's outcome for one agent."""
    if newly_bankrupt:
        return Mood.DESPERATE
    activity = [t for t in transactions if t.note != "upkeep" and agent_id in (t.from_agent, t.to_agent)]
    if not activity:
        return Mood.NEUTRAL
    net, pct = _net(opening, closing)
    if status == AgentStatus.STRUGGLING:
        return Mood.HOPEFUL if net > 0 else Mood.DESPERATE
    if pct >= BIG_MOVE:
        return Mood.EXCITED
    if net > 0:
        return Mood.CONFIDENT
    if pct <= -BIG_MOVE:
        hit = any(
            t.from_agent == agent_id and (t.type == TxType.THEFT or t.note == "crisis loss")
            for t in activity
        )
        return Mood.ANGRY if hit else Mood.WORRIED
    if net < 0:
        return Mood.WORRIED
    return Mood.STRATEGIC


def describe_tx(tx: Transaction, agent_id: str) -> str:
    if tx.to_agent == agent_id:
        other = tx.from_agent or "market"
        return f"+{tx.amount:.2f} from {other} ({tx.type.value}: {tx.note})"
    other = tx.to_agent or "market"
    return f"-{tx.amount:.2f} to {other} ({tx.type.value}: {tx.note})"


def _counterparties(agent_id: str, transactions: Sequence[Transaction]) -> List[str]:
    out: List[str] = []
    for t in transactions:
        if t.from_agent and t.to_agent and agent_id in (t.from_agent, t.to_agent):
            other = t.to_agent if t.from_agent == agent_id else t.from_agent
            if other not in out:
                out.append(other)
    return out


def _ranks(balances: Dict[str, float]) -> Dict[str, int]:
    ordered = sorted(balances, key=lambda aid: (-balances[aid], aid))
    return {aid: i + 1 for i, aid in enumerate(ordered)}


class Narrator:
    def __init__(
        self,
        store: MemoryStore,
        generator,
        *,
        max_workers: int = config.NARRATIVE_MAX_WORKERS,
        unit_timeout: float = config.LLM_TIMEOUT_SECONDS,
        diary_agents: int = config.DIARY_AGENTS_PER_EPOCH,
        social_min: int = config.SOCIAL_MIN_POSTS,
        social_max: int = config.SOCIAL_MAX_POSTS,
        reply_chance: float = config.SOCIAL_REPLY_CHANCE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.generator = generator
        self.max_workers = max(1, max_workers)
        self.unit_timeout = unit_timeout
        self.diary_agents = diary_agents
        self.social_max = max(1, social_max)
        self.social_min = min(max(0, social_min), self.social_max)
        self.reply_chance = reply_chance
        self.clock = clock

    # --- batch runner ---

    def _run_batch(self, units: List[Tuple[str, Callable[[], object]]]) -> Tuple[Dict[str, object], List[str]]:
        results: Dict[str, object] = {}
        errors: List[str] = []
        if not units:
            return results, errors
        workers = min(self.max_workers, len(units))
        waves = -(-len(units) // workers)
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="narrative")
        try:
            futures = [(key, pool.submit(fn)) for key, fn in units]
            # One deadline for the batch: a timeout for each round of workers.
            wait([f for _, f in futures], timeout=self.unit_timeout * waves)
            for key, fut in futures:
                if not fut.done():
                    fut.cancel()
                    _log.warning("Generation for %s timed out after %ss", key, self.unit_timeout)
                    errors.append(f"{key}: timed out after {self.unit_timeout}s")
                    continue
                try:
                    results[key] = fut.result()
                except UpstreamGenerationError as e:
                    _log.warning("Generation for %s failed: %s", key, e.message)
                    errors.append(f"{key}: {e.message}")
                except Exception as e:
                    _log.exception("Generation for %s raised unexpectedly", key)
                    errors.append(f"{key}: {type(e).__name__}: {e}")
        finally:
            pool.shutdown(wait=False, cancel_futures=True)
        return results, errors

    # --- diaries ---

    def diaries_exist(self, epoch: int) -> bool:
        return self.store.count(DIARIES, {"epoch": epoch}) > 0

    def diaries_for_epoch(self, epoch: Optional[int] = None, rng: Optional[random.Random] = None) -> NarrativeReport:
        """Orchestrated entry point: resolves the epoch and skips if already written."""
        if epoch is None:
            row = self.store.first(EPOCHS, {"status": EpochStatus.COMPLETED.value}, order_by="epoch_number", desc=True)
            if row is None:
                raise ValidationError("no completed epoch to write diaries for", code="no_completed_epoch")
            epoch = int(row["epoch_number"])
        else:
            row = self.store.first(EPOCHS, {"epoch_number": epoch})
            if row is None or row.get("status") != EpochStatus.COMPLETED.value:
                raise ConflictError(f"epoch {epoch} is not completed", code="epoch_not_completed")

        if self.diaries_exist(epoch):
            _log.info("Diaries for epoch %d already exist; skipping", epoch)
            return NarrativeReport(kind="diary", epoch=epoch, skipped=True)

        agents = [EconomyAgent.from_row(r) for r in self.store.select(AGENTS, order_by="id")]
        transactions = [Transaction.from_row(r) for r in self.store.select(TRANSACTIONS, {"epoch": epoch}, order_by="seq")]
        snapshots = [BalanceSnapshot.from_row(r) for r in self.store.select(SNAPSHOTS, {"epoch": epoch})]
        return self.generate_diaries(agents, transactions, epoch, snapshots=snapshots, rng=rng)

    def generate_diaries(
        self,
        agents: Sequence[EconomyAgent],
        transactions: Sequence[Transaction],
        epoch: int,
        snapshots: Optional[Sequence[BalanceSnapshot]] = None,
        rng: Optional[random.Random] = None,
    ) -> NarrativeReport:
        rng = rng or random.Random()
        snaps = {s.agent_id: s for s in (snapshots or [])}
        involved = {p for t in transactions for p in (t.from_agent, t.to_agent) if p}
        pool = sorted((a for a in agents if a.id in involved), key=lambda a: a.id) or sorted(agents, key=lambda a: a.id)
        if 0 < self.diary_agents < len(pool):
            pool = sorted(rng.sample(pool, self.diary_agents), key=lambda a: a.id)

        balances = {a.id: a.balance for a in agents}
        ranks = _ranks(balances)
        units = []
        for agent in pool:
            snap = snaps.get(agent.id)
            opening = snap.opening_balance if snap else agent.balance
            closing = snap.closing_balance if snap else agent.balance
            status = snap.status if snap else agent.status
            newly_bankrupt = status == AgentStatus.BANKRUPT and agent.id in involved
            mine = [t for t in transactions if agent.id in (t.from_agent, t.to_agent)]
            mood = infer_mood(agent.id, opening, closing, status, mine, newly_bankrupt)
            highlights = [describe_tx(t, agent.id) for t in mine if t.note != "upkeep"][:MAX_HIGHLIGHTS]
            rivals = [aid for aid in sorted(balances, key=lambda x: -balances[x]) if aid != agent.id][:3]
            prompt = self._diary_prompt(
                agent, epoch, opening, closing, mood, highlights, rivals,
                _counterparties(agent.id, mine), ranks.get(agent.id, 0), len(agents),
            )
            units.append((agent.id, self._diary_unit(agent.id, epoch, prompt, mood, highlights)))

        results, errors = self._run_batch(units)
        generated = 0
        for agent in pool:
            entry = results.get(agent.id)
            if entry is None:
                continue
            try:
                self.store.insert(DIARIES, to_row(entry))
                generated += 1
            except DuplicateKeyError:
                errors.append(f"{agent.id}: diary for epoch {epoch} already exists")
        _log.info("Epoch %d diaries: %d written, %d errors", epoch, generated, len(errors))
        return NarrativeReport(kind="diary", epoch=epoch, generated=generated, errors=errors)

    def _diary_unit(self, agent_id: str, epoch: int, prompt: str, mood: Mood, highlights: List[str]):
        def run() -> DiaryEntry:
            data = self.generator.generate_json(DIARY_SYSTEM, prompt)
            content = str(data.get("diary") or data.get("content") or "").strip()
            if len(content) < MIN_DIARY_CHARS:
                raise UpstreamGenerationError("diary text too short")
            raw_mood = str(data.get("mood") or "").strip().lower()
            chosen = Mood(raw_mood) if raw_mood in {m.value for m in Mood} else mood
            return DiaryEntry(
                agent_id=agent_id,
                epoch=epoch,
                content=content,
                mood=chosen,
                highlights=highlights,
                id=uuid.uuid4().hex,
                created_at=self.clock(),
            )
        return run

    def _diary_prompt(self, agent, epoch, opening, closing, mood, highlights, rivals, partners, rank, total) -> str:
        persona = get_persona(agent.archetype)
        p = persona.personality
        lines = [
            f"You are {persona.name} {persona.emoji}, writing your personal diary after epoch {epoch}.",
            f"Personality: {p.emotion}, risk tolerance {p.risk_tolerance}. Style: {p.trading_style}. "
            f"Catchphrase: \"{p.catchphrase}\".",
            f"Balance went from ${opening:.2f} to ${closing:.2f}. Status: {agent.status.value}. Rank #{rank} of {total}.",
            f"You feel {mood.value}.",
            "This epoch:" if highlights else "Nothing happened to you this epoch.",
        ]
        lines.extend(f"- {h}" for h in highlights)
        if partners:
            lines.append(f"Trade partners: {', '.join(partners)}.")
        if rivals:
            lines.append(f"Richest rivals: {', '.join(rivals)}.")
        lines.append("Write a 2-4 sentence diary entry in first person, emotional and in character.")
        lines.append('Respond with JSON: {"diary": "...", "mood": "excited|worried|confident|desperate|strategic|angry|hopeful|neutral"}')
        return "\n".join(lines)

    # --- social posts ---

    def social_candidates(
        self,
        agents: Sequence[EconomyAgent],
        epoch: Optional[int],
        rng: random.Random,
    ) -> List[EconomyAgent]:
        by_id = {a.id: a for a in agents}
        notable: List[Tuple[float, str]] = []
        if epoch is not None:
            snaps = {s.agent_id: s for s in (BalanceSnapshot.from_row(r) for r in self.store.select(SNAPSHOTS, {"epoch": epoch}))}
            before = _ranks({aid: s.opening_balance for aid, s in snaps.items()})
            after = _ranks({aid: s.closing_balance for aid, s in snaps.items()})
            for aid, s in snaps.items():
                if aid not in by_id:
                    continue
                net, pct = _net(s.opening_balance, s.closing_balance)
                newly_bankrupt = s.status == AgentStatus.BANKRUPT and s.opening_balance != s.closing_balance
                if newly_bankrupt:
                    notable.append((float("inf"), aid))
                elif abs(pct) >= BIG_MOVE or abs(before[aid] - after[aid]) >= RANK_SHIFT:
                    notable.append((abs(pct), aid))
        notable.sort(key=lambda x: (-x[0], x[1]))
        chosen = [by_id[aid] for _, aid in notable][: self.social_max]

        if len(chosen) < self.social_min:
            rest = sorted((a for a in agents if a.is_participant and a not in chosen), key=lambda a: a.id)
            rng.shuffle(rest)
            chosen.extend(rest[: self.social_min - len(chosen)])
        return chosen

    def _reply_target(
        self,
        agent_id: str,
        transactions: Sequence[Transaction],
        recent: Sequence[SocialPost],
        rng: random.Random,
    ) -> Optional[SocialPost]:
        partners = _counterparties(agent_id, transactions)
        if partners:
            row = self.store.first(POSTS, {"agent_id": partners}, order_by="created_at", desc=True)
            if row is not None:
                return SocialPost.from_row(row)
        others = [p for p in recent if p.agent_id != agent_id][:5]
        if others and rng.random() < self.reply_chance:
            return rng.choice(others)
        return None

    def generate_social_posts(self, rng: Optional[random.Random] = None) -> NarrativeReport:
        rng = rng or random.Random()
        agents = [EconomyAgent.from_row(r) for r in self.store.select(AGENTS, order_by="id")]
        if not any(a.is_participant for a in agents):
            return NarrativeReport(kind="social", errors=["no active agents"])

        latest = self.store.first(EPOCHS, {"status": EpochStatus.COMPLETED.value}, order_by="epoch_number", desc=True)
        epoch = int(latest["epoch_number"]) if latest else None
        transactions = (
            [Transaction.from_row(r) for r in self.store.select(TRANSACTIONS, {"epoch": epoch}, order_by="seq")]
            if epoch is not None else []
        )
        recent = [SocialPost.from_row(r) for r in self.store.select(POSTS, order_by="created_at", desc=True, limit=10)]
        ranks = _ranks({a.id: a.balance for a in agents})

        candidates = self.social_candidates(agents, epoch, rng)
        targets: Dict[str, Optional[SocialPost]] = {}
        units = []
        for agent in candidates:
            mine = [t for t in transactions if agent.id in (t.from_agent, t.to_agent)]
            target = self._reply_target(agent.id, mine, recent, rng)
            targets[agent.id] = target
            prompt = self._social_prompt(agent, ranks.get(agent.id, 0), len(agents), mine, target, agents)
            units.append((agent.id, self._social_unit(agent, prompt, target)))

        results, errors = self._run_batch(units)
        generated = 0
        for agent in candidates:
            post = results.get(agent.id)
            if post is None:
                continue
            self.store.insert(POSTS, to_row(post))
            generated += 1
        _log.info("Social pass: %d posts, %d errors", generated, len(errors))
        return NarrativeReport(kind="social", epoch=epoch, generated=generated, errors=errors)

    def _social_unit(self, agent: EconomyAgent, prompt: str, target: Optional[SocialPost]):
        def run() -> SocialPost:
            data = self.generator.generate_json(SOCIAL_SYSTEM, prompt, max_tokens=200)
            content = str(data.get("content") or "").strip()
            if not (MIN_POST_CHARS < len(content) < MAX_POST_CHARS):
                raise UpstreamGenerationError(f"post length {len(content)} out of bounds")
            if target is not None:
                post_type = PostType.REPLY
            else:
                raw = str(data.get("post_type") or "").strip().lower()
                post_type = PostType(raw) if raw in ("post", "announcement", "trash_talk") else PostType.POST
            return SocialPost(
                id=uuid.uuid4().hex,
                agent_id=agent.id,
                content=content,
                post_type=post_type,
                reply_to=target.id if target else None,
                created_at=self.clock(),
            )
        return run

    def _social_prompt(self, agent, rank, total, mine, target, agents) -> str:
        persona = get_persona(agent.archetype)
        lines = [
            f"You are {persona.name} {persona.emoji}, an agent in the AI economy.",
            f"Voice: {persona.voice} Catchphrase: \"{persona.personality.catchphrase}\".",
            f"Balance ${agent.balance:.2f} ({agent.status.value}), rank #{rank} of {total}.",
        ]
        activity = [describe_tx(t, agent.id) for t in mine if t.note != "upkeep"][:MAX_HIGHLIGHTS]
        if activity:
            lines.append("Your latest activity:")
            lines.extend(f"- {h}" for h in activity)
        if target is not None:
            lines.append(f"{target.agent_id} posted: \"{target.content}\"")
            lines.append("Write a short reply (1-2 sentences). Agree, disagree, trash talk or gloat.")
            lines.append('Respond with JSON: {"content": "...", "post_type": "reply"}')
        else:
            others = [a.id for a in sorted(agents, key=lambda a: -a.balance) if a.id != agent.id][:5]
            lines.append(f"Agents you might mention: {', '.join(others)}.")
            lines.append("Write a short social post (1-3 sentences) reacting to your situation.")
            lines.append('Respond with JSON: {"content": "...", "post_type": "post|announcement|trash_talk"}')
        return "\n".join(lines)
