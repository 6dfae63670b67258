"""
Read-only aggregation views (stats, leaderboard, feed, detail pages).

Everything is derived from stored rows; nothing here writes.
"""
from __future__ import annotations

from typing import List, Optional

from agentmarket.models import AgentStatus, EconomyAgent, EpochStatus
from agentmarket.registry import get_persona
from agentmarket.store import (
    AGENTS, DIARIES, EPOCHS, POSTS, SNAPSHOTS, TRANSACTIONS, MemoryStore,
)
from agentmarket.utils import clamp, money


def _agents(store: MemoryStore) -> List[EconomyAgent]:
    return [EconomyAgent.from_row(r) for r in store.select(AGENTS)]


def agent_card(agent: EconomyAgent) -> dict:
    persona = get_persona(agent.archetype)
    return {
        "id": agent.id,
        "name": agent.name,
        "emoji": persona.emoji,
        "archetype": agent.archetype.value,
        "strategy": agent.strategy,
        "balance": agent.balance,
        "total_earned": agent.total_earned,
        "total_spent": agent.total_spent,
        "pnl": money(agent.total_earned - agent.total_spent),
        "status": agent.status.value,
    }


def list_agents(store: MemoryStore) -> List[dict]:
    return [agent_card(a) for a in sorted(_agents(store), key=lambda a: a.id)]


def leaderboard(store: MemoryStore) -> List[dict]:
    ranked = sorted(_agents(store), key=lambda a: (-a.balance, a.id))
    return [{"rank": i + 1, **agent_card(a)} for i, a in enumerate(ranked)]


def agent_detail(store: MemoryStore, agent_id: str) -> Optional[dict]:
    row = store.first(AGENTS, {"id": agent_id})
    if row is None:
        return None
    agent = EconomyAgent.from_row(row)
    persona = get_persona(agent.archetype)
    sent = store.select(TRANSACTIONS, {"from_agent": agent_id})
    received = store.select(TRANSACTIONS, {"to_agent": agent_id})
    recent = sorted(sent + received, key=lambda t: (t["epoch"], t["seq"]), reverse=True)[:10]
    history = store.select(SNAPSHOTS, {"agent_id": agent_id}, order_by="epoch")
    return {
        **agent_card(agent),
        "skills": list(persona.skills),
        "personality": persona.personality.to_dict(),
        "recent_transactions": recent,
        "balance_history": history,
    }


def feed(store: MemoryStore, limit: int = 20) -> List[dict]:
    limit = clamp(limit, 1, 100)
    rows = store.select(TRANSACTIONS)
    rows.sort(key=lambda t: (t["epoch"], t["seq"]), reverse=True)
    return rows[:limit]


def epochs(store: MemoryStore, limit: int = 20) -> List[dict]:
    return store.select(EPOCHS, order_by="epoch_number", desc=True, limit=clamp(limit, 1, 100))


def stats(store: MemoryStore) -> dict:
    agents = _agents(store)
    total = len(agents)
    by_status = {s.value: 0 for s in AgentStatus}
    for a in agents:
        by_status[a.status.value] += 1
    total_balance = money(sum(a.balance for a in agents))
    latest = store.first(EPOCHS, {"status": EpochStatus.COMPLETED.value}, order_by="epoch_number", desc=True)
    recent = store.select(EPOCHS, {"status": EpochStatus.COMPLETED.value}, order_by="epoch_number", desc=True, limit=10)
    return {
        "agents": total,
        "active": by_status[AgentStatus.ACTIVE.value],
        "struggling": by_status[AgentStatus.STRUGGLING.value],
        "bankrupt": by_status[AgentStatus.BANKRUPT.value],
        "total_balance": total_balance,
        "average_balance": money(total_balance / total) if total else 0.0,
        "survival_rate": round((total - by_status[AgentStatus.BANKRUPT.value]) / total, 4) if total else 0.0,
        "transactions": store.count(TRANSACTIONS),
        "latest_epoch": int(latest["epoch_number"]) if latest else 0,
        "latest_event": latest["event"] if latest else None,
        "recent_events": [{"epoch": e["epoch_number"], "event": e["event"]} for e in recent],
    }


def diaries(
    store: MemoryStore,
    agent_id: Optional[str] = None,
    epoch: Optional[int] = None,
    limit: int = 20,
    offset: int = 0,
) -> dict:
    where = {}
    if agent_id:
        where["agent_id"] = agent_id
    if epoch is not None:
        where["epoch"] = epoch
    rows = store.select(DIARIES, where, order_by="created_at", desc=True)
    limit = clamp(limit, 1, 50)
    offset = max(0, offset)
    return {"entries": rows[offset:offset + limit], "total": len(rows), "limit": limit, "offset": offset}


def social(
    store: MemoryStore,
    agent_id: Optional[str] = None,
    post_type: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> dict:
    where = {}
    if agent_id:
        where["agent_id"] = agent_id
    if post_type:
        where["post_type"] = post_type
    rows = store.select(POSTS, where, order_by="created_at", desc=True)
    limit = clamp(limit, 1, 50)
    offset = max(0, offset)
    page = rows[offset:offset + limit]
    parent_ids = [p["reply_to"] for p in page if p.get("reply_to")]
    parents = {p["id"]: p for p in store.select(POSTS, {"id": parent_ids})} if parent_ids else {}
    for p in page:
        p["parent"] = parents.get(p.get("reply_to")) if p.get("reply_to") else None
    return {"posts": page, "total": len(rows), "limit": limit, "offset": offset}
