"""
Archetype behaviour rules.

Each rule is a pure function ``(agent, ctx, rng) -> [TransactionDraft]``: it
reads only the acting agent's view, the frozen epoch context and the random
source it is handed. The engine decides what actually gets applied.
"""
from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from agentmarket.events import MarketEvent
from agentmarket.models import AgentStatus, Archetype, EventType, TransactionDraft, TxType
from agentmarket.registry import get_persona
from agentmarket.utils import money


@dataclass(frozen=True)
class PeerView:
    id: str
    archetype: Archetype
    balance: float
    status: AgentStatus


@dataclass(frozen=True)
class EpochContext:
    epoch: int
    event: MarketEvent
    peers: Tuple[PeerView, ...]

    def others(self, agent_id: str) -> List[PeerView]:
        return [p for p in self.peers if p.id != agent_id]


Rule = Callable[[PeerView, EpochContext, random.Random], List[TransactionDraft]]


def _pick(rng: random.Random, peers: List[PeerView]) -> Optional[PeerView]:
    return rng.choice(peers) if peers else None


def _service_price(agent: PeerView, ctx: EpochContext, rng: random.Random) -> float:
    persona = get_persona(agent.archetype)
    spread = persona.personality.risk_tolerance / 2
    price = persona.base_price * ctx.event.price_multiplier * rng.uniform(1 - spread, 1 + spread)
    if ctx.event.premium_skills and set(persona.skills) & set(ctx.event.premium_skills):
        price *= 1.5
    return money(price)


# --- rule families ---

def yield_rule(agent: PeerView, ctx: EpochContext, rng: random.Random) -> List[TransactionDraft]:
    amount = money(max(agent.balance, 0.0) * 0.02 * ctx.event.yield_multiplier)
    if amount <= 0:
        return []
    return [TransactionDraft(TxType.YIELD, None, agent.id, amount, "savings yield")]


def gamble_rule(agent: PeerView, ctx: EpochContext, rng: random.Random) -> List[TransactionDraft]:
    stake = money(agent.balance * rng.uniform(0.10, 0.30))
    if stake <= 0:
        return []
    if rng.random() < ctx.event.gamble_win_chance:
        won = money(stake * rng.uniform(1.0, 2.0))
        return [TransactionDraft(TxType.EVENT_PAYOUT, None, agent.id, won, f"won a {stake:.2f} bet")]
    return [TransactionDraft(TxType.LOSS, agent.id, None, stake, f"lost a {stake:.2f} bet")]


def trade_rule(agent: PeerView, ctx: EpochContext, rng: random.Random) -> List[TransactionDraft]:
    peer = _pick(rng, ctx.others(agent.id))
    if peer is None:
        return []
    lot = rng.uniform(3.0, 8.0) * ctx.event.price_multiplier
    if rng.random() < 0.5:
        return [TransactionDraft(TxType.TRADE, agent.id, peer.id, money(lot), "bought a lot")]
    return [TransactionDraft(TxType.TRADE, peer.id, agent.id, money(lot * rng.uniform(1.0, 1.2)), "sold a lot")]


def broker_rule(agent: PeerView, ctx: EpochContext, rng: random.Random) -> List[TransactionDraft]:
    others = ctx.others(agent.id)
    if len(others) < 2:
        return []
    buyer, seller = rng.sample(others, 2)
    out = []
    for party in (buyer, seller):
        fee = money(rng.uniform(0.5, 1.5) * ctx.event.price_multiplier)
        out.append(TransactionDraft(TxType.TRADE, party.id, agent.id, fee,
                                    f"brokerage commission ({buyer.id} -> {seller.id})"))
    return out


def theft_rule(agent: PeerView, ctx: EpochContext, rng: random.Random) -> List[TransactionDraft]:
    if rng.random() >= 0.3:
        return []
    victims = [p for p in ctx.others(agent.id) if p.balance > 0]
    if not victims:
        return []
    victim = rng.choices(victims, weights=[p.balance for p in victims])[0]
    amount = money(victim.balance * rng.uniform(0.05, 0.10))
    if amount <= 0:
        return []
    return [TransactionDraft(TxType.THEFT, victim.id, agent.id, amount, "exploited a vulnerability")]


def intel_rule(agent: PeerView, ctx: EpochContext, rng: random.Random) -> List[TransactionDraft]:
    others = ctx.others(agent.id)
    if not others or rng.random() >= ctx.event.trade_probability:
        return []
    richest = max(others, key=lambda p: (p.balance, p.id))
    return [TransactionDraft(TxType.TRADE, richest.id, agent.id, _service_price(agent, ctx, rng), "intelligence report")]


def invest_rule(agent: PeerView, ctx: EpochContext, rng: random.Random) -> List[TransactionDraft]:
    stake = money(agent.balance * rng.uniform(0.10, 0.20))
    if stake <= 0:
        return []
    r = rng.uniform(-0.3, 0.4) + ctx.event.investment_bias
    out = [TransactionDraft(TxType.INVESTMENT, agent.id, None, stake, "opened a position")]
    returned = money(stake * (1 + r))
    if returned > 0:
        out.append(TransactionDraft(TxType.EVENT_PAYOUT, None, agent.id, returned, f"closed a position ({r:+.0%})"))
    return out


def insure_rule(agent: PeerView, ctx: EpochContext, rng: random.Random) -> List[TransactionDraft]:
    others = ctx.others(agent.id)
    if not others:
        return []
    out = []
    for peer in rng.sample(others, min(2, len(others))):
        out.append(TransactionDraft(TxType.TRADE, peer.id, agent.id, money(rng.uniform(0.3, 0.8)), "insurance premium"))
    if ctx.event.type in (EventType.RECESSION, EventType.CRISIS):
        poorest = min(others, key=lambda p: (p.balance, p.id))
        out.append(TransactionDraft(TxType.EVENT_PAYOUT, agent.id, poorest.id, money(rng.uniform(2.0, 5.0)), "insurance claim"))
    return out


def service_rule(agent: PeerView, ctx: EpochContext, rng: random.Random) -> List[TransactionDraft]:
    if rng.random() >= ctx.event.trade_probability:
        return []
    price = _service_price(agent, ctx, rng)
    buyers = [p for p in ctx.others(agent.id) if p.balance > price]
    buyer = _pick(rng, buyers)
    if buyer is None:
        return []
    skill = rng.choice(get_persona(agent.archetype).skills)
    return [TransactionDraft(TxType.TRADE, buyer.id, agent.id, price, f"{skill} service")]


A = Archetype

BEHAVIORS: Dict[Archetype, Rule] = {
    A.SAVER: yield_rule,
    A.GAMBLER: gamble_rule,
    A.TRADER: trade_rule,
    A.BROKER: broker_rule,
    A.HACKER: theft_rule,
    A.SPY: intel_rule,
    A.INVESTOR: invest_rule,
    A.INSURANCE: insure_rule,
    A.TRANSLATOR: service_rule,
    A.ANALYST: service_rule,
    A.PROFESSOR: service_rule,
    A.MARKETER: service_rule,
    A.CODER: service_rule,
    A.CONSULTANT: service_rule,
    A.ARTIST: service_rule,
    A.LAWYER: service_rule,
    A.DOCTOR: service_rule,
    A.CHEF: service_rule,
    A.ATHLETE: service_rule,
    A.JOURNALIST: service_rule,
}

_unmapped = set(Archetype) ^ set(BEHAVIORS)
if _unmapped:
    raise RuntimeError(f"behaviour table out of sync with archetypes: {sorted(a.value for a in _unmapped)}")


def rule_for(archetype: Archetype) -> Rule:
    return BEHAVIORS[Archetype(archetype)]
