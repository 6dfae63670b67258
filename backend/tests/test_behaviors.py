"""Tests for archetype behaviour rules."""
from __future__ import annotations

import random

import pytest

from agentmarket.behaviors import (
    BEHAVIORS, EpochContext, PeerView, gamble_rule, insure_rule, rule_for,
    service_rule, theft_rule, yield_rule,
)
from agentmarket.events import BULL_MARKET, CRISIS, NORMAL_ROUND, RECESSION, TECH_DEMAND
from agentmarket.models import AgentStatus, Archetype, TxType
from agentmarket.registry import PERSONAS, get_persona


def _peers(balance=100.0):
    return tuple(PeerView(a.value, a, balance, AgentStatus.ACTIVE) for a in sorted(Archetype, key=lambda a: a.value))


def _ctx(event=NORMAL_ROUND, balance=100.0):
    return EpochContext(epoch=1, event=event, peers=_peers(balance))


def _me(archetype, balance=100.0):
    return PeerView(archetype.value, archetype, balance, AgentStatus.ACTIVE)


def test_every_archetype_has_persona_and_rule():
    assert set(BEHAVIORS) == set(Archetype)
    assert set(PERSONAS) == set(Archetype)
    assert len(Archetype) == 20


@pytest.mark.parametrize("archetype", list(Archetype))
def test_rules_are_deterministic_for_a_seed(archetype):
    ctx = _ctx(BULL_MARKET)
    rule = rule_for(archetype)
    first = rule(_me(archetype), ctx, random.Random(7))
    second = rule(_me(archetype), ctx, random.Random(7))
    assert first == second
    ids = {p.id for p in ctx.peers}
    for d in first:
        assert d.amount > 0
        assert d.from_agent is None or d.from_agent in ids
        assert d.to_agent is None or d.to_agent in ids
        assert d.from_agent != d.to_agent


def test_saver_yield_scales_with_event():
    me = _me(Archetype.SAVER, 50.0)
    normal = yield_rule(me, _ctx(NORMAL_ROUND), random.Random(1))
    boom = yield_rule(me, _ctx(BULL_MARKET), random.Random(1))
    assert normal[0].type == TxType.YIELD and normal[0].to_agent == "saver" and normal[0].from_agent is None
    assert normal[0].amount == pytest.approx(1.0)
    assert boom[0].amount == pytest.approx(1.5)


def test_saver_with_nothing_earns_nothing():
    assert yield_rule(_me(Archetype.SAVER, 0.0), _ctx(), random.Random(1)) == []


def test_gambler_stakes_a_fraction_of_balance():
    outcomes = set()
    for seed in range(50):
        drafts = gamble_rule(_me(Archetype.GAMBLER), _ctx(), random.Random(seed))
        assert len(drafts) == 1
        d = drafts[0]
        outcomes.add(d.type)
        if d.type == TxType.LOSS:
            assert d.from_agent == "gambler" and d.to_agent is None
            assert 10.0 <= d.amount <= 30.0
        else:
            assert d.type == TxType.EVENT_PAYOUT and d.to_agent == "gambler"
            assert 10.0 <= d.amount <= 60.0
    assert outcomes == {TxType.LOSS, TxType.EVENT_PAYOUT}


def test_hacker_steals_only_from_peers_with_money():
    peers = (
        PeerView("hacker", Archetype.HACKER, 100.0, AgentStatus.ACTIVE),
        PeerView("saver", Archetype.SAVER, 0.0, AgentStatus.ACTIVE),
        PeerView("trader", Archetype.TRADER, 80.0, AgentStatus.ACTIVE),
    )
    ctx = EpochContext(epoch=1, event=NORMAL_ROUND, peers=peers)
    thefts = [d for seed in range(100) for d in theft_rule(peers[0], ctx, random.Random(seed))]
    assert thefts
    assert 0 < len(thefts) < 100
    for d in thefts:
        assert d.type == TxType.THEFT
        assert d.from_agent == "trader" and d.to_agent == "hacker"
        assert 4.0 <= d.amount <= 8.0


def test_insurance_pays_claims_only_in_bad_times():
    me = _me(Archetype.INSURANCE)
    calm = insure_rule(me, _ctx(NORMAL_ROUND), random.Random(3))
    assert all(d.to_agent == "insurance" for d in calm)
    for event in (RECESSION, CRISIS):
        drafts = insure_rule(me, _ctx(event), random.Random(3))
        claims = [d for d in drafts if d.note == "insurance claim"]
        assert len(claims) == 1
        assert claims[0].from_agent == "insurance"


def test_service_price_premium_during_tech_demand():
    me = _me(Archetype.CODER)
    base = get_persona(Archetype.CODER).base_price
    prices = [d.amount for seed in range(40) for d in service_rule(me, _ctx(TECH_DEMAND), random.Random(seed))]
    assert prices
    assert min(prices) > base * TECH_DEMAND.price_multiplier * 1.5 * 0.79


def test_service_needs_a_buyer_who_can_pay():
    me = _me(Archetype.LAWYER)
    assert all(service_rule(me, _ctx(balance=0.5), random.Random(s)) == [] for s in range(20))
