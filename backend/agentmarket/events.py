"""
Macro events: one is drawn per epoch and scales every behaviour rule.
"""
from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Tuple

from agentmarket.models import EventType


@dataclass(frozen=True)
class MarketEvent:
    type: EventType
    description: str
    fee_modifier: float
    price_multiplier: float
    trade_probability: float
    gamble_win_chance: float
    yield_multiplier: float
    upkeep_multiplier: float
    investment_bias: float
    premium_skills: Tuple[str, ...] = ()


BULL_MARKET = MarketEvent(EventType.BOOM, "Bull Market: 50% fee discount, market thriving",
                          0.5, 1.2, 0.8, 0.6, 1.5, 0.5, 0.10)
INVESTMENT_FRENZY = MarketEvent(EventType.BOOM, "Investment Frenzy: trade volume surging",
                                0.7, 1.3, 0.85, 0.6, 1.2, 0.5, 0.15)
RECESSION = MarketEvent(EventType.RECESSION, "Recession: 2x fees, market contraction",
                        2.0, 0.7, 0.4, 0.35, 0.5, 1.5, -0.15)
OPPORTUNITY_HOUR = MarketEvent(EventType.OPPORTUNITY, "Opportunity Hour: sellers get a 10% bonus",
                               0.8, 1.1, 0.7, 0.45, 1.0, 1.0, 0.05)
TECH_DEMAND = MarketEvent(EventType.OPPORTUNITY, "Tech Demand Surge: coding and security skills at a premium",
                          0.9, 1.1, 0.7, 0.45, 1.0, 1.0, 0.05, ("coding", "security_audit"))
CRISIS = MarketEvent(EventType.CRISIS, "Crisis: a random agent takes a loss",
                     1.5, 0.8, 0.5, 0.3, 0.5, 1.5, -0.20)
NORMAL_ROUND = MarketEvent(EventType.NORMAL, "Normal round: no special events",
                           1.0, 1.0, 0.6, 0.45, 1.0, 1.0, 0.0)
STABLE_MARKET = MarketEvent(EventType.NORMAL, "Stable market: routine trading",
                            1.0, 1.0, 0.6, 0.45, 1.0, 1.0, 0.0)

# Cumulative draw table: boom 18%, recession 8%, opportunity 14%, crisis 5%, normal otherwise.
_DRAW_TABLE = (
    (0.10, BULL_MARKET),
    (0.18, RECESSION),
    (0.25, OPPORTUNITY_HOUR),
    (0.30, CRISIS),
    (0.38, INVESTMENT_FRENZY),
    (0.45, TECH_DEMAND),
)

_BY_TYPE = {
    EventType.BOOM: BULL_MARKET,
    EventType.RECESSION: RECESSION,
    EventType.OPPORTUNITY: OPPORTUNITY_HOUR,
    EventType.CRISIS: CRISIS,
}


def _normal(epoch: int) -> MarketEvent:
    return NORMAL_ROUND if epoch % 2 == 0 else STABLE_MARKET


def draw_event(rng: random.Random, epoch: int) -> MarketEvent:
    r = rng.random()
    for threshold, event in _DRAW_TABLE:
        if r < threshold:
            return event
    return _normal(epoch)


def event_for(event_type: EventType, epoch: int) -> MarketEvent:
    """The canonical event of a given type (operator overrides, tests)."""
    event_type = EventType(event_type)
    if event_type == EventType.NORMAL:
        return _normal(epoch)
    return _BY_TYPE[event_type]
