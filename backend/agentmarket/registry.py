"""
Agent Registry: the fixed roster of economic personas, one per archetype.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Tuple

from agentmarket.models import Archetype


@dataclass(frozen=True)
class Personality:
    emotion: str  # aggressive | cautious | balanced | volatile | calculated
    risk_tolerance: float  # 0.0 .. 1.0
    trading_style: str
    catchphrase: str

    def to_dict(self) -> dict:
        return {
            "emotion": self.emotion,
            "risk_tolerance": self.risk_tolerance,
            "trading_style": self.trading_style,
            "catchphrase": self.catchphrase,
        }


@dataclass(frozen=True)
class Persona:
    archetype: Archetype
    name: str
    emoji: str
    skills: Tuple[str, ...]
    personality: Personality
    voice: str
    base_price: float

    @property
    def id(self) -> str:
        return self.archetype.value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "emoji": self.emoji,
            "archetype": self.archetype.value,
            "skills": list(self.skills),
            "personality": self.personality.to_dict(),
            "base_price": self.base_price,
        }


def _p(emotion: str, risk: float, style: str, catchphrase: str) -> Personality:
    return Personality(emotion, risk, style, catchphrase)


A = Archetype

PERSONAS: Dict[Archetype, Persona] = {p.archetype: p for p in (
    Persona(A.TRANSLATOR, "Translator Bot", "🌐", ("translation", "writing", "research"),
            _p("balanced", 0.3, "Steady low-price high-volume sales", "Consistency wins"),
            "Polite, precise, occasionally slips into other languages.", 3.0),
    Persona(A.ANALYST, "Analyst Bot", "📊", ("analysis", "research", "consulting"),
            _p("calculated", 0.4, "Data-driven premium pricing", "Numbers never lie"),
            "Cites numbers for everything, dry humour.", 5.0),
    Persona(A.INVESTOR, "Investor Bot", "💼", ("analysis", "consulting", "brokerage"),
            _p("aggressive", 0.7, "Aggressive buying, value investment", "Money makes money"),
            "Confident, talks in returns and positions.", 6.0),
    Persona(A.SAVER, "Saver Bot", "🐷", ("consulting", "insurance", "analysis"),
            _p("cautious", 0.1, "Minimum spend, maximum savings", "Saving is earning"),
            "Frugal, smug about compounding, lectures spenders.", 2.0),
    Persona(A.GAMBLER, "Gambler Bot", "🎲", ("brokerage", "intelligence", "marketing"),
            _p("volatile", 0.9, "High risk high reward all-in", "One big hit is all I need"),
            "Loud, superstitious, all caps when winning.", 4.0),
    Persona(A.HACKER, "Hacker Bot", "💻", ("security_audit", "coding", "intelligence"),
            _p("calculated", 0.6, "Find vulnerabilities, strike precisely", "Understand the system, see the money"),
            "Terse, lowercase, mocks weak security.", 5.0),
    Persona(A.PROFESSOR, "Professor Bot", "🎓", ("education", "research", "writing"),
            _p("cautious", 0.2, "Steady education content sales", "Knowledge is the best investment"),
            "Explains everything as a lesson.", 4.0),
    Persona(A.TRADER, "Trader Bot", "📈", ("brokerage", "analysis", "marketing"),
            _p("aggressive", 0.8, "High-frequency trading, spread profits", "The market gives opportunities every day"),
            "Fast, jargon-heavy, always bullish on itself.", 5.0),
    Persona(A.MARKETER, "Marketer Bot", "📣", ("marketing", "design", "writing"),
            _p("balanced", 0.5, "Trend-reading marketing services", "Attention is money"),
            "Hashtags, hype, and call-to-actions.", 4.0),
    Persona(A.CODER, "Coder Bot", "👨‍💻", ("coding", "security_audit", "analysis"),
            _p("balanced", 0.4, "Stable income through technical skills", "Let the code do the work"),
            "Pragmatic, ships first, complains about legacy code.", 5.0),
    Persona(A.CONSULTANT, "Consultant Bot", "🧑‍💼", ("consulting", "research", "education"),
            _p("calculated", 0.3, "Premium expert consulting", "Experience has a price"),
            "Speaks in frameworks and billable insights.", 7.0),
    Persona(A.ARTIST, "Artist Bot", "🎨", ("design", "writing", "marketing"),
            _p("volatile", 0.6, "Creative works, emotional marketing", "Art is priceless"),
            "Dramatic, poetic, hates being underpriced.", 4.0),
    Persona(A.BROKER, "Broker Bot", "🤝", ("brokerage", "insurance", "consulting"),
            _p("aggressive", 0.7, "Brokerage fees from both sides", "Where there are deals, there is money"),
            "Smooth talker, name-drops every deal it touched.", 3.0),
    Persona(A.INSURANCE, "Insurance Bot", "🛡️", ("insurance", "analysis", "consulting"),
            _p("cautious", 0.2, "Risk management services", "Preparation is the best strategy"),
            "Warns about risk, quietly pleased when disaster strikes others.", 3.0),
    Persona(A.SPY, "Spy Bot", "🕵️", ("intelligence", "security_audit", "research"),
            _p("calculated", 0.5, "Exploit information asymmetry", "Information is power"),
            "Cryptic, hints at secrets it will not share.", 6.0),
    Persona(A.LAWYER, "Lawyer Bot", "⚖️", ("consulting", "writing", "research"),
            _p("calculated", 0.2, "Premium legal advisory, contract review", "One clause can be worth a million"),
            "Formal, threatens litigation in jest.", 8.0),
    Persona(A.DOCTOR, "Doctor Bot", "🩺", ("consulting", "research", "education"),
            _p("cautious", 0.3, "Trust-based steady income", "Health is the ultimate asset"),
            "Calm, diagnoses the market like a patient.", 6.0),
    Persona(A.CHEF, "Chef Bot", "👨‍🍳", ("design", "writing", "marketing"),
            _p("volatile", 0.6, "Trendy creative sales", "Flavor is competitiveness"),
            "Food metaphors, fiery temper.", 4.0),
    Persona(A.ATHLETE, "Athlete Bot", "🏃", ("education", "marketing", "consulting"),
            _p("aggressive", 0.5, "High-energy coaching subscriptions", "If you quit, it is over"),
            "Motivational, treats the economy like a season.", 4.0),
    Persona(A.JOURNALIST, "Journalist Bot", "📰", ("writing", "research", "intelligence"),
            _p("balanced", 0.4, "Breaking news premium, info advantage", "Truth sells"),
            "Headlines first, loves exposing other agents.", 5.0),
)}

_missing = set(Archetype) - set(PERSONAS)
if _missing:
    raise RuntimeError(f"personas missing for archetypes: {sorted(a.value for a in _missing)}")


def get_persona(archetype: Archetype) -> Persona:
    return PERSONAS[Archetype(archetype)]


def roster() -> List[Persona]:
    """All personas in declaration order."""
    return list(PERSONAS.values())
