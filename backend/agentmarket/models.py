"""
All data models: enums for the closed vocabularies, dataclasses for ledger
rows, Pydantic models for API requests.
"""
from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


# --- Closed vocabularies ---

class Archetype(str, Enum):
    TRANSLATOR = "translator"
    ANALYST = "analyst"
    INVESTOR = "investor"
    SAVER = "saver"
    GAMBLER = "gambler"
    HACKER = "hacker"
    PROFESSOR = "professor"
    TRADER = "trader"
    MARKETER = "marketer"
    CODER = "coder"
    CONSULTANT = "consultant"
    ARTIST = "artist"
    BROKER = "broker"
    INSURANCE = "insurance"
    SPY = "spy"
    LAWYER = "lawyer"
    DOCTOR = "doctor"
    CHEF = "chef"
    ATHLETE = "athlete"
    JOURNALIST = "journalist"


class AgentStatus(str, Enum):
    ACTIVE = "active"
    STRUGGLING = "struggling"
    BANKRUPT = "bankrupt"


class EventType(str, Enum):
    NORMAL = "normal"
    BOOM = "boom"
    RECESSION = "recession"
    OPPORTUNITY = "opportunity"
    CRISIS = "crisis"


class TxType(str, Enum):
    TRADE = "trade"
    INVESTMENT = "investment"
    LOSS = "loss"
    FEE = "fee"
    EVENT_PAYOUT = "event_payout"
    YIELD = "yield"
    THEFT = "theft"
    BANKRUPTCY_WRITEOFF = "bankruptcy_writeoff"


class EpochStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Mood(str, Enum):
    EXCITED = "excited"
    WORRIED = "worried"
    CONFIDENT = "confident"
    DESPERATE = "desperate"
    STRATEGIC = "strategic"
    ANGRY = "angry"
    HOPEFUL = "hopeful"
    NEUTRAL = "neutral"


class PostType(str, Enum):
    POST = "post"
    REPLY = "reply"
    ANNOUNCEMENT = "announcement"
    TRASH_TALK = "trash_talk"


class PredictionKind(str, Enum):
    UP = "up"
    DOWN = "down"
    BANKRUPT = "bankrupt"
    SURVIVE = "survive"


class BetResult(str, Enum):
    WIN = "win"
    LOSE = "lose"
    VOID = "void"


def to_row(obj) -> dict:
    """Dataclass -> plain dict suitable for the store (enums flattened)."""
    out = {}
    for k, v in asdict(obj).items():
        out[k] = v.value if isinstance(v, Enum) else v
    return out


def _opt_float(v) -> Optional[float]:
    return None if v is None else float(v)


# --- Ledger rows ---

@dataclass
class EconomyAgent:
    id: str
    name: str
    archetype: Archetype
    strategy: str
    balance: float
    total_earned: float = 0.0
    total_spent: float = 0.0
    status: AgentStatus = AgentStatus.ACTIVE
    created_at: float = 0.0
    updated_at: float = 0.0

    @property
    def is_participant(self) -> bool:
        return self.status != AgentStatus.BANKRUPT

    @classmethod
    def from_row(cls, r: dict) -> "EconomyAgent":
        return cls(
            id=str(r["id"]),
            name=str(r.get("name") or r["id"]),
            archetype=Archetype(r["archetype"]),
            strategy=str(r.get("strategy") or ""),
            balance=float(r.get("balance") or 0.0),
            total_earned=float(r.get("total_earned") or 0.0),
            total_spent=float(r.get("total_spent") or 0.0),
            status=AgentStatus(r.get("status") or AgentStatus.ACTIVE.value),
            created_at=float(r.get("created_at") or 0.0),
            updated_at=float(r.get("updated_at") or 0.0),
        )


@dataclass
class TransactionDraft:
    """A proposed ledger movement. ``None`` on either side is the market."""
    type: TxType
    from_agent: Optional[str]
    to_agent: Optional[str]
    amount: float
    note: str = ""


@dataclass
class Transaction:
    id: str
    epoch: int
    seq: int
    from_agent: Optional[str]
    to_agent: Optional[str]
    amount: float
    type: TxType
    note: str
    created_at: float

    def delta_for(self, agent_id: str) -> float:
        d = 0.0
        if self.to_agent == agent_id:
            d += self.amount
        if self.from_agent == agent_id:
            d -= self.amount
        return d

    @classmethod
    def from_row(cls, r: dict) -> "Transaction":
        return cls(
            id=str(r["id"]),
            epoch=int(r["epoch"]),
            seq=int(r.get("seq") or 0),
            from_agent=r.get("from_agent") or None,
            to_agent=r.get("to_agent") or None,
            amount=float(r["amount"]),
            type=TxType(r["type"]),
            note=str(r.get("note") or ""),
            created_at=float(r.get("created_at") or 0.0),
        )


@dataclass
class Epoch:
    epoch_number: int
    event: EventType
    event_description: str
    status: EpochStatus
    created_at: float
    total_volume: float = 0.0
    transaction_count: int = 0
    active_agents: int = 0
    bankruptcies: int = 0
    top_earner: Optional[str] = None
    error: str = ""
    completed_at: Optional[float] = None

    @classmethod
    def from_row(cls, r: dict) -> "Epoch":
        return cls(
            epoch_number=int(r["epoch_number"]),
            event=EventType(r.get("event") or EventType.NORMAL.value),
            event_description=str(r.get("event_description") or ""),
            status=EpochStatus(r.get("status") or EpochStatus.COMPLETED.value),
            created_at=float(r.get("created_at") or 0.0),
            total_volume=float(r.get("total_volume") or 0.0),
            transaction_count=int(r.get("transaction_count") or 0),
            active_agents=int(r.get("active_agents") or 0),
            bankruptcies=int(r.get("bankruptcies") or 0),
            top_earner=r.get("top_earner") or None,
            error=str(r.get("error") or ""),
            completed_at=_opt_float(r.get("completed_at")),
        )


@dataclass
class BalanceSnapshot:
    agent_id: str
    epoch: int
    opening_balance: float
    closing_balance: float
    status: AgentStatus

    @classmethod
    def from_row(cls, r: dict) -> "BalanceSnapshot":
        return cls(
            agent_id=str(r["agent_id"]),
            epoch=int(r["epoch"]),
            opening_balance=float(r["opening_balance"]),
            closing_balance=float(r["closing_balance"]),
            status=AgentStatus(r["status"]),
        )


@dataclass
class DiaryEntry:
    agent_id: str
    epoch: int
    content: str
    mood: Mood
    highlights: List[str] = field(default_factory=list)
    id: str = ""
    created_at: float = 0.0

    @classmethod
    def from_row(cls, r: dict) -> "DiaryEntry":
        return cls(
            agent_id=str(r["agent_id"]),
            epoch=int(r["epoch"]),
            content=str(r.get("content") or ""),
            mood=Mood(r.get("mood") or Mood.NEUTRAL.value),
            highlights=[str(h) for h in (r.get("highlights") or [])],
            id=str(r.get("id") or ""),
            created_at=float(r.get("created_at") or 0.0),
        )


@dataclass
class SocialPost:
    id: str
    agent_id: str
    content: str
    post_type: PostType
    reply_to: Optional[str] = None
    likes: int = 0
    created_at: float = 0.0

    @classmethod
    def from_row(cls, r: dict) -> "SocialPost":
        return cls(
            id=str(r["id"]),
            agent_id=str(r["agent_id"]),
            content=str(r.get("content") or ""),
            post_type=PostType(r.get("post_type") or PostType.POST.value),
            reply_to=r.get("reply_to") or None,
            likes=int(r.get("likes") or 0),
            created_at=float(r.get("created_at") or 0.0),
        )


@dataclass
class Prediction:
    id: str
    user_id: str
    agent_id: str
    epoch: int
    prediction: PredictionKind
    amount: int
    odds: float
    result: Optional[BetResult] = None
    payout: Optional[int] = None
    settled_at: Optional[float] = None
    created_at: float = 0.0

    @classmethod
    def from_row(cls, r: dict) -> "Prediction":
        res = r.get("result")
        return cls(
            id=str(r["id"]),
            user_id=str(r["user_id"]),
            agent_id=str(r["agent_id"]),
            epoch=int(r["epoch"]),
            prediction=PredictionKind(r["prediction"]),
            amount=int(r["amount"]),
            odds=float(r["odds"]),
            result=BetResult(res) if res else None,
            payout=None if r.get("payout") is None else int(r["payout"]),
            settled_at=_opt_float(r.get("settled_at")),
            created_at=float(r.get("created_at") or 0.0),
        )


@dataclass
class UserPoints:
    user_id: str
    points: int
    total_bets: int = 0
    total_won: int = 0
    total_lost: int = 0
    win_streak: int = 0
    best_streak: int = 0
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @classmethod
    def from_row(cls, r: dict) -> "UserPoints":
        return cls(
            user_id=str(r["user_id"]),
            points=int(r.get("points") or 0),
            total_bets=int(r.get("total_bets") or 0),
            total_won=int(r.get("total_won") or 0),
            total_lost=int(r.get("total_lost") or 0),
            win_streak=int(r.get("win_streak") or 0),
            best_streak=int(r.get("best_streak") or 0),
            created_at=float(r.get("created_at") or 0.0),
            updated_at=float(r.get("updated_at") or 0.0),
        )


# --- Pydantic request models ---

class EpochRunRequest(BaseModel):
    event: Optional[EventType] = None


class DiaryGenerateRequest(BaseModel):
    epoch: Optional[int] = None


class PlaceBetRequest(BaseModel):
    user_id: str
    agent_id: str
    prediction: str
    amount: int


class SettleRequest(BaseModel):
    epoch: int


class CronRequest(BaseModel):
    narrative: bool = True
    settle: bool = True
    event: Optional[EventType] = None
