"""
Settlement/Prediction module: user bets on agent outcomes, settled against the
balance snapshots an epoch run leaves behind.
"""
from __future__ import annotations

import logging
import math
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from agentmarket import config
from agentmarket.errors import (
    ConflictError, DuplicateBetError, InsufficientPointsError, ValidationError,
)
from agentmarket.models import (
    AgentStatus, BalanceSnapshot, BetResult, EconomyAgent, EpochStatus,
    Prediction, PredictionKind, UserPoints, to_row,
)
from agentmarket.store import AGENTS, EPOCHS, PREDICTIONS, SNAPSHOTS, USER_POINTS, MemoryStore

_log = logging.getLogger(__name__)

STRONG, NORMAL, WEAK = "strong", "normal", "weak"
STRONG_ABOVE = 110.0
WEAK_BELOW = 20.0

ODDS: Dict[PredictionKind, Dict[str, float]] = {
    PredictionKind.UP: {STRONG: 1.5, NORMAL: 2.0, WEAK: 2.5},
    PredictionKind.DOWN: {STRONG: 3.0, NORMAL: 2.0, WEAK: 1.5},
    PredictionKind.BANKRUPT: {STRONG: 10.0, NORMAL: 10.0, WEAK: 10.0},
    PredictionKind.SURVIVE: {STRONG: 1.2, NORMAL: 1.5, WEAK: 3.0},
}


def balance_tier(balance: float) -> str:
    if balance > STRONG_ABOVE:
        return STRONG
    if balance < WEAK_BELOW:
        return WEAK
    return NORMAL


def odds_for(prediction: PredictionKind, balance: float) -> float:
    return ODDS[PredictionKind(prediction)][balance_tier(balance)]


def payout_for(amount: int, odds: float) -> int:
    """amount x odds, rounded half up to whole points."""
    return int(math.floor(amount * odds + 0.5))


@dataclass
class BetReceipt:
    prediction: Prediction
    points_remaining: int

    def to_dict(self) -> dict:
        return {
            "ok": True,
            "prediction": to_row(self.prediction),
            "odds": self.prediction.odds,
            "points_remaining": self.points_remaining,
        }


@dataclass
class SettlementReport:
    epoch: int
    settled: int = 0
    wins: int = 0
    losses: int = 0
    paid_out: int = 0
    voided: int = 0
    refunded: int = 0
    results: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "epoch": self.epoch,
            "settled": self.settled,
            "wins": self.wins,
            "losses": self.losses,
            "paid_out": self.paid_out,
            "voided": self.voided,
            "refunded": self.refunded,
            "results": list(self.results),
        }


class SettlementService:
    def __init__(
        self,
        store: MemoryStore,
        next_epoch: Callable[[], int],
        *,
        bet_min: int = config.BET_MIN,
        bet_max: int = config.BET_MAX,
        starting_points: int = config.STARTING_POINTS,
        starting_balance: float = config.STARTING_BALANCE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.next_epoch = next_epoch
        self.bet_min = bet_min
        self.bet_max = bet_max
        self.starting_points = starting_points
        self.starting_balance = starting_balance
        self.clock = clock

    # --- points ---

    def get_points(self, user_id: str) -> Optional[UserPoints]:
        row = self.store.first(USER_POINTS, {"user_id": user_id})
        return UserPoints.from_row(row) if row else None

    def _ensure_points(self, user_id: str) -> UserPoints:
        existing = self.get_points(user_id)
        if existing is not None:
            return existing
        now = self.clock()
        points = UserPoints(user_id=user_id, points=self.starting_points, created_at=now, updated_at=now)
        self.store.insert(USER_POINTS, to_row(points))
        _log.info("Granted %d starting points to %s", self.starting_points, user_id)
        return points

    # --- betting ---

    def place_bet(self, user_id: str, agent_id: str, prediction: str, amount: int) -> BetReceipt:
        user_id = (user_id or "").strip()
        if not user_id or len(user_id) > 100:
            raise ValidationError("user_id is required", code="invalid_user")
        try:
            kind = PredictionKind(str(prediction).strip().lower())
        except ValueError:
            raise ValidationError(
                f"prediction must be one of {[k.value for k in PredictionKind]}", code="invalid_prediction"
            ) from None
        if isinstance(amount, bool) or not isinstance(amount, int) or not self.bet_min <= amount <= self.bet_max:
            raise ValidationError(f"amount must be between {self.bet_min} and {self.bet_max}", code="invalid_amount")

        row = self.store.first(AGENTS, {"id": agent_id})
        if row is None:
            raise ValidationError(f"unknown agent {agent_id!r}", code="unknown_agent")
        agent = EconomyAgent.from_row(row)
        if agent.status == AgentStatus.BANKRUPT:
            raise ValidationError(f"{agent_id} is bankrupt", code="agent_bankrupt")

        with self.store.atomic():
            epoch = self.next_epoch()
            points = self._ensure_points(user_id)
            open_bets = self.store.count(PREDICTIONS, {
                "user_id": user_id, "agent_id": agent_id, "epoch": epoch, "result": None,
            })
            if open_bets:
                raise DuplicateBetError(f"already holding an open bet on {agent_id} for epoch {epoch}")
            if points.points < amount:
                raise InsufficientPointsError(f"{points.points} points available, {amount} needed")

            now = self.clock()
            bet = Prediction(
                id=uuid.uuid4().hex,
                user_id=user_id,
                agent_id=agent_id,
                epoch=epoch,
                prediction=kind,
                amount=amount,
                odds=odds_for(kind, agent.balance),
                created_at=now,
            )
            remaining = points.points - amount
            self.store.update(USER_POINTS, {"user_id": user_id}, {
                "points": remaining,
                "total_bets": points.total_bets + 1,
                "updated_at": now,
            })
            self.store.insert(PREDICTIONS, to_row(bet))
        return BetReceipt(prediction=bet, points_remaining=remaining)

    # --- settlement ---

    def outcome(self, agent_id: str, epoch: int) -> Tuple[float, float, bool]:
        """(opening, closing, bankrupt) for the agent over the given epoch."""
        row = self.store.first(SNAPSHOTS, {"agent_id": agent_id, "epoch": epoch})
        if row is not None:
            snap = BalanceSnapshot.from_row(row)
            return snap.opening_balance, snap.closing_balance, snap.status == AgentStatus.BANKRUPT
        _log.warning("No snapshot for %s in epoch %d; comparing against the starting balance", agent_id, epoch)
        agent_row = self.store.first(AGENTS, {"id": agent_id})
        if agent_row is None:
            return self.starting_balance, self.starting_balance, False
        agent = EconomyAgent.from_row(agent_row)
        return self.starting_balance, agent.balance, agent.status == AgentStatus.BANKRUPT

    @staticmethod
    def is_win(kind: PredictionKind, opening: float, closing: float, bankrupt: bool) -> bool:
        if kind == PredictionKind.BANKRUPT:
            return bankrupt
        if kind == PredictionKind.SURVIVE:
            return not bankrupt
        if kind == PredictionKind.UP:
            return not bankrupt and closing > opening
        return not bankrupt and closing < opening

    def settle(self, epoch: int) -> SettlementReport:
        """
        Settle open bets on ``epoch``. Open bets on any failed epoch, this one
        included, are voided on the way and their stakes refunded.
        """
        row = self.store.first(EPOCHS, {"epoch_number": epoch})
        status = row.get("status") if row else None
        if status not in (EpochStatus.COMPLETED.value, EpochStatus.FAILED.value):
            raise ConflictError(f"epoch {epoch} is not completed", code="epoch_not_completed")

        report = SettlementReport(epoch=epoch)
        self.void_failed(report)
        if status == EpochStatus.FAILED.value:
            return report

        open_rows = self.store.select(PREDICTIONS, {"epoch": epoch, "result": None}, order_by="created_at")
        outcomes: Dict[str, Tuple[float, float, bool]] = {}
        for r in open_rows:
            bet = Prediction.from_row(r)
            if bet.agent_id not in outcomes:
                outcomes[bet.agent_id] = self.outcome(bet.agent_id, epoch)
            won = self.is_win(bet.prediction, *outcomes[bet.agent_id])
            payout = payout_for(bet.amount, bet.odds) if won else 0
            now = self.clock()
            with self.store.atomic():
                touched = self.store.update(PREDICTIONS, {"id": bet.id, "result": None}, {
                    "result": (BetResult.WIN if won else BetResult.LOSE).value,
                    "payout": payout,
                    "settled_at": now,
                })
                if not touched:
                    continue
                self._credit(bet, won, payout, now)
            report.settled += 1
            report.wins += int(won)
            report.losses += int(not won)
            report.paid_out += payout
            report.results.append({
                "id": bet.id,
                "user_id": bet.user_id,
                "agent_id": bet.agent_id,
                "prediction": bet.prediction.value,
                "amount": bet.amount,
                "odds": bet.odds,
                "result": "win" if won else "lose",
                "payout": payout,
            })
        _log.info(
            "Settled epoch %d: %d bets, %d wins, %d points paid",
            epoch, report.settled, report.wins, report.paid_out,
        )
        return report

    def void_failed(self, report: SettlementReport) -> None:
        failed = [r["epoch_number"] for r in self.store.select(EPOCHS, {"status": EpochStatus.FAILED.value})]
        if not failed:
            return
        for r in self.store.select(PREDICTIONS, {"epoch": failed, "result": None}, order_by="created_at"):
            bet = Prediction.from_row(r)
            now = self.clock()
            with self.store.atomic():
                touched = self.store.update(PREDICTIONS, {"id": bet.id, "result": None}, {
                    "result": BetResult.VOID.value,
                    "payout": bet.amount,
                    "settled_at": now,
                })
                if not touched:
                    continue
                points = self._ensure_points(bet.user_id)
                self.store.update(USER_POINTS, {"user_id": bet.user_id}, {
                    "points": points.points + bet.amount,
                    "updated_at": now,
                })
            report.voided += 1
            report.refunded += bet.amount
            report.results.append({
                "id": bet.id,
                "user_id": bet.user_id,
                "agent_id": bet.agent_id,
                "epoch": bet.epoch,
                "prediction": bet.prediction.value,
                "amount": bet.amount,
                "odds": bet.odds,
                "result": BetResult.VOID.value,
                "payout": bet.amount,
            })
        if report.voided:
            _log.info("Voided %d bets on failed epochs %s; %d points refunded", report.voided, failed, report.refunded)

    def _credit(self, bet: Prediction, won: bool, payout: int, now: float) -> None:
        points = self._ensure_points(bet.user_id)
        if won:
            streak = points.win_streak + 1
            changes = {
                "points": points.points + payout,
                "total_won": points.total_won + payout,
                "win_streak": streak,
                "best_streak": max(points.best_streak, streak),
            }
        else:
            changes = {"total_lost": points.total_lost + bet.amount, "win_streak": 0}
        changes["updated_at"] = now
        self.store.update(USER_POINTS, {"user_id": bet.user_id}, changes)

    # --- read views ---

    def leaderboard(self, limit: int = 20) -> List[dict]:
        return self.store.select(USER_POINTS, order_by="points", desc=True, limit=limit)

    def my_bets(self, user_id: str, limit: int = 50) -> dict:
        points = self.get_points(user_id)
        bets = self.store.select(PREDICTIONS, {"user_id": user_id}, order_by="created_at", desc=True, limit=limit)
        return {"points": to_row(points) if points else None, "bets": bets}

    def active_summary(self) -> dict:
        epoch = self.next_epoch()
        per_agent: Dict[str, dict] = {}
        for r in self.store.select(PREDICTIONS, {"epoch": epoch, "result": None}):
            entry = per_agent.setdefault(r["agent_id"], {
                "agent_id": r["agent_id"],
                **{k.value: 0 for k in PredictionKind},
                "total": 0,
                "bets": 0,
            })
            entry[r["prediction"]] += int(r["amount"])
            entry["total"] += int(r["amount"])
            entry["bets"] += 1
        agents = sorted(per_agent.values(), key=lambda e: (-e["total"], e["agent_id"]))
        return {"epoch": epoch, "agents": agents, "total_staked": sum(e["total"] for e in agents)}
