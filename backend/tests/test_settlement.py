"""Tests for predictions: odds, bet placement, settlement."""
from __future__ import annotations

import itertools
import random

import pytest

from agentmarket.engine import EpochEngine
from agentmarket.errors import (
    ConflictError, DuplicateBetError, InsufficientPointsError, PersistenceError, ValidationError,
)
from agentmarket.models import PredictionKind
from agentmarket.settlement import SettlementService, balance_tier, odds_for, payout_for
from agentmarket.store import AGENTS, EPOCHS, PREDICTIONS, SNAPSHOTS, TRANSACTIONS, USER_POINTS, MemoryStore


def _service():
    store = MemoryStore()
    engine = EpochEngine(store)
    engine.initialize_agents()
    ticks = itertools.count(1)
    svc = SettlementService(store, engine.next_epoch_number, clock=lambda: float(next(ticks)))
    return store, engine, svc


def _close_epoch(store, epoch, snapshots=()):
    store.insert(EPOCHS, {"epoch_number": epoch, "event": "normal", "status": "completed", "created_at": 0.0})
    for agent_id, opening, closing, status in snapshots:
        store.insert(SNAPSHOTS, {
            "agent_id": agent_id, "epoch": epoch,
            "opening_balance": opening, "closing_balance": closing, "status": status,
        })


def test_balance_tiers():
    assert balance_tier(110.01) == "strong"
    assert balance_tier(110.0) == "normal"
    assert balance_tier(20.0) == "normal"
    assert balance_tier(19.99) == "weak"


def test_odds_table():
    assert odds_for(PredictionKind.UP, 150) == 1.5
    assert odds_for(PredictionKind.DOWN, 150) == 3.0
    assert odds_for(PredictionKind.SURVIVE, 5) == 3.0
    assert odds_for(PredictionKind.BANKRUPT, 5) == 10.0
    assert odds_for(PredictionKind.BANKRUPT, 500) == 10.0


def test_payout_rounds_half_up():
    assert payout_for(100, 10.0) == 1000
    assert payout_for(15, 1.5) == 23
    assert payout_for(10, 1.2) == 12
    assert payout_for(11, 2.5) == 28


def test_bankrupt_bet_pays_ten_to_one():
    store, _, svc = _service()
    receipt = svc.place_bet("alice", "saver", "bankrupt", 100)
    assert receipt.points_remaining == 900
    assert receipt.prediction.epoch == 1
    assert receipt.prediction.odds == 10.0

    _close_epoch(store, 1, [("saver", 3.0, 0.0, "bankrupt")])
    report = svc.settle(1)
    assert (report.settled, report.wins, report.paid_out) == (1, 1, 1000)

    points = svc.get_points("alice")
    assert points.points == 1900
    assert points.total_won == 1000
    assert points.win_streak == 1
    assert points.best_streak == 1
    bet = store.first(PREDICTIONS, {"user_id": "alice"})
    assert bet["result"] == "win" and bet["payout"] == 1000


def test_settlement_is_idempotent():
    store, _, svc = _service()
    svc.place_bet("alice", "saver", "bankrupt", 100)
    _close_epoch(store, 1, [("saver", 3.0, 0.0, "bankrupt")])
    svc.settle(1)
    again = svc.settle(1)
    assert again.settled == 0
    assert again.paid_out == 0
    assert svc.get_points("alice").points == 1900


def test_one_open_bet_per_agent_per_epoch():
    _, _, svc = _service()
    svc.place_bet("alice", "trader", "up", 50)
    with pytest.raises(DuplicateBetError):
        svc.place_bet("alice", "trader", "down", 50)
    svc.place_bet("alice", "gambler", "down", 50)
    svc.place_bet("bob", "trader", "down", 50)
    assert svc.get_points("alice").points == 900


def test_insufficient_points_leaves_balance_alone():
    store, _, svc = _service()
    svc.place_bet("alice", "saver", "survive", 495)
    svc.place_bet("alice", "trader", "up", 500)
    assert svc.get_points("alice").points == 5
    with pytest.raises(InsufficientPointsError) as exc:
        svc.place_bet("alice", "gambler", "up", 10)
    assert exc.value.code == "insufficient_points"
    assert svc.get_points("alice").points == 5
    assert store.count(PREDICTIONS, {"user_id": "alice"}) == 2


@pytest.mark.parametrize("kwargs,code", [
    ({"user_id": "  ", "agent_id": "saver", "prediction": "up", "amount": 10}, "invalid_user"),
    ({"user_id": "alice", "agent_id": "saver", "prediction": "sideways", "amount": 10}, "invalid_prediction"),
    ({"user_id": "alice", "agent_id": "saver", "prediction": "up", "amount": 9}, "invalid_amount"),
    ({"user_id": "alice", "agent_id": "saver", "prediction": "up", "amount": 501}, "invalid_amount"),
    ({"user_id": "alice", "agent_id": "nobody", "prediction": "up", "amount": 10}, "unknown_agent"),
])
def test_bet_validation(kwargs, code):
    store, _, svc = _service()
    with pytest.raises(ValidationError) as exc:
        svc.place_bet(**kwargs)
    assert exc.value.code == code
    assert store.count(PREDICTIONS) == 0
    assert store.count(USER_POINTS) == 0


def test_no_bets_on_bankrupt_agents():
    store, _, svc = _service()
    store.update(AGENTS, {"id": "saver"}, {"status": "bankrupt", "balance": 0.0})
    with pytest.raises(ValidationError) as exc:
        svc.place_bet("alice", "saver", "survive", 10)
    assert exc.value.code == "agent_bankrupt"


def test_prediction_is_case_insensitive():
    _, _, svc = _service()
    assert svc.place_bet("alice", "saver", " UP ", 10).prediction.prediction == PredictionKind.UP


def test_settle_requires_completed_epoch():
    store, _, svc = _service()
    with pytest.raises(ConflictError) as exc:
        svc.settle(1)
    assert exc.value.code == "epoch_not_completed"
    store.insert(EPOCHS, {"epoch_number": 1, "event": "normal", "status": "running", "created_at": 0.0})
    with pytest.raises(ConflictError):
        svc.settle(1)


def test_bets_on_a_failed_epoch_are_refunded():
    store, _, svc = _service()
    svc.place_bet("alice", "saver", "bankrupt", 100)
    store.insert(EPOCHS, {"epoch_number": 1, "event": "normal", "status": "failed", "created_at": 0.0})

    report = svc.settle(1)
    assert (report.settled, report.voided, report.refunded) == (0, 1, 100)
    assert report.results[0]["result"] == "void"
    bet = store.first(PREDICTIONS, {"user_id": "alice"})
    assert bet["result"] == "void" and bet["payout"] == 100
    points = svc.get_points("alice")
    assert points.points == 1000
    assert points.win_streak == 0 and points.total_lost == 0

    again = svc.settle(1)
    assert again.voided == 0
    assert svc.get_points("alice").points == 1000


def test_failed_epoch_bets_are_swept_by_the_next_settlement():
    store, engine, svc = _service()
    svc.place_bet("alice", "trader", "up", 100)
    real_insert_many = store.insert_many

    def broken_insert_many(table, rows):
        if table == TRANSACTIONS:
            raise PersistenceError("disk full")
        return real_insert_many(table, rows)

    store.insert_many = broken_insert_many
    with pytest.raises(PersistenceError):
        engine.run_epoch(rng=random.Random(3))
    store.insert_many = real_insert_many
    assert svc.get_points("alice").points == 900

    engine.run_epoch(rng=random.Random(3))
    report = svc.settle(2)
    assert report.voided == 1
    assert store.count(PREDICTIONS, {"result": None}) == 0
    assert svc.get_points("alice").points == 1000


def test_up_and_down_follow_snapshots_and_streaks_reset():
    store, _, svc = _service()
    svc.place_bet("alice", "trader", "up", 100)
    svc.place_bet("bob", "trader", "down", 100)
    svc.place_bet("carol", "coder", "up", 100)
    _close_epoch(store, 1, [("trader", 100.0, 112.0, "active"), ("coder", 100.0, 100.0, "active")])

    report = svc.settle(1)
    assert (report.settled, report.wins, report.losses) == (3, 1, 2)
    assert svc.get_points("alice").points == 900 + 200
    bob = svc.get_points("bob")
    assert bob.points == 900
    assert bob.total_lost == 100
    assert bob.win_streak == 0
    # unchanged balance is neither up nor down
    assert svc.get_points("carol").points == 900


def test_losing_bet_resets_a_streak():
    store, _, svc = _service()
    svc.place_bet("alice", "saver", "survive", 100)
    _close_epoch(store, 1, [("saver", 100.0, 99.0, "active")])
    svc.settle(1)
    assert svc.get_points("alice").win_streak == 1

    svc.place_bet("alice", "saver", "bankrupt", 100)
    _close_epoch(store, 2, [("saver", 99.0, 98.0, "active")])
    svc.settle(2)
    points = svc.get_points("alice")
    assert points.win_streak == 0
    assert points.best_streak == 1


def test_missing_snapshot_compares_against_starting_balance():
    store, _, svc = _service()
    svc.place_bet("alice", "trader", "up", 100)
    store.update(AGENTS, {"id": "trader"}, {"balance": 120.0})
    _close_epoch(store, 1)
    report = svc.settle(1)
    assert report.wins == 1
    assert svc.get_points("alice").points == 1100


def test_settles_against_a_real_epoch():
    store, engine, svc = _service()
    for agent in ("saver", "trader", "gambler"):
        svc.place_bet("alice", agent, "survive", 10)
    engine.run_epoch(rng=random.Random(8))
    report = svc.settle(1)
    assert report.settled == 3
    assert store.count(PREDICTIONS, {"result": None}) == 0


def test_bets_roll_to_the_next_epoch():
    _, engine, svc = _service()
    engine.run_epoch(rng=random.Random(1))
    assert svc.place_bet("alice", "trader", "up", 10).prediction.epoch == 2


def test_active_summary_and_views():
    _, _, svc = _service()
    svc.place_bet("alice", "trader", "up", 100)
    svc.place_bet("bob", "trader", "down", 50)
    svc.place_bet("bob", "saver", "survive", 20)

    summary = svc.active_summary()
    assert summary["epoch"] == 1
    assert summary["total_staked"] == 170
    trader = summary["agents"][0]
    assert trader["agent_id"] == "trader"
    assert (trader["up"], trader["down"], trader["bets"]) == (100, 50, 2)

    board = svc.leaderboard()
    assert [r["user_id"] for r in board] == ["bob", "alice"]
    mine = svc.my_bets("bob")
    assert mine["points"]["points"] == 930
    assert [b["agent_id"] for b in mine["bets"]] == ["saver", "trader"]
    assert svc.my_bets("nobody") == {"points": None, "bets": []}
