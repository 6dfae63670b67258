"""Tests for prediction endpoints."""
from __future__ import annotations

from agentmarket.rate_limit import FixedWindowRateLimiter


def _bet(client, **overrides):
    body = {"user_id": "alice", "agent_id": "saver", "prediction": "survive", "amount": 10}
    body.update(overrides)
    return client.post("/predictions", json=body)


def test_place_bet(client, admin_headers):
    client.post("/economy/init", headers=admin_headers)
    r = _bet(client, amount=100)
    assert r.status_code == 200
    data = r.json()
    assert data["ok"] is True
    assert data["points_remaining"] == 900
    assert data["odds"] == 1.5
    assert data["prediction"]["epoch"] == 1
    assert data["prediction"]["prediction"] == "survive"

    active = client.get("/predictions/active").json()
    assert active["total_staked"] == 100
    mine = client.get("/predictions/mine", params={"user_id": "alice"}).json()
    assert mine["points"]["points"] == 900
    assert len(mine["bets"]) == 1


def test_bet_errors_are_structured(client, admin_headers):
    client.post("/economy/init", headers=admin_headers)
    cases = [
        ({"agent_id": "nobody"}, 400, "unknown_agent"),
        ({"prediction": "moon"}, 400, "invalid_prediction"),
        ({"amount": 5000}, 400, "invalid_amount"),
        ({"user_id": ""}, 400, "invalid_user"),
    ]
    for overrides, status, code in cases:
        r = _bet(client, **overrides)
        assert r.status_code == status, overrides
        assert r.json()["error"] == code


def test_duplicate_bet_is_conflict(client, admin_headers):
    client.post("/economy/init", headers=admin_headers)
    assert _bet(client).status_code == 200
    r = _bet(client, prediction="bankrupt")
    assert r.status_code == 409
    assert r.json()["error"] == "duplicate_bet"


def test_malformed_body(client):
    r = client.post("/predictions", json={"user_id": "alice"})
    assert r.status_code == 400
    data = r.json()
    assert data["error"] == "invalid_request"
    assert data["message"]


def test_bets_are_rate_limited(client, services, admin_headers):
    client.post("/economy/init", headers=admin_headers)
    services.bet_limiter = FixedWindowRateLimiter(2, 60)
    assert _bet(client, agent_id="saver").status_code == 200
    assert _bet(client, agent_id="trader").status_code == 200
    r = _bet(client, agent_id="gambler")
    assert r.status_code == 429
    assert r.json()["error"] == "rate_limited"
    assert int(r.headers["Retry-After"]) >= 1
    assert _bet(client, user_id="bob", agent_id="gambler").status_code == 200


def test_settle_requires_secret_and_completed_epoch(client, admin_headers):
    r = client.post("/predictions/settle", json={"epoch": 1})
    assert r.status_code == 401
    r = client.post("/predictions/settle", json={"epoch": 1}, headers=admin_headers)
    assert r.status_code == 409
    assert r.json()["error"] == "epoch_not_completed"


def test_bet_then_settle(client, admin_headers):
    client.post("/economy/init", headers=admin_headers)
    _bet(client, amount=50)
    client.post("/economy/epoch", headers=admin_headers)

    r = client.post("/predictions/settle", json={"epoch": 1}, headers=admin_headers)
    assert r.status_code == 200
    data = r.json()
    assert data["ok"] is True
    assert data["settled"] == 1
    assert data["results"][0]["result"] in ("win", "lose")

    again = client.post("/predictions/settle", json={"epoch": 1}, headers=admin_headers).json()
    assert again["settled"] == 0

    board = client.get("/predictions/leaderboard").json()["leaderboard"]
    assert board[0]["user_id"] == "alice"
    assert board[0]["total_bets"] == 1
