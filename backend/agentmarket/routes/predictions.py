"""Routes: user predictions (bets) and settlement."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from agentmarket.auth import require_secret
from agentmarket.models import PlaceBetRequest, SettleRequest
from agentmarket.state import Services, get_services

_log = logging.getLogger(__name__)
router = APIRouter()


@router.post("/predictions")
def place_bet(req: PlaceBetRequest, services: Services = Depends(get_services)):
    services.bet_limiter.hit(f"user:{req.user_id.strip()}")
    receipt = services.settlement.place_bet(req.user_id, req.agent_id, req.prediction, req.amount)
    return receipt.to_dict()


@router.post("/predictions/settle")
def settle(req: SettleRequest, request: Request, services: Services = Depends(get_services)):
    require_secret(request)
    report = services.settlement.settle(req.epoch)
    return {"ok": True, **report.to_dict()}


@router.get("/predictions/leaderboard")
def predictions_leaderboard(services: Services = Depends(get_services)):
    return {"leaderboard": services.settlement.leaderboard()}


@router.get("/predictions/mine")
def predictions_mine(user_id: str, services: Services = Depends(get_services)):
    return services.settlement.my_bets(user_id)


@router.get("/predictions/active")
def predictions_active(services: Services = Depends(get_services)):
    return services.settlement.active_summary()
