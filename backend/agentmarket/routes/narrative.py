"""Routes: agent diaries and social posts."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from agentmarket import queries
from agentmarket.auth import require_secret
from agentmarket.models import DiaryGenerateRequest
from agentmarket.state import Services, get_services

_log = logging.getLogger(__name__)
router = APIRouter()


@router.get("/economy/diary")
def diary_list(
    agent_id: Optional[str] = None,
    epoch: Optional[int] = None,
    limit: int = 20,
    offset: int = 0,
    services: Services = Depends(get_services),
):
    return queries.diaries(services.store, agent_id=agent_id, epoch=epoch, limit=limit, offset=offset)


@router.post("/economy/diary/generate")
async def diary_generate(
    request: Request,
    req: Optional[DiaryGenerateRequest] = None,
    services: Services = Depends(get_services),
):
    require_secret(request)
    epoch = req.epoch if req else None
    report = await run_in_threadpool(services.narrator.diaries_for_epoch, epoch)
    return {"ok": True, **report.to_dict()}


@router.get("/economy/social")
def social_list(
    agent_id: Optional[str] = None,
    type: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
    services: Services = Depends(get_services),
):
    return queries.social(services.store, agent_id=agent_id, post_type=type, limit=limit, offset=offset)


@router.post("/economy/social/generate")
async def social_generate(request: Request, services: Services = Depends(get_services)):
    require_secret(request)
    report = await run_in_threadpool(services.narrator.generate_social_posts)
    return {"ok": True, **report.to_dict()}
