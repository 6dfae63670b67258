"""Routes: scheduled trigger running a whole economy cycle."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from agentmarket import pipeline
from agentmarket.auth import require_secret
from agentmarket.models import CronRequest
from agentmarket.state import Services, get_services
from agentmarket.ws import epoch_feed

_log = logging.getLogger(__name__)
router = APIRouter()


async def _cycle(services: Services, req: CronRequest) -> dict:
    out = await run_in_threadpool(
        pipeline.run_cycle, services, req.event, req.narrative, req.settle,
    )
    await epoch_feed.broadcast_epoch({k: out[k] for k in ("epoch", "event", "transactionCount", "bankruptcies")})
    if out["errors"]:
        _log.warning("Cycle for epoch %s finished with %d downstream errors", out["epoch"], len(out["errors"]))
    return out


@router.get("/cron/epoch")
async def cron_epoch_get(request: Request, services: Services = Depends(get_services)):
    require_secret(request)
    return await _cycle(services, CronRequest())


@router.post("/cron/epoch")
async def cron_epoch_post(
    request: Request,
    req: Optional[CronRequest] = None,
    services: Services = Depends(get_services),
):
    require_secret(request)
    return await _cycle(services, req or CronRequest())
