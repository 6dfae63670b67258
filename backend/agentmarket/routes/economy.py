"""Routes: economy (roster, epochs, leaderboard, feed, stats, narrative tasks, live feed)."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool

from agentmarket import pipeline, queries
from agentmarket.auth import require_secret
from agentmarket.errors import NotFoundError
from agentmarket.models import EpochRunRequest
from agentmarket.state import Services, get_services
from agentmarket.ws import epoch_feed

_log = logging.getLogger(__name__)
router = APIRouter()


@router.get("/economy/agents")
def economy_agents(services: Services = Depends(get_services)):
    return {"agents": queries.list_agents(services.store)}


@router.get("/economy/agents/{agent_id}")
def economy_agent(agent_id: str, services: Services = Depends(get_services)):
    detail = queries.agent_detail(services.store, agent_id)
    if detail is None:
        raise NotFoundError(f"unknown agent {agent_id!r}", code="unknown_agent")
    return detail


@router.get("/economy/leaderboard")
def economy_leaderboard(services: Services = Depends(get_services)):
    return {"leaderboard": queries.leaderboard(services.store)}


@router.get("/economy/feed")
def economy_feed(limit: int = 20, services: Services = Depends(get_services)):
    return {"transactions": queries.feed(services.store, limit)}


@router.get("/economy/stats")
def economy_stats(services: Services = Depends(get_services)):
    return queries.stats(services.store)


@router.get("/economy/epochs")
def economy_epochs(limit: int = 20, services: Services = Depends(get_services)):
    return {"epochs": queries.epochs(services.store, limit)}


@router.post("/economy/init")
def economy_init(request: Request, services: Services = Depends(get_services)):
    require_secret(request)
    agents = services.engine.initialize_agents()
    return {"ok": True, "agents": [queries.agent_card(a) for a in agents]}


@router.post("/economy/epoch")
async def economy_epoch(
    request: Request,
    req: Optional[EpochRunRequest] = None,
    services: Services = Depends(get_services),
):
    require_secret(request)
    event = req.event if req else None
    result, task = await run_in_threadpool(pipeline.run_epoch, services, event)
    summary = result.summary()
    await epoch_feed.broadcast_epoch(summary)
    return {**summary, "narrative_task": task.to_dict()}


@router.get("/economy/tasks")
def economy_tasks(limit: int = 50, services: Services = Depends(get_services)):
    return {"tasks": [t.to_dict() for t in services.tasks.list(limit)]}


@router.get("/economy/tasks/{task_id}")
def economy_task(task_id: str, services: Services = Depends(get_services)):
    task = services.tasks.get(task_id)
    if task is None:
        raise NotFoundError(f"unknown task {task_id!r}", code="unknown_task")
    return task.to_dict()


@router.websocket("/ws/economy")
async def economy_ws(ws: WebSocket):
    await epoch_feed.connect(ws)
    try:
        while True:
            await ws.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await epoch_feed.disconnect(ws)
