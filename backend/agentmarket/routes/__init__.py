"""
Register all route modules with the FastAPI app.
"""
from __future__ import annotations

from fastapi import FastAPI


def register_routes(app: FastAPI) -> None:
    from agentmarket.routes import cron, economy, narrative, predictions
    app.include_router(economy.router)
    app.include_router(narrative.router)
    app.include_router(predictions.router)
    app.include_router(cron.router)
