"""
FastAPI application: middleware, error rendering, health, route registration.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from agentmarket.config import BACKEND_VERSION, validate_config
from agentmarket.errors import EconomyError, RateLimitedError
from agentmarket.routes import register_routes
from agentmarket.state import Services, get_services, shutdown_services
from agentmarket.store import AGENTS

_log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    validate_config()
    yield
    shutdown_services()


def create_app() -> FastAPI:
    app = FastAPI(title="AgentMarket Economy Backend", version=BACKEND_VERSION, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(EconomyError)
    async def economy_error_handler(request: Request, exc: EconomyError):
        if exc.status_code >= 500:
            _log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        headers = None
        if isinstance(exc, RateLimitedError):
            headers = {"Retry-After": str(int(exc.retry_after) + 1)}
        return JSONResponse(exc.to_dict(), status_code=exc.status_code, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg', 'invalid')}" if field else "invalid request body"
        return JSONResponse({"error": "invalid_request", "message": message}, status_code=400)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        _log.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse({"error": "internal_error"}, status_code=500)

    @app.get("/health")
    def health(services: Services = Depends(get_services)):
        return {
            "ok": True,
            "version": BACKEND_VERSION,
            "agents": services.store.count(AGENTS),
            "next_epoch": services.engine.next_epoch_number(),
        }

    register_routes(app)
    return app


app = create_app()
