"""
Shared-secret authorization for privileged triggers.
"""
from __future__ import annotations

import hmac
from typing import List

from fastapi import Request

from agentmarket import config
from agentmarket.errors import AuthorizationError


def _configured_secrets() -> List[str]:
    return [s for s in (config.ECONOMY_EPOCH_SECRET, config.CRON_SECRET) if s]


def bearer_token(request: Request) -> str:
    auth = (request.headers.get("authorization") or "").strip()
    if not auth.lower().startswith("bearer "):
        return ""
    return auth.split(" ", 1)[1].strip()


def has_secret(request: Request) -> bool:
    """
    True when the request carries one of the configured secrets.
    With no secret configured nothing is privileged-accessible.
    """
    token = bearer_token(request)
    if not token:
        return False
    return any(hmac.compare_digest(token.encode(), s.encode()) for s in _configured_secrets())


def require_secret(request: Request) -> None:
    if not has_secret(request):
        raise AuthorizationError("missing or invalid bearer secret")
