"""
Error taxonomy for the economy service.

Every error carries a stable machine-readable ``code`` and the HTTP status the
API renders it with. Services raise these; the app-level handler in main.py
turns them into ``{"error": code, "message": ...}`` responses.
"""
from __future__ import annotations

from typing import Optional


class EconomyError(Exception):
    code = "economy_error"
    status_code = 400

    def __init__(self, message: str = "", code: Optional[str] = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class ValidationError(EconomyError):
    code = "invalid_request"
    status_code = 400


class AuthorizationError(EconomyError):
    code = "unauthorized"
    status_code = 401


class ConflictError(EconomyError):
    code = "conflict"
    status_code = 409


class DuplicateKeyError(ConflictError):
    code = "duplicate_key"


class DuplicateBetError(ConflictError):
    code = "duplicate_bet"


class InsufficientResourceError(EconomyError):
    code = "insufficient_resource"
    status_code = 400


class InsufficientPointsError(InsufficientResourceError):
    code = "insufficient_points"


class RateLimitedError(EconomyError):
    code = "rate_limited"
    status_code = 429

    def __init__(self, message: str = "", retry_after: float = 0.0) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamGenerationError(EconomyError):
    code = "upstream_generation_failed"
    status_code = 502


class PersistenceError(EconomyError):
    code = "persistence_error"
    status_code = 500


class NotFoundError(EconomyError):
    code = "not_found"
    status_code = 404
