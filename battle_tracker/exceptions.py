from __future__ import annotations
from typing import Any, Dict, Optional
from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


# ── Typed domain exceptions ───────────────────────────────────────────────────

class AppError(Exception):
    """Base for all application-level errors."""
    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, detail: str, context: Optional[Dict[str, Any]] = None):
        self.detail = detail
        self.context = context or {}
        super().__init__(detail)


class ValidationError(AppError):
    """Malformed or missing input, from a caller or from an upstream payload."""
    status_code = 400
    error_code = "VALIDATION_ERROR"


class AuthenticationError(AppError):
    status_code = 401
    error_code = "UNAUTHORIZED"


class NotFoundError(AppError):
    status_code = 404
    error_code = "NOT_FOUND"


class ConflictError(AppError):
    status_code = 409
    error_code = "CONFLICT"


class StorageError(AppError):
    status_code = 503
    error_code = "STORAGE_ERROR"


# ── Upstream failures ─────────────────────────────────────────────────────────

class ApiError(AppError):
    """Base for everything the Eclesiar API can do wrong. ``status`` is the
    HTTP status or envelope code that was observed, 0 when there was none."""
    status_code = 502
    error_code = "UPSTREAM_ERROR"

    def __init__(
        self,
        detail: str,
        status: int = 0,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.status = status
        super().__init__(detail, {"upstream_status": status, **(context or {})})


class UpstreamError(ApiError):
    """Upstream answered with a non-success HTTP status or envelope code."""


class RateLimitError(ApiError):
    """A single throttled response. Retried by the client, never surfaced."""
    status_code = 429
    error_code = "RATE_LIMIT_EXCEEDED"


class RateLimitExhausted(ApiError):
    status_code = 503
    error_code = "UPSTREAM_RATE_LIMITED"


class NetworkError(ApiError):
    status_code = 504
    error_code = "UPSTREAM_UNREACHABLE"


# ── FastAPI exception handlers ────────────────────────────────────────────────

async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.error_code,
            "detail": exc.detail,
            "context": exc.context,
        },
    )


async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": "HTTP_ERROR",
            "detail": exc.detail,
        },
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": ValidationError.error_code,
            "detail": "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in exc.errors()
            ),
        },
    )
