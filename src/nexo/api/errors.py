"""Uniform JSON error responses and request-scoped logging context.

Every error leaves the service as
``{"statusCode", "error", "message", "timestamp", "path"}``. Rate-limit
headers computed earlier in the request are attached to error responses
too, so clients see their budget on 404/502/429 alike.
"""

from datetime import datetime, timezone
from http import HTTPStatus
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from nexo.exceptions import NexoError, RateLimitedError
from nexo.logging import bind_request_context, get_logger

logger = get_logger(__name__)


def _error_code(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase.lower().replace(" ", "_").replace("-", "_")
    except ValueError:
        return "error"


def error_response(
    request: Request,
    status_code: int,
    error: str,
    message: Any,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = {
        "statusCode": status_code,
        "error": error,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        "path": request.url.path,
    }

    merged: dict[str, str] = {}
    rate_limit = getattr(request.state, "rate_limit", None)
    if rate_limit is not None:
        merged.update(rate_limit.headers())
    merged.update(headers or {})

    if status_code >= 500:
        logger.error(
            "http_server_error",
            method=request.method,
            path=request.url.path,
            status=status_code,
            error=error,
        )
    else:
        logger.warning(
            "http_client_error",
            method=request.method,
            path=request.url.path,
            status=status_code,
            error=error,
        )

    return JSONResponse(status_code=status_code, content=body, headers=merged)


async def _nexo_error_handler(request: Request, exc: NexoError) -> JSONResponse:
    headers: dict[str, str] = {}
    if isinstance(exc, RateLimitedError):
        headers.update(exc.result.headers())
        headers["Retry-After"] = headers["X-RateLimit-Reset"]
    return error_response(request, exc.status_code, exc.error_code, str(exc) or exc.error_code, headers)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part not in ("query", "path"))
        messages.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    return error_response(request, 400, "bad_request", messages)


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(
        request,
        exc.status_code,
        _error_code(exc.status_code),
        exc.detail,
        dict(exc.headers) if exc.headers else None,
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "unhandled_exception",
        method=request.method,
        path=request.url.path,
        error=str(exc),
        exc_info=exc,
    )
    return error_response(request, 500, "internal_error", "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    """Install the exception handlers and the logging-context middleware."""
    app.add_exception_handler(NexoError, _nexo_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_error_handler)

    @app.middleware("http")
    async def request_context(request: Request, call_next):  # type: ignore[no-untyped-def]
        with bind_request_context(method=request.method, path=request.url.path):
            return await call_next(request)
