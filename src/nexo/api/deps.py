"""Request-level helpers shared by the route modules."""

import re
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from nexo.exceptions import ClientError, RateLimitedError
from nexo.models import ALLOWED_CURRENCIES, RateLimitResult

SYMBOL_PATTERN = re.compile(r"^[A-Z0-9]{1,15}$")


def client_id(request: Request) -> str:
    """First X-Forwarded-For hop, else the socket peer, else ``"unknown"``."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client is not None and request.client.host:
        return request.client.host
    return "unknown"


async def enforce_rate_limit(request: Request) -> RateLimitResult:
    """Count the request against the caller's window; 429 once it is spent."""
    result = request.app.state.rate_limiter.check(client_id(request))
    request.state.rate_limit = result
    if not result.allowed:
        raise RateLimitedError(result)
    return result


def normalize_symbol(raw: str) -> str:
    symbol = raw.strip().upper()
    if not SYMBOL_PATTERN.match(symbol):
        raise ClientError(f"Invalid symbol: {raw!r}")
    return symbol


def normalize_currency(raw: str, field: str = "currency") -> str:
    currency = raw.strip().upper()
    if currency not in ALLOWED_CURRENCIES:
        raise ClientError(f"{field} must be one of: {', '.join(ALLOWED_CURRENCIES)}")
    return currency


def json_response(
    request: Request,
    content: Any,
    cache_hit: bool | None = None,
    max_age: int | None = None,
) -> JSONResponse:
    """200 JSON response carrying the rate-limit and cache-status headers."""
    headers: dict[str, str] = {}
    rate_limit = getattr(request.state, "rate_limit", None)
    if rate_limit is not None:
        headers.update(rate_limit.headers())
    if cache_hit is not None:
        headers["X-Cache"] = "HIT" if cache_hit else "MISS"
    if max_age is not None:
        headers["Cache-Control"] = f"public, max-age={max_age}"
    return JSONResponse(content=content, headers=headers)
