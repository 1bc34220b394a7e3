"""Price endpoints: crypto, forex and VES quotes plus daily history.

All routes share the per-client rate limit and report cache status via
``X-Cache``.
"""

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from nexo.api.deps import enforce_rate_limit, json_response, normalize_currency, normalize_symbol
from nexo.exceptions import NotFoundError, UpstreamUnavailableError

router = APIRouter(prefix="/prices", dependencies=[Depends(enforce_rate_limit)])

DEFAULT_SYMBOLS = ("BTC", "ETH")


# ---------------------------------------------------------------------------
# Crypto
# ---------------------------------------------------------------------------


@router.get("/crypto")
async def get_crypto_prices(
    request: Request,
    symbols: str | None = Query(None, description="Comma-separated symbols, e.g. BTC,ETH"),
    currency: str = "USD",
) -> JSONResponse:
    """Batch quotes. Unknown or failing symbols are left out of the list."""
    currency = normalize_currency(currency)
    requested = [s for s in (symbols or "").split(",") if s.strip()] or list(DEFAULT_SYMBOLS)
    parsed = [normalize_symbol(s) for s in requested]

    lookup = await request.app.state.crypto_service.get_prices(parsed, currency)
    return json_response(
        request,
        {"prices": [quote.to_dict() for quote in lookup.value]},
        cache_hit=lookup.cache_hit,
        max_age=60,
    )


@router.get("/crypto/history")
async def get_crypto_history(
    request: Request,
    symbol: str = "BTC",
    days: int = 7,
    currency: str = "USD",
) -> JSONResponse:
    lookup = await request.app.state.crypto_service.get_history(
        normalize_symbol(symbol), normalize_currency(currency), days
    )
    return json_response(
        request,
        {"history": [point.to_dict() for point in lookup.value]},
        cache_hit=lookup.cache_hit,
        max_age=600,
    )


@router.get("/crypto/{symbol}")
async def get_crypto_price(request: Request, symbol: str, currency: str = "USD") -> JSONResponse:
    symbol = normalize_symbol(symbol)
    lookup = await request.app.state.crypto_service.get_price(symbol, normalize_currency(currency))
    if lookup.value is None:
        raise NotFoundError(f"No price for {symbol}")
    return json_response(request, lookup.value.to_dict(), cache_hit=lookup.cache_hit, max_age=60)


# ---------------------------------------------------------------------------
# Forex
# ---------------------------------------------------------------------------


@router.get("/forex")
async def get_forex_rate(
    request: Request,
    base: str = Query("USD", alias="from"),
    target: str = Query("EUR", alias="to"),
) -> JSONResponse:
    base = normalize_currency(base, "from")
    target = normalize_currency(target, "to")
    lookup = await request.app.state.forex_service.get_rate(base, target)
    if lookup.value is None:
        raise NotFoundError(f"No rate for {base}->{target}")
    return json_response(request, lookup.value.to_dict(), cache_hit=lookup.cache_hit, max_age=60)


@router.get("/forex/history")
async def get_forex_history(
    request: Request,
    base: str = Query("USD", alias="from"),
    target: str = Query("EUR", alias="to"),
    days: int = 30,
) -> JSONResponse:
    lookup = await request.app.state.forex_service.get_history(
        normalize_currency(base, "from"), normalize_currency(target, "to"), days
    )
    return json_response(
        request,
        {"history": [point.to_dict() for point in lookup.value]},
        cache_hit=lookup.cache_hit,
        max_age=3600,
    )


# ---------------------------------------------------------------------------
# VES
# ---------------------------------------------------------------------------


@router.get("/ves")
async def get_ves_price(request: Request) -> JSONResponse:
    lookup = await request.app.state.ves_service.get_price()
    if lookup.value is None:
        raise UpstreamUnavailableError("VES rate unavailable")
    return json_response(request, lookup.value.to_dict(), cache_hit=lookup.cache_hit, max_age=60)


@router.get("/ves/history")
async def get_ves_history(request: Request, days: int = 7) -> JSONResponse:
    lookup = await request.app.state.ves_service.get_history(days)
    return json_response(
        request,
        {"history": [point.to_dict() for point in lookup.value]},
        cache_hit=lookup.cache_hit,
        max_age=600,
    )
