"""Service info and liveness endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from nexo import __version__

router = APIRouter()


@router.get("/")
async def root() -> JSONResponse:
    return JSONResponse(
        content={
            "name": "Nexo API",
            "version": __version__,
            "status": "ok",
            "endpoints": {
                "health": "GET /api/health",
                "prices": {
                    "ves": "GET /api/prices/ves",
                    "vesHistory": "GET /api/prices/ves/history?days=7",
                    "forex": "GET /api/prices/forex?from=USD&to=EUR",
                    "forexHistory": "GET /api/prices/forex/history?days=30&from=USD&to=EUR",
                    "crypto": "GET /api/prices/crypto?symbols=BTC,ETH&currency=USD",
                    "cryptoHistory": "GET /api/prices/crypto/history?symbol=BTC&days=7&currency=USD",
                    "cryptoBySymbol": "GET /api/prices/crypto/{symbol}",
                },
                "cron": {
                    "evaluateAlerts": "GET /api/cron/evaluate-alerts",
                    "vesSnapshot": "GET /api/cron/ves-snapshot",
                },
            },
        }
    )


@router.get("/api/health")
async def health() -> JSONResponse:
    return JSONResponse(
        content={
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        }
    )
