"""One-shot job endpoints for serverless deployments.

An external scheduler calls these with ``Authorization: Bearer <CRON_SECRET>``
instead of the in-process background loops.
"""

import hmac

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from nexo.exceptions import UnauthorizedError
from nexo.logging import get_logger

logger = get_logger(__name__)


async def require_cron_secret(
    request: Request,
    authorization: str | None = Header(None),
) -> None:
    secret = request.app.state.settings.cron.secret.get_secret_value()
    if not secret:
        raise UnauthorizedError("CRON_SECRET not configured")

    token = ""
    if authorization:
        scheme, _, value = authorization.strip().partition(" ")
        token = value.strip() if scheme.lower() == "bearer" else ""
    if not hmac.compare_digest(token.encode(), secret.encode()):
        raise UnauthorizedError("Invalid cron secret")


router = APIRouter(prefix="/cron", dependencies=[Depends(require_cron_secret)])


@router.get("/evaluate-alerts")
async def evaluate_alerts(request: Request) -> JSONResponse:
    result = await request.app.state.alert_evaluator.evaluate_all()
    logger.info("cron_evaluate_alerts", evaluated=result.evaluated, triggered=result.triggered)
    return JSONResponse(
        content={"ok": True, "evaluated": result.evaluated, "triggered": result.triggered}
    )


@router.get("/ves-snapshot")
async def ves_snapshot(request: Request) -> JSONResponse:
    snapshot = await request.app.state.ves_service.record_snapshot()
    if snapshot is None:
        return JSONResponse(content={"ok": True, "message": "VES snapshot skipped: no rate available"})
    return JSONResponse(content={"ok": True, "message": "VES snapshot saved"})
