"""Entry point for the Nexo price service.

Wires all components together and serves the API with uvicorn's
programmatic API. Background jobs (alert evaluation, VES snapshots) share
the server's event loop and are managed by the FastAPI lifespan. In
serverless mode they are not started; the cron endpoints drive them.

Component wiring order (in build_components):
1. HttpFetcher (shared outbound client)
2. TTLCache (shared quote cache)
3. FixedWindowRateLimiter
4. Database and row stores
5. ForexService, CryptoService, VesService
6. ExpoPushTransport
7. AlertEvaluator and AlertScheduler
8. VesSnapshotJob
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from nexo.alerts.evaluator import AlertEvaluator
from nexo.alerts.scheduler import AlertScheduler
from nexo.api.app import create_app
from nexo.api.rate_limiter import FixedWindowRateLimiter
from nexo.config import AppSettings
from nexo.data.database import Database
from nexo.data.store import AlertStore, PushTokenStore, VesHistoryStore
from nexo.http.fetcher import HttpFetcher
from nexo.logging import get_logger, setup_logging
from nexo.market_data.cache import TTLCache
from nexo.market_data.crypto import CryptoService
from nexo.market_data.forex import ForexService
from nexo.market_data.ves import VesService, VesSnapshotJob
from nexo.notifications.push import ExpoPushTransport


def build_components(settings: AppSettings) -> dict[str, Any]:
    """Build every service from settings.

    Does NOT connect the database or start background loops; that happens
    in the lifespan.

    Returns:
        Dict mapping component names to instances.
    """
    fetcher = HttpFetcher(settings.http)
    cache = TTLCache()
    rate_limiter = FixedWindowRateLimiter(settings.rate_limit)

    database = Database(settings.store.db_path)
    alert_store = AlertStore(database)
    push_token_store = PushTokenStore(database)
    ves_history_store = VesHistoryStore(database)

    forex_service = ForexService(
        fetcher, cache, settings.providers, settings.cache, settings.http
    )
    crypto_service = CryptoService(
        fetcher, cache, settings.providers, settings.cache, settings.http
    )
    ves_service = VesService(
        fetcher,
        cache,
        forex_service,
        ves_history_store,
        settings.providers,
        settings.cache,
    )

    push_transport = ExpoPushTransport(fetcher, settings.alerts)

    alert_evaluator = AlertEvaluator(
        alerts=alert_store,
        push_tokens=push_token_store,
        push=push_transport,
        crypto=crypto_service,
        forex=forex_service,
        ves=ves_service,
        settings=settings.alerts,
    )
    alert_scheduler = AlertScheduler(alert_evaluator, settings.alerts)
    ves_snapshot_job = VesSnapshotJob(ves_service, settings.ves)

    return {
        "fetcher": fetcher,
        "cache": cache,
        "rate_limiter": rate_limiter,
        "database": database,
        "alert_store": alert_store,
        "push_token_store": push_token_store,
        "ves_history_store": ves_history_store,
        "forex_service": forex_service,
        "crypto_service": crypto_service,
        "ves_service": ves_service,
        "push_transport": push_transport,
        "alert_evaluator": alert_evaluator,
        "alert_scheduler": alert_scheduler,
        "ves_snapshot_job": ves_snapshot_job,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore[no-untyped-def]
    """Connect the store and run background jobs for the app's lifetime."""
    logger = get_logger("nexo.main")
    settings: AppSettings = app.state.settings
    components = app.state.components

    try:
        await components["database"].connect()

        if settings.serverless:
            logger.info("background_jobs_skipped", reason="serverless")
        else:
            await components["alert_scheduler"].start()
            await components["ves_snapshot_job"].start()

        logger.info("lifespan_started", serverless=settings.serverless)
        yield
    finally:
        await components["alert_scheduler"].stop()
        await components["ves_snapshot_job"].stop()
        await components["fetcher"].close()
        await components["database"].close()
        logger.info("nexo_stopped")


async def run() -> None:
    """Run the API server until interrupted."""
    settings = AppSettings()
    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger("nexo.main")

    components = build_components(settings)
    app = create_app(settings, components, lifespan=lifespan)

    logger.info(
        "starting_server",
        host=settings.server.host,
        port=settings.server.port,
        serverless=settings.serverless,
    )

    config = uvicorn.Config(
        app,
        host=settings.server.host,
        port=settings.server.port,
        log_level="warning",  # Suppress uvicorn access logs
    )
    server = uvicorn.Server(config)
    await server.serve()


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
