"""FastAPI application factory."""

from typing import Any

from fastapi import FastAPI

from nexo import __version__
from nexo.api.errors import register_error_handlers
from nexo.api.routes import cron, health, prices
from nexo.config import AppSettings

# Components route handlers reach through request.app.state
_STATE_COMPONENTS = (
    "rate_limiter",
    "crypto_service",
    "forex_service",
    "ves_service",
    "alert_evaluator",
)


def create_app(
    settings: AppSettings,
    components: dict[str, Any],
    lifespan: Any = None,
) -> FastAPI:
    """Create and configure the API application.

    Args:
        settings: Application settings (the cron secret is read per request).
        components: Wired services, as built by ``nexo.main.build_components``.
        lifespan: Optional async context manager for startup/shutdown.
            Used by main.py to connect the store and run background loops.

    Returns:
        Configured FastAPI application with error handlers and routes.
    """
    app = FastAPI(title="Nexo API", version=__version__, lifespan=lifespan)

    app.state.settings = settings
    app.state.components = components
    for name in _STATE_COMPONENTS:
        setattr(app.state, name, components[name])

    register_error_handlers(app)

    app.include_router(health.router)
    app.include_router(prices.router, prefix="/api")
    app.include_router(cron.router, prefix="/api")

    return app
