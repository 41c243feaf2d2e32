"""FastAPI application and uvicorn runner for ``tokenwarden serve``.

The lifespan starts two periodic jobs (cleanup sweep and webhook retry
sweep) unless ``Settings.background_tasks`` is off, and closes registered
singletons on shutdown.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

logger = logging.getLogger(__name__)


def build_background_tasks(settings):
    """Create (not start) the periodic cleanup and webhook retry jobs."""
    from tokenwarden.oauth2.cleanup import CleanupSweeper
    from tokenwarden.oauth2.storage import get_oauth_store
    from tokenwarden.scheduler import PeriodicTask
    from tokenwarden.webhooks.delivery import get_delivery_engine

    sweeper = CleanupSweeper(
        get_oauth_store(),
        delivery_retention=timedelta(days=settings.delivery_retention_days),
    )
    return [
        PeriodicTask("oauth-cleanup", sweeper.sweep, settings.cleanup_interval),
        PeriodicTask(
            "webhook-retry",
            get_delivery_engine().retry_failed_deliveries,
            settings.webhook_retry_interval,
        ),
    ]


@asynccontextmanager
async def lifespan(app):
    from tokenwarden import lifecycle
    from tokenwarden.config import get_settings

    settings = get_settings()
    tasks = build_background_tasks(settings) if settings.background_tasks else []
    for task in tasks:
        task.start()
    app.state.periodic_tasks = tasks
    try:
        yield
    finally:
        for task in tasks:
            await task.stop()
        await lifecycle.shutdown_all()


def create_api_app():
    """Build the FastAPI application."""
    from fastapi import FastAPI
    from fastapi.middleware.cors import CORSMiddleware

    from tokenwarden import __version__
    from tokenwarden.api.v1 import mount_v1_routers
    from tokenwarden.config import get_settings

    settings = get_settings()
    app = FastAPI(
        title="tokenwarden",
        description="OAuth2 authorization server with PKCE, refresh rotation and webhooks.",
        version=__version__,
        docs_url="/api/v1/docs",
        redoc_url="/api/v1/redoc",
        openapi_url="/api/v1/openapi.json",
        lifespan=lifespan,
    )

    if settings.cors_allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allowed_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type", settings.user_header],
        )

    mount_v1_routers(app)
    return app


def run_api_server(host: str = "127.0.0.1", port: int = 8888, dev: bool = False) -> None:
    """Start the API server."""
    import uvicorn

    logger.info("API docs: http://%s:%d/api/v1/docs", host, port)

    if dev:
        import pathlib

        src_dir = str(pathlib.Path(__file__).resolve().parent.parent)
        uvicorn.run(
            "tokenwarden.api.serve:create_api_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            reload_dirs=[src_dir],
            log_level="debug",
        )
    else:
        uvicorn.run(create_api_app(), host=host, port=port, log_config=None)
