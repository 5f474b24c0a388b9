"""teamcal API: FastAPI application factory.

The app factory creates a FastAPI instance with:
- CORS middleware (configurable origins)
- Lifespan handler that loads config, sets up logging and telemetry, and
  opens the database pool and HTTP client
- Health endpoint at GET /api/health
- The sync, connection, preference and OAuth routers
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from teamcal import __version__
from teamcal.api.deps import SyncServices, init_services
from teamcal.api.middleware import register_error_handlers
from teamcal.api.routers.connections import router as connections_router
from teamcal.api.routers.oauth import router as oauth_router
from teamcal.api.routers.preferences import router as preferences_router
from teamcal.api.routers.sync import router as sync_router
from teamcal.config import SyncConfig, load_config
from teamcal.core.logging import configure_logging
from teamcal.core.metrics import init_metrics
from teamcal.core.telemetry import init_telemetry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle for the database pool and HTTP client.

    Services injected through :func:`create_app` are used as-is and left
    open on shutdown.
    """
    if getattr(app.state, "services", None) is not None:
        yield
        return

    config: SyncConfig = app.state.config or load_config()
    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_root=config.logging.log_root,
    )
    init_telemetry()
    init_metrics()

    services = await init_services(config)
    app.state.services = services
    logger.info("teamcal services started (max_concurrency=%d)", config.sync.max_concurrency)
    try:
        yield
    finally:
        await services.close()
        app.state.services = None


def create_app(
    cors_origins: list[str] | None = None,
    config: SyncConfig | None = None,
    services: SyncServices | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    cors_origins:
        Allowed CORS origins. Defaults to ["http://localhost:5173"] for
        a local dashboard dev server.
    config:
        Loaded configuration. When omitted the lifespan handler calls
        :func:`~teamcal.config.load_config`.
    services:
        Pre-built services (used by tests). When set, the lifespan handler
        does not open any connections.
    """
    if cors_origins is None:
        cors_origins = ["http://localhost:5173"]

    app = FastAPI(
        title="teamcal",
        version=__version__,
        lifespan=lifespan,
    )
    app.router.redirect_slashes = False
    app.state.config = config
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    app.include_router(sync_router)
    app.include_router(connections_router)
    app.include_router(preferences_router)
    app.include_router(oauth_router)

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    return app
