"""
SAVANA Sensor Collector - Backend API
=====================================
FastAPI application that collects field-node readings and serves them to the
dashboard.

ARCHITECTURE:
    [Upstream sensor API] <--GET hourly-- [This Backend] --upsert--> [sensor_data]
                                                |                          |
                                                +------<-- query ----------+
                                                |
                                       [Dashboard frontend]

    Write path: every POLLING_INTERVAL seconds, each node is fetched,
    normalized and upserted on (id_node, waktu).
    Read path: the dashboard asks for readings or chart series for the nodes
    and date range it has selected.

HOW TO RUN:
    pip install -e .
    cp .env.example .env     # then fill in API_URL, API_KEY, NODE_IDS, ...
    savana serve             # or: uvicorn savana.main:app --port 8000

    One cycle and exit (cron):
    savana fetch

API DOCUMENTATION:
    - Swagger UI: http://localhost:8000/docs
    - ReDoc: http://localhost:8000/redoc
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from savana import __version__
from savana.config import Settings, configure_logging
from savana.routers import poll_router, readings_router, set_collector
from savana.services import Collector

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    collector: Optional[Collector] = None,
    schedule: bool = True
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to use (default: read from the environment)
        collector: Pre-built Collector (tests inject one with mock clients)
        schedule: Start interval polling on startup
    """
    if collector is not None:
        settings = collector.settings
    settings = settings or Settings.from_env()

    # =========================================================================
    # APPLICATION LIFESPAN
    # =========================================================================

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        STARTUP:
            1. Build the Collector (store, fetcher, pipeline, scheduler)
            2. Prepare the store and start polling
            3. Inject the Collector into the routers

        SHUTDOWN:
            1. Stop the poll job
            2. Close HTTP clients
        """
        active = collector or Collector(settings)
        await active.start(schedule=schedule)
        set_collector(active)
        app.state.collector = active

        logger.info("=" * 60)
        logger.info("SAVANA SENSOR COLLECTOR - Backend started")
        logger.info(f"   Store backend: {active.store.backend}")
        logger.info(f"   Nodes: {', '.join(settings.node_ids) or '(none)'}")
        if active.polling_enabled:
            logger.info(f"   Polling interval: {settings.polling_interval} seconds")
        else:
            logger.info(f"   Polling disabled: {active.ingest_error}")
        logger.info("=" * 60)

        yield  # Application runs here

        logger.info("Shutting down...")
        await active.shutdown()
        set_collector(None)
        logger.info("Shutdown complete")

    app = FastAPI(
        title="SAVANA Sensor Collector API",
        description=(
            "Collects temperature, humidity, pressure, soil moisture and rainfall "
            "readings from field nodes and serves them to the dashboard."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(readings_router)
    app.include_router(poll_router)

    # =========================================================================
    # ROOT ENDPOINTS
    # =========================================================================

    @app.get("/", summary="API Information")
    async def root():
        """Root endpoint with links to the available endpoints."""
        return {
            "name": "SAVANA Sensor Collector API",
            "version": __version__,
            "documentation": {
                "swagger": "/docs",
                "redoc": "/redoc",
                "openapi": "/openapi.json"
            },
            "endpoints": {
                "readings": "GET /api/readings?node=<id>&range=1d|7d|30d|all",
                "latest": "GET /api/readings/latest?node=<id>",
                "series": "GET /api/readings/series?node=<id>&range=1d|7d|30d|all",
                "poll_now": "POST /api/poll/run-now",
                "last_cycle": "GET /api/poll/last-cycle",
            }
        }

    @app.get("/health", summary="Health Check")
    async def health():
        """Health check endpoint."""
        active = getattr(app.state, "collector", None)
        body = {"status": "healthy"}
        if active is not None:
            body.update(active.status())
        return body

    return app


def _default_app() -> FastAPI:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    return create_app(settings)


app = _default_app()
