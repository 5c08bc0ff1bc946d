"""
Main FastAPI Application for KPI Reconciliation.

Exposes the approval workflow and BOQ aggregation under /api/v1.
Authentication is handled upstream; the acting user arrives in headers.
"""
import logging
from typing import Optional

from fastapi import FastAPI

from kpi_recon import __version__
from kpi_recon.api.v1 import api_router as v1_router
from kpi_recon.config import ReconConfig, get_config
from kpi_recon.container import ServiceContainer
from kpi_recon.models import create_engine_from_config, init_db

logger = logging.getLogger(__name__)


def create_app(
    container: Optional[ServiceContainer] = None,
    config: Optional[ReconConfig] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        container: Pre-built service container (tests pass an in-memory one)
        config: Configuration used when the container is built here
    """
    app = FastAPI(
        title="KPI Reconciliation",
        description="KPI approval workflow and BOQ planned/actual reconciliation",
        version=__version__,
    )
    if container is None:
        config = config or get_config()
        container = ServiceContainer.from_engine(create_engine_from_config(config), config)
    app.state.container = container

    @app.on_event("startup")
    async def startup():
        if container.engine is not None and container.tables is not None:
            await init_db(container.engine, container.tables)
            logger.info(f"Database ready ({container.config.database_url})")

    @app.on_event("shutdown")
    async def shutdown():
        await container.dispose()

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": __version__, "config_version": container.config.version}

    app.include_router(v1_router)
    return app
