"""
Main FastAPI application for the curtailment mining backend.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, status
from fastapi.responses import JSONResponse

from curtailment_mining.api.middleware import add_middleware
from curtailment_mining.api.routes import reconciliation
from curtailment_mining.api.schemas.common import APIResponse, HealthCheckResponse
from curtailment_mining.core.config import settings
from curtailment_mining.core.database import DatabaseManager, close_database, init_database
from curtailment_mining.core.logging import setup_logging
from curtailment_mining.scheduler import ReconciliationScheduler


logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting curtailment mining API server")
    await init_database()

    scheduler = ReconciliationScheduler()
    if settings.is_production:
        await scheduler.start()
    app.state.scheduler = scheduler

    yield

    logger.info("Shutting down curtailment mining API server")
    await scheduler.stop()
    await close_database()


def create_app(use_lifespan: bool = True) -> FastAPI:
    """Create and configure FastAPI application."""
    setup_logging()

    app = FastAPI(
        title="Curtailment Mining API",
        description="Reconciles curtailment events with derived Bitcoin mining-potential records.",
        version=settings.app_version,
        lifespan=lifespan if use_lifespan else None,
    )

    add_middleware(app)

    @app.get(
        "/health",
        response_model=HealthCheckResponse,
        tags=["System"],
        summary="Health Check",
    )
    async def health_check():
        if await DatabaseManager.health_check():
            return HealthCheckResponse(version=settings.app_version)

        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "unhealthy",
                "services": {"database": "unhealthy", "api": "healthy"},
            },
        )

    @app.get("/", response_model=APIResponse, tags=["System"], summary="API Information")
    async def root():
        return APIResponse(message=f"{settings.app_name} v{settings.app_version}")

    app.include_router(
        reconciliation.router,
        prefix="/reconciliation",
        tags=["Reconciliation"],
    )

    logger.info("FastAPI application created successfully")
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "curtailment_mining.api.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.lower(),
    )
