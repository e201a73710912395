"""
staffplan API Main Application

Entry point for the FastAPI application.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from prometheus_client import make_asgi_app

from staffplan.api.middleware import RequestContextMiddleware
from staffplan.api.routers import allocations, capacity
from staffplan.engine import build_engine
from staffplan.engine.policy import CapacityPolicy
from staffplan.errors import (
    AllocationEngineError,
    CapacityExceededError,
    ConflictError,
    NotFoundError,
    StateTransitionError,
    StorageError,
    ValidationError,
)
from staffplan.platform.config import Settings, settings as default_settings
from staffplan.platform.logging import configure_logging, get_logger
from staffplan.storage.database import DatabaseAdapter, DatabaseConfig

# Configure logging on import
configure_logging()
logger = get_logger(__name__)

ERROR_STATUS = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ValidationError: status.HTTP_400_BAD_REQUEST,
    ConflictError: status.HTTP_409_CONFLICT,
    CapacityExceededError: status.HTTP_409_CONFLICT,
    StateTransitionError: status.HTTP_409_CONFLICT,
    StorageError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


async def engine_error_handler(request: Request, exc: AllocationEngineError) -> JSONResponse:
    status_code = ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error("engine.error", error=exc.code, message=exc.message)
    else:
        logger.info("engine.rejected", error=exc.code, status_code=status_code)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(exc.to_dict()))


def create_app(
    adapter: Optional[DatabaseAdapter] = None,
    settings: Optional[Settings] = None,
    policy: Optional[CapacityPolicy] = None,
) -> FastAPI:
    """
    Build the application around one database adapter and one engine.

    Tests pass their own adapter (usually SQLite); production reads
    DatabaseConfig from the environment.
    """
    settings = settings or default_settings
    adapter = adapter or DatabaseAdapter(DatabaseConfig())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan handler for startup/shutdown."""
        logger.info("Starting staffplan API...")
        adapter.connect()
        if settings.DB_AUTO_CREATE or adapter.config.is_sqlite:
            adapter.create_schema()
        logger.info("Database ready.")

        yield

        logger.info("Shutting down staffplan API...")
        adapter.close()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.VERSION,
        description="Resource allocation conflict and capacity engine",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.adapter = adapter
    app.state.engine = build_engine(policy or CapacityPolicy.from_settings(settings))

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS.split(",") if settings.CORS_ORIGINS else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(AllocationEngineError, engine_error_handler)

    # =========================================================================
    # OBSERVABILITY
    # =========================================================================

    if settings.METRICS_ENABLED:
        app.mount("/metrics", make_asgi_app())

    # =========================================================================
    # HEALTH ENDPOINTS
    # =========================================================================

    @app.get("/health/live", tags=["Health"])
    async def liveness() -> dict:
        """Liveness probe - is the service running?"""
        return {"status": "alive"}

    @app.get("/health/ready", tags=["Health"])
    def readiness() -> dict:
        """Readiness probe - can the service reach its database?"""
        database_healthy = adapter.health_check()
        return {
            "status": "ready" if database_healthy else "not_ready",
            "version": settings.VERSION,
            "checks": {"database": "healthy" if database_healthy else "unhealthy"},
        }

    # =========================================================================
    # API ROUTERS
    # =========================================================================

    app.include_router(allocations.router, prefix="/api/v1/allocations", tags=["Allocations"])
    app.include_router(capacity.router, prefix="/api/v1/capacity", tags=["Capacity"])

    return app


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run(
        "staffplan.api.main:app",
        host=default_settings.API_HOST,
        port=default_settings.API_PORT,
        reload=default_settings.DEBUG,
    )


if __name__ == "__main__":
    run()
