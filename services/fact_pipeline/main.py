"""
Fact Pipeline Service - Main Application
========================================

FastAPI application exposing the fact pipeline admin entry points and
the published rule query API. Optionally runs the drainer in-process.

Version: 0.1.0
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from services.fact_pipeline.exceptions import (
    ApprovalError,
    CycleDetectedError,
    DSLValidationError,
    InvalidTransitionError,
    PipelineError,
)
from services.fact_pipeline.routes import pipeline, rules
from services.fact_pipeline.schemas import HealthResponse
from services.fact_pipeline.workers.drainer import PipelineDrainer
from shared.config import settings
from shared.database.postgres import PostgresClient
from shared.logging import get_logger, setup_logging


# Setup logging
setup_logging(
    log_level=settings.log_level.value,
    json_logs=settings.is_production,
    service_name="fact-pipeline",
)

logger = get_logger(__name__)

ERROR_STATUS: dict[type[PipelineError], int] = {
    ApprovalError: status.HTTP_400_BAD_REQUEST,
    InvalidTransitionError: status.HTTP_409_CONFLICT,
    CycleDetectedError: status.HTTP_409_CONFLICT,
    DSLValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    """Application lifespan manager."""
    logger.info(
        "fact_pipeline_starting",
        environment=settings.environment.value,
        port=settings.port,
        run_drainer=settings.run_drainer,
    )

    # Startup
    try:
        await PostgresClient.create_all()
        logger.info("postgres_connected")
    except Exception as e:
        logger.error("startup_failed", error=str(e))
        raise

    drainer: PipelineDrainer | None = None
    drainer_task: asyncio.Task[None] | None = None
    if settings.run_drainer:
        drainer = PipelineDrainer()
        drainer_task = asyncio.create_task(drainer.run())

    yield

    # Shutdown
    logger.info("fact_pipeline_shutting_down")
    if drainer is not None and drainer_task is not None:
        drainer.stop()
        await drainer_task
    await PostgresClient.close()


# Create FastAPI application
app = FastAPI(
    title="Fact Pipeline Service",
    description="Evidence to published regulatory rules",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors.origins_list,
    allow_credentials=settings.cors.allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Health Check Endpoints
# ============================================================================


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """
    Service health check.

    Returns health status of the service and its database.
    """
    components: dict[str, dict[str, Any]] = {
        "postgres": await PostgresClient.health_check(),
    }
    all_healthy = all(c.get("status") == "healthy" for c in components.values())

    return HealthResponse(
        status="healthy" if all_healthy else "degraded",
        service="fact-pipeline",
        version="0.1.0",
        components=components,
    )


@app.get("/", tags=["Health"])
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": "Fact Pipeline Service",
        "version": "0.1.0",
        "docs": "/docs",
    }


# ============================================================================
# Include Routers
# ============================================================================

app.include_router(
    pipeline.router,
    prefix="/api/v1/pipeline",
    tags=["Pipeline"],
)

app.include_router(
    rules.router,
    prefix="/api/v1/rules",
    tags=["Rules"],
)


# ============================================================================
# Error Handlers
# ============================================================================


def _error_response(status_code: int, error: Any, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, "status_code": status_code, **extra},
    )


@app.exception_handler(PipelineError)
async def pipeline_exception_handler(request: Any, exc: PipelineError) -> Any:
    """Map pipeline errors onto HTTP status codes."""
    status_code = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    logger.warning(
        "pipeline_exception",
        code=exc.code,
        error=exc.message,
        status_code=status_code,
        path=request.url.path,
    )
    return _error_response(status_code, exc.message, code=exc.code)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Any, exc: HTTPException) -> Any:
    """Handle HTTP exceptions."""
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
    )
    return _error_response(exc.status_code, exc.detail)


@app.exception_handler(Exception)
async def general_exception_handler(request: Any, exc: Exception) -> Any:
    """Handle unexpected exceptions."""
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


# ============================================================================
# Run with Uvicorn
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "services.fact_pipeline.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.value.lower(),
    )
