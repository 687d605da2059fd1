"""
Idea Forge - FastAPI Application
================================

Main application factory with routers, middleware and the generation engine.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from ideaforge.api import generation, slots
from ideaforge.core.config import settings
from ideaforge.core.database import AsyncSessionLocal, close_db, init_db
from ideaforge.core.errors import GenerationError
from ideaforge.core.generation.services import GenerationServices, build_services
from ideaforge.core.schemas import ErrorDetail, ErrorResponse, HealthResponse

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer() if settings.is_production else structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


def _error_response(status_code: int, message: str, code: str, details=None, headers=None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(message=message, code=code, details=details))
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(body.model_dump()),
        headers=headers,
    )


# ==========================================================================
# Lifespan
# ==========================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Startup:
    - Initialize database connection
    - Fail sessions left in progress, seed the default profile and slots
    - Start the slot scheduler

    Shutdown:
    - Stop the scheduler and cancel in-flight auto-generations
    - Close database connections
    """
    services: GenerationServices = app.state.services

    logger.info("Starting Idea Forge", version=settings.APP_VERSION)

    await init_db()
    logger.info("Database initialized")

    await services.startup()
    logger.info("Generation engine ready", scheduler=services.scheduler.is_running)

    yield

    logger.info("Shutting down Idea Forge")
    await services.shutdown()
    await close_db()
    logger.info("Database connections closed")


# ==========================================================================
# App Factory
# ==========================================================================

def create_app(services: Optional[GenerationServices] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        services: Generation engine to serve; built over the configured
            database when omitted

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Idea Forge - AI business idea generation engine",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
        lifespan=lifespan,
    )
    app.state.services = services or build_services(AsyncSessionLocal)

    # ==========================================================================
    # Middleware
    # ==========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ==========================================================================
    # Exception Handlers
    # ==========================================================================

    @app.exception_handler(GenerationError)
    async def generation_exception_handler(request: Request, exc: GenerationError) -> JSONResponse:
        """Map engine errors onto the error envelope."""
        if exc.status_code >= 500:
            logger.warning("Generation request failed", path=request.url.path, code=exc.code, error=exc.message)
        return _error_response(exc.status_code, exc.message, exc.code, exc.details or None)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error_response(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "Request validation failed",
            "VALIDATION_ERROR",
            {"errors": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        codes = {
            status.HTTP_401_UNAUTHORIZED: "UNAUTHORIZED",
            status.HTTP_403_FORBIDDEN: "FORBIDDEN",
            status.HTTP_404_NOT_FOUND: "NOT_FOUND",
        }
        return _error_response(
            exc.status_code,
            str(exc.detail),
            codes.get(exc.status_code, "HTTP_ERROR"),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.error(
            "Unhandled exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
        )

        if settings.is_development:
            detail = str(exc)
        else:
            detail = "An unexpected error occurred"

        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, detail, "INTERNAL_ERROR")

    # ==========================================================================
    # Routers
    # ==========================================================================

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["Health"],
        summary="Health check",
    )
    async def health_check(request: Request) -> HealthResponse:
        """
        Check application health.

        Returns status of:
        - Application
        - Database connection
        - Slot scheduler
        """
        engine_services: GenerationServices = request.app.state.services
        try:
            async with engine_services.session_factory() as db:
                await db.execute(text("SELECT 1"))
            database = "connected"
        except Exception as e:
            logger.warning("Database health check failed", error=str(e))
            database = "unavailable"

        return HealthResponse(
            status="healthy" if database == "connected" else "degraded",
            version=settings.APP_VERSION,
            environment=settings.ENVIRONMENT,
            database=database,
            scheduler="running" if engine_services.scheduler.is_running else "stopped",
        )

    # API v1 routes
    app.include_router(generation.router, prefix=settings.API_V1_PREFIX)
    app.include_router(slots.router, prefix=settings.API_V1_PREFIX)

    # ==========================================================================
    # Root Endpoint
    # ==========================================================================

    @app.get("/", tags=["Root"])
    async def root() -> dict:
        """Root endpoint with API info."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs" if settings.is_development else "Disabled in production",
            "health": "/health",
            "api": settings.API_V1_PREFIX,
        }

    return app


# ==========================================================================
# Application Instance
# ==========================================================================

app = create_app()


# ==========================================================================
# Development Server
# ==========================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "ideaforge.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level="info",
    )
