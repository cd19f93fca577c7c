"""
SwarmBet Backend Application

Daily prediction polls resolved by crowd consensus and, later, by the
real-world market outcome.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.v1 import router as api_v1_router
from core.config import settings
from core.events import create_start_app_handler, create_stop_app_handler
from core.exceptions import SwarmBetError, Unauthorized

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events."""
    # Startup
    await create_start_app_handler(app)()
    yield
    # Shutdown
    await create_stop_app_handler(app)()


def create_application() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title=settings.APP_NAME,
        description="Poll lifecycle, consensus resolution and outcome reconciliation",
        version="1.0.0",
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Admin-Key"],
    )

    application.include_router(api_v1_router, prefix="/api/v1")

    @application.exception_handler(SwarmBetError)
    async def swarmbet_exception_handler(request: Request, exc: SwarmBetError) -> JSONResponse:
        """Map domain errors to their HTTP status with an opaque message."""
        if exc.status_code >= 500:
            logger.error("request_failed", error_type=exc.error_type, path=request.url.path)
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "error_type": exc.error_type},
            headers={"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None,
        )

    @application.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Anything not raised as a SwarmBetError is reported as an opaque 500."""
        logger.exception(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            method=request.method,
        )
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Unable to process request",
                "error_type": type(exc).__name__ if settings.DEBUG else "internal_error",
            },
        )

    @application.get("/health", tags=["Health"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint for load balancers and monitoring."""
        return {"status": "healthy", "service": "swarmbet-api"}

    return application


app = create_application()
