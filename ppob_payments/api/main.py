"""
Main FastAPI application.

PPOB transaction API with:
- CORS configuration
- Error handling
- Request ID tracking
- Structured logging
- Prometheus metrics

Run with ``uvicorn --factory ppob_payments.api.main:create_app``.
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ppob_payments import __version__
from ppob_payments.config import Settings, get_settings
from ppob_payments.core.service import PPOBService
from ppob_payments.monitoring.logging import setup_logging

from .routes import (
    account_router,
    admin_router,
    monitoring_router,
    transaction_router,
    webhook_router,
)

logger = structlog.get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[PPOBService] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Optional settings (defaults to the cached settings)
        service: Optional pre-built service; the app builds and owns one
            from ``settings`` when omitted

    Returns:
        FastAPI: Configured application
    """
    settings = settings or (service.settings if service else get_settings())
    owns_service = service is None

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
        """
        Application lifespan manager.

        Builds the service, creates tables and starts the periodic jobs.
        """
        logger.info(
            "application_startup",
            app_name=settings.app_name,
            env=settings.app_env,
            testing=settings.digiflazz_testing,
        )
        ppob: PPOBService = app.state.service
        try:
            await ppob.init_storage()
            logger.info("database_initialized")
        except Exception as e:
            logger.error("database_initialization_failed", error=str(e))
            raise

        if settings.scheduler_enabled:
            await ppob.start()

        yield

        logger.info("application_shutdown")
        if owns_service:
            await ppob.close()
        else:
            await ppob.stop()

    if owns_service:
        setup_logging(settings)
        service = PPOBService.from_settings(settings)

    app = FastAPI(
        title="PPOB Payments",
        description=(
            "Prepaid top-up and bill payment lifecycle on the Digiflazz gateway. "
            "Features: idempotent submission, pending reconciliation, balance "
            "monitoring, signed webhooks and price list sync."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.service = service

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
        """
        Add request ID to all requests for tracing.

        Also adds timing information and structured logging context.
        """
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start_time = time.time()

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        logger.info(
            "request_started",
            client_host=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id

            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_seconds=time.time() - start_time,
            )
            return response

        except Exception as e:
            logger.error(
                "request_failed",
                error=str(e),
                duration_seconds=time.time() - start_time,
            )
            raise

        finally:
            structlog.contextvars.clear_contextvars()

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled exceptions.
        """
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "message": "An unexpected error occurred. Please try again later.",
            },
        )

    app.include_router(transaction_router)
    app.include_router(account_router)
    app.include_router(webhook_router)
    app.include_router(admin_router)
    app.include_router(monitoring_router)

    @app.get("/", tags=["root"])
    async def root() -> dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "service": settings.app_name,
            "version": __version__,
            "status": "operational",
            "environment": settings.app_env,
            "testing": settings.digiflazz_testing,
            "docs": "/docs",
            "health": "/health",
            "metrics": "/metrics",
        }

    return app


def main() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "ppob_payments.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
