"""FastAPI application factory.

Run with: uvicorn corpusguard.app.main:app
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from corpusguard.app.api.health import router as health_router
from corpusguard.app.api.metrics import MetricsMiddleware, router as metrics_router
from corpusguard.app.core.config import Settings, settings
from corpusguard.app.core.logging import get_logger, setup_logging
from corpusguard.app.exceptions import BackendUnavailableError, RateLimitExceededError
from corpusguard.app.middleware.rate_limit import rate_limit_exceeded_handler
from corpusguard.app.services.rate_limit.service import create_rate_limit_service
from corpusguard.app.services.rate_limit.store import SlidingWindowStore


def create_app(
    config: Optional[Settings] = None,
    store: Optional[SlidingWindowStore] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Settings to use; defaults to the environment-loaded settings
        store: Shared counter store to use instead of building a Redis client

    Returns:
        Configured FastAPI application instance
    """
    config = config or settings

    setup_logging(config)
    logger = get_logger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Build the rate limiter on startup and release it on shutdown.

        A missing KV_REDIS_URL raises ConfigurationError here, so the
        application refuses to start rather than serve unprotected routes.
        """
        service = create_rate_limit_service(config, store=store)
        app.state.rate_limit_service = service

        logger.info(
            "Application startup complete",
            extra={
                "presets": sorted(service.presets),
                "failure_policy": config.rate_limit_failure_policy,
                "debug_mode": config.debug,
            },
        )

        yield

        await service.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="CorpusGuard",
        description="Distributed per-client rate limiting for the document corpus service",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(MetricsMiddleware)

    app.include_router(health_router)
    app.include_router(metrics_router)

    app.add_exception_handler(RateLimitExceededError, rate_limit_exceeded_handler)

    @app.exception_handler(BackendUnavailableError)
    async def backend_unavailable_handler(
        request: Request, exc: BackendUnavailableError
    ) -> JSONResponse:
        """Handle store failures that escape the admission API."""
        logger.error(f"Shared counter store unavailable: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": "store_unavailable", "message": "Service temporarily unavailable"},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns a traceback to the client; debug mode adds the
        exception message and type.
        """
        logger.exception(
            "Unhandled exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__,
            },
        )

        if config.debug:
            return JSONResponse(
                status_code=500,
                content={
                    "error": "internal_error",
                    "message": str(exc),
                    "exception_type": type(exc).__name__,
                },
            )

        return JSONResponse(
            status_code=500,
            content={"error": "internal_error", "message": "Internal server error"},
        )

    return app


# Create the application instance
app = create_app()
