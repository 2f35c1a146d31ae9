"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from commerce_assistant.api.v1.router import api_router
from commerce_assistant.core.config import settings
from commerce_assistant.core.exceptions import AssistantError
from commerce_assistant.core.logging_config import (
    generate_request_id,
    request_id_var,
    setup_logging,
)
from commerce_assistant.core.rate_limit import limiter
from commerce_assistant.integrations.commerce.client import CommerceClient
from commerce_assistant.schemas.common import ErrorResponse
from commerce_assistant.services.action_registry import RegistryManager
from commerce_assistant.services.config_loader import ConfigWatcher, load_configuration
from commerce_assistant.services.error_handling import HTTP_STATUS_FOR_CODE, classify
from commerce_assistant.services.handlers import DEFAULT_HANDLERS

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Loads the action configuration and builds the registries before serving.
    An invalid configuration stops startup.
    """
    setup_logging(debug=settings.debug)
    logger.info("Starting %s v%s", settings.project_name, settings.version)
    logger.info("Environment: %s", settings.environment)

    manager = RegistryManager(DEFAULT_HANDLERS, CommerceClient())
    manager.load(load_configuration(settings.actions_config_path, settings.environment))
    app.state.registry_manager = manager

    watcher: ConfigWatcher | None = None
    if settings.actions_config_watch:
        watcher = ConfigWatcher(
            settings.actions_config_path,
            manager.load,
            environment=settings.environment,
            interval=settings.actions_config_watch_interval,
        )
        watcher.start()

    yield

    if watcher is not None:
        await watcher.stop()
    logger.info("Shutting down...")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    # Sentry/GlitchTip init (before middleware)
    if settings.sentry_dsn:
        import sentry_sdk

        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            traces_sample_rate=0.1,
        )

    app = FastAPI(
        title=settings.project_name,
        version=settings.version,
        openapi_url=f"{settings.api_v1_prefix}/openapi.json",
        docs_url=f"{settings.api_v1_prefix}/docs",
        redoc_url=f"{settings.api_v1_prefix}/redoc",
        lifespan=lifespan,
    )

    # Rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(
        RateLimitExceeded,
        _rate_limit_exceeded_handler,  # type: ignore[arg-type]
    )
    app.add_middleware(SlowAPIMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )

    # Request ID middleware
    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next: Any) -> Response:
        rid = request.headers.get("X-Request-ID") or generate_request_id()
        request_id_var.set(rid)
        response: Response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response

    # Include API routes
    app.include_router(api_router, prefix=settings.api_v1_prefix)

    async def classified_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
        """Surface engine and backend errors with their user-safe message only."""
        classified = classify(exc)
        logger.warning("Request failed: [%s] %s", classified.code, classified.technical_message)
        body = ErrorResponse(
            error=str(classified.code),
            detail=classified.user_message,
            code=str(classified.code),
            recoverable=classified.recoverable,
        )
        return JSONResponse(
            status_code=HTTP_STATUS_FOR_CODE[classified.code],
            content=body.model_dump(exclude_none=True),
        )

    for exc_class in (AssistantError, httpx.HTTPError, TimeoutError):
        app.add_exception_handler(exc_class, classified_exception_handler)

    # Global exception handler to ensure CORS headers are present on 500 errors
    @app.exception_handler(Exception)
    async def global_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
        """Handle unhandled exceptions with proper JSON response."""
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    # Redirect /docs to versioned docs URL
    @app.get("/docs", include_in_schema=False)
    async def docs_redirect() -> RedirectResponse:
        return RedirectResponse(url=f"{settings.api_v1_prefix}/docs")

    # Root endpoint
    @app.get("/")
    async def root() -> dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "name": settings.project_name,
            "version": settings.version,
            "docs": f"{settings.api_v1_prefix}/docs",
            "health": f"{settings.api_v1_prefix}/health",
        }

    return app


app = create_app()
