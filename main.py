"""Admission pipeline service - ASGI entry point."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from admission.config import Settings, settings as default_settings
from admission.logging_setup import setup_logging
from admission.middleware import ErrorHandlingMiddleware, SecurityHeadersMiddleware
from admission.models.request import new_request_id
from admission.pipeline import Pipeline
from admission.routes import admin_router, router
from admission.services.envelope_service import EnvelopeService

try:
    import uvicorn
except ImportError:  # pragma: no cover - uvicorn optional for ASGI deployments
    uvicorn = None

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None, pipeline: Optional[Pipeline] = None
) -> FastAPI:
    """Build the application.

    Args:
        settings: Settings to use (module settings when omitted)
        pipeline: Prebuilt pipeline; built from settings at startup when omitted

    Returns:
        FastAPI application with ``app.state.pipeline`` populated at startup
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT, settings.SERVICE_NAME)
        logger.info(f"Starting {settings.SERVICE_NAME} v{settings.SERVICE_VERSION}")
        logger.info(
            "Environment: %s | Server: %s:%s",
            settings.ENVIRONMENT,
            settings.HOST,
            settings.PORT,
        )

        if getattr(app.state, "pipeline", None) is None:
            app.state.pipeline = Pipeline.from_settings(settings)
        await app.state.pipeline.start()
        logger.info(f"{settings.SERVICE_NAME} startup complete")

        yield

        logger.info(f"Shutting down {settings.SERVICE_NAME}")
        await app.state.pipeline.stop()
        logger.info(f"{settings.SERVICE_NAME} shutdown complete")

    app = FastAPI(
        title="Admission Pipeline",
        version=settings.SERVICE_VERSION,
        description="Authentication, rate limiting, validation and deduplication in front of API handlers",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline

    if settings.CORS_ENABLED:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.CORS_ORIGINS,
            allow_credentials=True,
            allow_methods=settings.CORS_METHODS,
            allow_headers=settings.CORS_HEADERS,
            expose_headers=[
                "X-Request-Id",
                "Retry-After",
                "X-RateLimit-Limit",
                "X-RateLimit-Remaining",
                "X-RateLimit-Reset",
            ],
        )

    # last added is executed first
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(ErrorHandlingMiddleware)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        request_id = new_request_id(request.headers.get("x-request-id"))
        envelope = EnvelopeService.failure(
            str(exc.detail), exc.status_code, EnvelopeService.meta(request_id)
        )
        return EnvelopeService.to_response(
            envelope, exc.status_code, headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        request_id = new_request_id(request.headers.get("x-request-id"))
        details = ", ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        return EnvelopeService.to_response(
            EnvelopeService.validation_error(details, request_id)
        )

    app.include_router(router)
    if settings.ADMIN_API_ENABLED:
        app.include_router(admin_router)

    @app.get("/")
    async def root():
        """Root endpoint returning service metadata."""
        return {
            "service": settings.SERVICE_NAME,
            "version": settings.SERVICE_VERSION,
            "environment": settings.ENVIRONMENT,
            "docs": "/docs",
        }

    return app


app = create_app()


if __name__ == "__main__" and uvicorn:
    uvicorn.run(
        "main:app",
        host=default_settings.HOST,
        port=default_settings.PORT,
        reload=default_settings.ENVIRONMENT.lower() == "development",
    )
