"""Middleware for the admission service."""

import logging
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from admission.models.request import new_request_id
from admission.models.response import ErrorCode
from admission.services.envelope_service import EnvelopeService

logger = logging.getLogger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers."""

    async def dispatch(self, request: Request, call_next: Callable):
        """Add security headers to response."""
        response = await call_next(request)

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Strict-Transport-Security"] = (
            "max-age=31536000; includeSubDomains"
        )
        response.headers["X-Permitted-Cross-Domain-Policies"] = "none"

        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Last line of defence for errors raised outside the pipeline."""

    async def dispatch(self, request: Request, call_next: Callable):
        try:
            return await call_next(request)
        except Exception as e:
            request_id = new_request_id(request.headers.get("x-request-id"))
            EnvelopeService.log_error(
                error_code=ErrorCode.INTERNAL_ERROR,
                message=str(e),
                request_id=request_id,
                path=request.url.path,
            )
            logger.exception("Unhandled exception outside the pipeline")
            return EnvelopeService.to_response(
                EnvelopeService.server_error(e, request_id)
            )
