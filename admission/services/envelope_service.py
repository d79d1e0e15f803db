"""Response envelope construction and status/code mapping."""

import logging
from typing import Any, Dict, Mapping, Optional

from fastapi.responses import JSONResponse

from admission.models.response import (
    Envelope,
    ErrorCode,
    ErrorDetail,
    FailureEnvelope,
    ResponseMeta,
    SuccessEnvelope,
)

logger = logging.getLogger(__name__)

STATUS_FOR_CODE: Dict[ErrorCode, int] = {
    ErrorCode.UNAUTHENTICATED: 401,
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.RATE_LIMIT_EXCEEDED: 429,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.SERVICE_UNAVAILABLE: 503,
    ErrorCode.INTERNAL_ERROR: 500,
}

SUGGESTED_ACTIONS: Dict[ErrorCode, str] = {
    ErrorCode.UNAUTHENTICATED: "Please verify your authentication and try again",
    ErrorCode.VALIDATION_ERROR: "Please check your input data and try again",
    ErrorCode.INVALID_INPUT: "Please verify all input values match the expected format",
    ErrorCode.RATE_LIMIT_EXCEEDED: "Please wait a moment before making another request",
    ErrorCode.NOT_FOUND: "Please check the resource identifier and try again",
    ErrorCode.SERVICE_UNAVAILABLE: "Please try again later",
    ErrorCode.INTERNAL_ERROR: "Please try again later or contact support if the issue persists",
}


class EnvelopeService:
    """Builds success and failure envelopes."""

    @staticmethod
    def meta(request_id: str) -> ResponseMeta:
        return ResponseMeta(request_id=request_id)

    @staticmethod
    def success(data: Any, meta: ResponseMeta) -> SuccessEnvelope:
        return SuccessEnvelope(data=data, meta=meta)

    @staticmethod
    def failure(
        message: str,
        status: int,
        meta: ResponseMeta,
        code: Optional[ErrorCode] = None,
        details: Optional[str] = None,
        suggested_action: Optional[str] = None,
    ) -> FailureEnvelope:
        """Create a failure envelope.

        Args:
            message: Human readable message
            status: HTTP status the envelope will be sent with
            meta: Envelope metadata
            code: Explicit code; derived from status when omitted
            details: Additional detail text
            suggested_action: Recovery hint; defaults per code

        Returns:
            FailureEnvelope
        """
        error_code = code or EnvelopeService.map_http_status_to_error_code(status)
        error = ErrorDetail(
            message=message,
            code=error_code,
            details=details,
            suggested_action=suggested_action or SUGGESTED_ACTIONS[error_code],
        )
        return FailureEnvelope(error=error, meta=meta)

    @staticmethod
    def map_http_status_to_error_code(status_code: int) -> ErrorCode:
        """Map an HTTP status to exactly one code; unknown statuses are internal errors."""
        mapping = {
            400: ErrorCode.VALIDATION_ERROR,
            401: ErrorCode.UNAUTHENTICATED,
            404: ErrorCode.NOT_FOUND,
            405: ErrorCode.INVALID_INPUT,
            415: ErrorCode.INVALID_INPUT,
            422: ErrorCode.VALIDATION_ERROR,
            429: ErrorCode.RATE_LIMIT_EXCEEDED,
            500: ErrorCode.INTERNAL_ERROR,
            502: ErrorCode.SERVICE_UNAVAILABLE,
            503: ErrorCode.SERVICE_UNAVAILABLE,
            504: ErrorCode.SERVICE_UNAVAILABLE,
        }
        return mapping.get(status_code, ErrorCode.INTERNAL_ERROR)

    @staticmethod
    def status_for_code(code: ErrorCode) -> int:
        return STATUS_FOR_CODE[code]

    @staticmethod
    def validation_error(details: str, request_id: str) -> FailureEnvelope:
        return EnvelopeService.failure(
            "Validation failed",
            400,
            EnvelopeService.meta(request_id),
            code=ErrorCode.VALIDATION_ERROR,
            details=details,
        )

    @staticmethod
    def invalid_input(details: str, request_id: str) -> FailureEnvelope:
        return EnvelopeService.failure(
            "Invalid input",
            400,
            EnvelopeService.meta(request_id),
            code=ErrorCode.INVALID_INPUT,
            details=details,
        )

    @staticmethod
    def authentication_error(details: str, request_id: str) -> FailureEnvelope:
        return EnvelopeService.failure(
            "Authentication required",
            401,
            EnvelopeService.meta(request_id),
            code=ErrorCode.UNAUTHENTICATED,
            details=details,
        )

    @staticmethod
    def rate_limit_error(
        request_id: str, details: str = "Too many requests made in a short period"
    ) -> FailureEnvelope:
        return EnvelopeService.failure(
            "Rate limit exceeded",
            429,
            EnvelopeService.meta(request_id),
            code=ErrorCode.RATE_LIMIT_EXCEEDED,
            details=details,
        )

    @staticmethod
    def not_found_error(resource: str, request_id: str) -> FailureEnvelope:
        return EnvelopeService.failure(
            f"{resource} not found",
            404,
            EnvelopeService.meta(request_id),
            code=ErrorCode.NOT_FOUND,
            details=(
                f"The requested {resource.lower()} does not exist "
                "or you don't have access to it"
            ),
        )

    @staticmethod
    def server_error(
        error: BaseException, request_id: str, expose_details: bool = False
    ) -> FailureEnvelope:
        return EnvelopeService.failure(
            "Internal server error",
            500,
            EnvelopeService.meta(request_id),
            code=ErrorCode.INTERNAL_ERROR,
            details=str(error) if expose_details else None,
        )

    @staticmethod
    def status_of(envelope: Envelope) -> int:
        if isinstance(envelope, FailureEnvelope):
            return STATUS_FOR_CODE[envelope.error.code]
        return 200

    @staticmethod
    def to_response(
        envelope: Envelope,
        status_code: Optional[int] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> JSONResponse:
        """Render an envelope as a JSON response echoing the request id."""
        response = JSONResponse(
            status_code=status_code or EnvelopeService.status_of(envelope),
            content=envelope.to_dict(),
        )
        response.headers["X-Request-Id"] = envelope.meta.request_id
        for name, value in (headers or {}).items():
            response.headers[name] = value
        return response

    @staticmethod
    def log_error(
        error_code: ErrorCode,
        message: str,
        request_id: Optional[str] = None,
        path: Optional[str] = None,
        details: Optional[str] = None,
    ):
        log_data: Dict[str, Any] = {
            "error_code": error_code.value,
            "error_message": message,
        }
        if request_id:
            log_data["request_id"] = request_id
        if path:
            log_data["path"] = path
        if details:
            log_data["details"] = details

        logger.error("Request failed: %s", error_code.value, extra=log_data)
