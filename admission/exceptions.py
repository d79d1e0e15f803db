"""Exceptions raised inside the admission pipeline and by route handlers."""

from typing import Optional

from admission.models.response import ErrorCode


class ApiError(Exception):
    """Expected failure that renders as a failure envelope.

    Handlers raise these for outcomes the caller should see verbatim;
    anything else reaching the pipeline boundary becomes INTERNAL_ERROR.
    """

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        suggested_action: Optional[str] = None,
    ):
        self.message = message
        self.details = details
        self.suggested_action = suggested_action
        super().__init__(message)


class NotFoundError(ApiError):
    """Resource is missing or not owned by the caller.

    Both cases are reported identically.
    """

    code = ErrorCode.NOT_FOUND
    status_code = 404

    def __init__(self, resource: str = "Resource", details: Optional[str] = None):
        super().__init__(
            f"{resource} not found",
            details=details
            or f"The requested {resource.lower()} does not exist or you don't have access to it",
        )
        self.resource = resource


class InvalidInputError(ApiError):
    code = ErrorCode.INVALID_INPUT
    status_code = 400


class ServiceUnavailableError(ApiError):
    """A required collaborator could not produce a usable result."""

    code = ErrorCode.SERVICE_UNAVAILABLE
    status_code = 503


class IdentityResolutionError(ServiceUnavailableError):
    def __init__(self, details: Optional[str] = None):
        super().__init__("Identity service unavailable", details=details)


class AuthContractViolation(RuntimeError):
    """Upstream auth reported success without a usable identifier.

    This is an integration bug, never a user error, so it is not an
    ApiError and is surfaced at error level by the pipeline.
    """
