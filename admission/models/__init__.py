"""Pydantic models for the admission pipeline."""

from admission.models.rate_limit import (
    BucketConfig,
    RateLimitDecision,
    RateLimitState,
    RateLimitStatus,
    SuspiciousActivity,
)
from admission.models.request import (
    AuthenticatedRequestContext,
    AuthIdentifiers,
    AuthResult,
    IdentityProfile,
    Principal,
    PrincipalSource,
    RequestContext,
    UserInfo,
)
from admission.models.response import (
    ComponentStatus,
    Envelope,
    ErrorCode,
    ErrorDetail,
    FailureEnvelope,
    HealthResponse,
    ReadinessResponse,
    ResponseMeta,
    SuccessEnvelope,
)

__all__ = [
    "AuthenticatedRequestContext",
    "AuthIdentifiers",
    "AuthResult",
    "BucketConfig",
    "ComponentStatus",
    "Envelope",
    "ErrorCode",
    "ErrorDetail",
    "FailureEnvelope",
    "HealthResponse",
    "IdentityProfile",
    "Principal",
    "PrincipalSource",
    "RateLimitDecision",
    "RateLimitState",
    "RateLimitStatus",
    "ReadinessResponse",
    "RequestContext",
    "ResponseMeta",
    "SuccessEnvelope",
    "SuspiciousActivity",
    "UserInfo",
]
