"""Response envelope models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ErrorCode(str, Enum):
    """Closed taxonomy of failure codes."""

    UNAUTHENTICATED = "UNAUTHENTICATED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    NOT_FOUND = "NOT_FOUND"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class _EnvelopeModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ResponseMeta(_EnvelopeModel):
    """Metadata carried by every envelope."""

    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    )
    request_id: str


class ErrorDetail(_EnvelopeModel):
    """Error detail information."""

    message: str
    code: ErrorCode
    details: Optional[str] = None
    suggested_action: Optional[str] = None


class SuccessEnvelope(_EnvelopeModel):
    """Success branch of the response envelope."""

    success: bool = True
    data: Any = None
    meta: ResponseMeta

    def to_dict(self) -> Dict[str, Any]:
        # exclude_none applies to the envelope, never to the handler's data
        payload = super().to_dict()
        payload["data"] = self.model_dump(mode="json", by_alias=True, include={"data"})["data"]
        return payload

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": True,
                "data": {"id": "123"},
                "meta": {
                    "timestamp": "2024-01-10T10:30:00Z",
                    "requestId": "123e4567-e89b-12d3-a456-426614174000",
                },
            }
        }
    )


class FailureEnvelope(_EnvelopeModel):
    """Failure branch of the response envelope."""

    success: bool = False
    error: ErrorDetail
    meta: ResponseMeta

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": False,
                "error": {
                    "message": "Rate limit exceeded",
                    "code": "RATE_LIMIT_EXCEEDED",
                    "details": "Too many requests made in a short period",
                    "suggestedAction": "Please wait a moment before making another request",
                },
                "meta": {
                    "timestamp": "2024-01-10T10:30:00Z",
                    "requestId": "123e4567-e89b-12d3-a456-426614174000",
                },
            }
        }
    )


Envelope = Union[SuccessEnvelope, FailureEnvelope]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str  # healthy or degraded
    timestamp: str
    uptime_seconds: int

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-10T10:30:00Z",
                "uptime_seconds": 3600,
            }
        }
    )


class ComponentStatus(BaseModel):
    """Status of one pipeline component."""

    name: str
    status: str  # healthy, degraded
    detail: Optional[str] = None


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    components: Dict[str, ComponentStatus]
