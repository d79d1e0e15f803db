"""Request context models for the admission pipeline."""

import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

_SAFE_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


def new_request_id(candidate: Optional[str] = None) -> str:
    """Reuse a caller supplied id when it is a safe token, else mint one."""
    if candidate and _SAFE_REQUEST_ID.match(candidate):
        return candidate
    return str(uuid.uuid4())


class RequestContext(BaseModel):
    """Context created once per inbound request."""

    request_id: str = Field(default_factory=new_request_id)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    method: str = "GET"
    url: str = ""
    user_agent: Optional[str] = None
    client_ip: str = "unknown"
    path_params: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "request_id": "123e4567-e89b-12d3-a456-426614174000",
                "timestamp": "2024-01-10T10:30:00Z",
                "method": "POST",
                "url": "/api/v1/sessions",
                "user_agent": "Mozilla/5.0",
                "client_ip": "192.168.1.1",
            }
        },
    )

    def log_fields(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "method": self.method,
            "url": self.url,
        }


class AuthIdentifiers(BaseModel):
    """Identifiers reported by the upstream authentication system."""

    primary: Optional[str] = None
    secondary: Optional[str] = None


class AuthResult(BaseModel):
    """Already-verified identity claims handed to the pipeline."""

    verified: bool
    identifiers: AuthIdentifiers = Field(default_factory=AuthIdentifiers)
    token: Optional[str] = None
    error: Optional[str] = None
    claims: Dict[str, Any] = Field(default_factory=dict)


class PrincipalSource(str, Enum):
    """How a principal was resolved."""

    VERIFIED = "verified"
    FALLBACK = "fallback"


class Principal(BaseModel):
    """Canonical caller identity for a single request."""

    clerk_id: str = Field(min_length=1)
    user_id: Optional[str] = None
    source: PrincipalSource = PrincipalSource.VERIFIED

    model_config = ConfigDict(frozen=True)


class IdentityProfile(BaseModel):
    """Profile returned by the identity resolver."""

    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None


class UserInfo(BaseModel):
    """Caller-scoped display metadata."""

    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    current_device: str = "Device"
    clerk_id: Optional[str] = None


class AuthenticatedRequestContext(RequestContext):
    """Request context enriched with the resolved principal."""

    principal: Principal
    user_info: UserInfo
    auth_token: Optional[str] = None

    def log_fields(self) -> Dict[str, Any]:
        fields = super().log_fields()
        fields["clerk_id"] = self.principal.clerk_id
        fields["principal_source"] = self.principal.source.value
        return fields
