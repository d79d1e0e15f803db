"""Principal resolution and authenticated context construction."""

import hashlib
import logging
from typing import Optional, Protocol

from starlette.requests import Request

from admission.exceptions import AuthContractViolation
from admission.models.request import (
    AuthenticatedRequestContext,
    AuthResult,
    IdentityProfile,
    Principal,
    PrincipalSource,
    RequestContext,
    UserInfo,
)

logger = logging.getLogger(__name__)


class Authenticator(Protocol):
    """Upstream authentication collaborator."""

    async def authenticate(self, request: Request) -> AuthResult: ...


class IdentityResolver(Protocol):
    """Maps an external identifier to an internal user profile."""

    async def resolve(
        self, clerk_id: str, request_id: Optional[str] = None
    ) -> Optional[IdentityProfile]: ...


def detect_device_type(user_agent: Optional[str]) -> str:
    ua = user_agent or ""
    if "Mobile" in ua or "Android" in ua or "iPhone" in ua:
        return "Mobile"
    if "iPad" in ua or "Tablet" in ua:
        return "Tablet"
    if "Windows" in ua or "Mac" in ua or "Linux" in ua:
        return "Computer"
    return "Device"


def device_fingerprint(context: RequestContext) -> str:
    raw = f"{context.user_agent or ''}|{context.client_ip}"
    return "device:" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


class AuthContextBuilder:
    """Turns upstream auth results into authenticated request contexts."""

    def __init__(
        self,
        identity_resolver: Optional[IdentityResolver] = None,
        allow_fallback: bool = False,
    ):
        self.identity_resolver = identity_resolver
        self.allow_fallback = allow_fallback

    def resolve_principal(
        self,
        auth_result: AuthResult,
        context: RequestContext,
        allow_fallback: Optional[bool] = None,
    ) -> Optional[Principal]:
        """Resolve the canonical caller identity.

        Returns None when the caller is unauthenticated and no fallback
        identity is permitted.

        Raises:
            AuthContractViolation: auth reported success without an identifier
        """
        if auth_result.verified:
            primary = auth_result.identifiers.primary
            if not primary:
                raise AuthContractViolation(
                    "Upstream authentication reported success without an identifier"
                )
            return Principal(clerk_id=primary, source=PrincipalSource.VERIFIED)

        fallback = self.allow_fallback if allow_fallback is None else allow_fallback
        if not fallback:
            return None
        return Principal(clerk_id=device_fingerprint(context), source=PrincipalSource.FALLBACK)

    async def build(
        self,
        auth_result: AuthResult,
        context: RequestContext,
        allow_fallback: Optional[bool] = None,
    ) -> Optional[AuthenticatedRequestContext]:
        """Build the authenticated context, or None for unauthenticated callers.

        Raises:
            AuthContractViolation: auth reported success without an identifier
            IdentityResolutionError: the identity resolver is unavailable
        """
        principal = self.resolve_principal(auth_result, context, allow_fallback)
        if principal is None:
            return None

        profile = None
        if self.identity_resolver is not None and principal.source is PrincipalSource.VERIFIED:
            profile = await self.identity_resolver.resolve(
                principal.clerk_id, request_id=context.request_id
            )
            if profile is not None:
                principal = principal.model_copy(update={"user_id": profile.user_id})

        if profile is not None:
            user_info = UserInfo(
                user_id=profile.user_id,
                email=profile.email or auth_result.identifiers.secondary,
                name=profile.name,
                current_device=detect_device_type(context.user_agent),
                clerk_id=principal.clerk_id,
            )
        else:
            user_info = self.fallback_user_info(principal, context, auth_result)

        authenticated = AuthenticatedRequestContext(
            **context.model_dump(),
            principal=principal,
            user_info=user_info,
            auth_token=auth_result.token,
        )
        logger.info("Authenticated request", extra=authenticated.log_fields())
        return authenticated

    @staticmethod
    def fallback_user_info(
        principal: Principal, context: RequestContext, auth_result: AuthResult
    ) -> UserInfo:
        """Best-effort profile used when the identity source has nothing."""
        return UserInfo(
            user_id=principal.user_id or principal.clerk_id,
            email=auth_result.identifiers.secondary,
            current_device=detect_device_type(context.user_agent),
            clerk_id=principal.clerk_id,
        )
