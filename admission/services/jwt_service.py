"""Bearer token verification producing upstream auth results."""

import logging
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt
from starlette.requests import Request

from admission.models.request import AuthIdentifiers, AuthResult

logger = logging.getLogger(__name__)


class JWTService:
    """Verifies JWT bearer tokens minted elsewhere."""

    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        """Initialize JWT service.

        Args:
            secret_key: JWT secret key
            algorithm: JWT algorithm (default: HS256)
        """
        self.secret_key = secret_key
        self.algorithm = algorithm

    def validate_token(self, token: str) -> Optional[Dict[str, Any]]:
        """Validate JWT token and extract claims.

        Args:
            token: JWT token string

        Returns:
            Dict of claims if valid, None otherwise
        """
        try:
            # jose checks exp/nbf when present
            return jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            logger.warning("Token has expired")
            return None
        except JWTError as e:
            logger.warning(f"JWT validation failed: {e}")
            return None

    @staticmethod
    def extract_bearer(authorization: Optional[str]) -> Optional[str]:
        if not authorization:
            return None
        parts = authorization.split()
        if len(parts) != 2 or parts[0].lower() != "bearer":
            return None
        return parts[1]

    @staticmethod
    def get_primary_identifier(payload: Dict[str, Any]) -> Optional[str]:
        value = payload.get("sub") or payload.get("user_id")
        return str(value) if value else None

    @staticmethod
    def get_secondary_identifier(payload: Dict[str, Any]) -> Optional[str]:
        return payload.get("email")

    def verify(self, authorization: Optional[str]) -> AuthResult:
        """Turn an Authorization header into an upstream auth result."""
        if not authorization:
            return AuthResult(verified=False, error="Missing Authorization header")

        token = self.extract_bearer(authorization)
        if token is None:
            return AuthResult(verified=False, error="Invalid Authorization header format")

        payload = self.validate_token(token)
        if payload is None:
            return AuthResult(verified=False, error="Invalid or expired token")

        return AuthResult(
            verified=True,
            identifiers=AuthIdentifiers(
                primary=self.get_primary_identifier(payload),
                secondary=self.get_secondary_identifier(payload),
            ),
            token=token,
            claims=payload,
        )

    async def authenticate(self, request: Request) -> AuthResult:
        return self.verify(request.headers.get("Authorization"))
