"""Identity service client resolving external ids to internal users."""

import logging
from typing import Optional
from urllib.parse import quote

import httpx

from admission.exceptions import IdentityResolutionError
from admission.models.request import IdentityProfile

logger = logging.getLogger(__name__)


class IdentityServiceClient:
    """Client for the identity service."""

    def __init__(
        self,
        identity_service_url: str,
        timeout: int = 5,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize identity client.

        Args:
            identity_service_url: Base URL of identity service
            timeout: Request timeout in seconds
            client: Preconfigured client (tests pass a MockTransport client)
        """
        self.identity_service_url = identity_service_url.rstrip("/")
        self.timeout = timeout
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def resolve(
        self, clerk_id: str, request_id: Optional[str] = None
    ) -> Optional[IdentityProfile]:
        """Look up the internal user for an external identifier.

        Args:
            clerk_id: External (identity provider) identifier
            request_id: Correlation id forwarded downstream

        Returns:
            IdentityProfile, or None when the identity is unknown

        Raises:
            IdentityResolutionError: If the service cannot be reached or errors
        """
        url = f"{self.identity_service_url}/api/v1/users/by-external-id/{quote(clerk_id, safe='')}"
        headers = {"X-Request-Id": request_id} if request_id else {}

        try:
            response = await self.client.get(url, headers=headers)
        except httpx.TimeoutException:
            logger.error("Identity service request timed out")
            raise IdentityResolutionError("Identity service timed out")
        except httpx.RequestError as e:
            logger.error(f"Identity service request failed: {e}")
            raise IdentityResolutionError("Failed to connect to identity service")

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            logger.warning(f"Identity lookup failed: status={response.status_code}")
            raise IdentityResolutionError(
                f"Identity service returned status {response.status_code}"
            )

        try:
            return IdentityProfile.model_validate(response.json())
        except ValueError as e:
            logger.error(f"Identity service returned an unusable profile: {e}")
            raise IdentityResolutionError("Identity service returned an unusable profile")
