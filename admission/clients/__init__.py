"""HTTP clients for downstream services."""

from admission.clients.identity_client import IdentityServiceClient

__all__ = ["IdentityServiceClient"]
