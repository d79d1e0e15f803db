"""Core services for the admission pipeline."""

from admission.services.auth_context import AuthContextBuilder
from admission.services.counter_store import CounterStore, InMemoryCounterStore, RedisCounterStore
from admission.services.dedup_service import RequestDeduplicator
from admission.services.envelope_service import EnvelopeService
from admission.services.jwt_service import JWTService
from admission.services.rate_limit_service import RateLimitService
from admission.services.validation_service import ValidationService

__all__ = [
    "AuthContextBuilder",
    "CounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "RequestDeduplicator",
    "EnvelopeService",
    "JWTService",
    "RateLimitService",
    "ValidationService",
]
