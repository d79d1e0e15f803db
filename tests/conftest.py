"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt

from admission.config import Settings
from admission.models.rate_limit import BucketConfig
from admission.pipeline import Pipeline
from admission.services.auth_context import AuthContextBuilder
from admission.services.dedup_service import RequestDeduplicator
from admission.services.jwt_service import JWTService
from admission.services.rate_limit_service import RateLimitService
from main import create_app

TEST_SECRET = "test-secret-key"


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def make_token(sub="user_2abc", email="ada@example.com", expires_in=3600, **claims):
    """Generate a signed JWT for testing."""
    payload = {"exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in), **claims}
    if sub is not None:
        payload["sub"] = sub
    if email is not None:
        payload["email"] = email
    return jwt.encode(payload, TEST_SECRET, algorithm="HS256")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def buckets():
    return {
        "default": BucketConfig(name="default", limit=50, window_ms=300_000),
        "api": BucketConfig(name="api", limit=300, window_ms=300_000),
        "tight": BucketConfig(name="tight", limit=2, window_ms=1000),
    }


@pytest.fixture
def test_settings():
    return Settings(
        ENVIRONMENT="test",
        JWT_SECRET_KEY=TEST_SECRET,
        LOG_FORMAT="text",
        CORS_ENABLED=False,
    )


@pytest.fixture
def pipeline(clock, buckets):
    """Isolated pipeline with a fake clock and in-memory counters."""
    return Pipeline(
        rate_limiter=RateLimitService(buckets, clock=clock),
        deduplicator=RequestDeduplicator(default_ttl_ms=5000, clock=clock),
        auth_builder=AuthContextBuilder(),
        authenticator=JWTService(TEST_SECRET),
    )


@pytest.fixture
def app(test_settings, pipeline):
    return create_app(test_settings, pipeline=pipeline)


@pytest_asyncio.fixture
async def client(app):
    """Create test client bound to the app over ASGI."""
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac


@pytest.fixture
def sample_jwt_token():
    return make_token()


@pytest.fixture
def auth_headers(sample_jwt_token):
    """Create authorization headers with JWT token."""
    return {"Authorization": f"Bearer {sample_jwt_token}"}
