"""Tests for rate limiting service."""

import asyncio
import logging
from datetime import datetime

import pytest

from admission.models.rate_limit import BucketConfig
from admission.services.counter_store import InMemoryCounterStore
from admission.services.rate_limit_service import RateLimitService


@pytest.fixture
def rate_limit_service(clock, buckets):
    """Create rate limit service instance."""
    return RateLimitService(buckets, clock=clock)


@pytest.mark.asyncio
async def test_first_request_allowed(rate_limit_service):
    decision = await rate_limit_service.check_rate_limit("198.51.100.7", "tight")

    assert decision.allowed is True
    assert decision.remaining == 1
    assert decision.limit == 2
    assert decision.retry_after is None
    assert isinstance(decision.reset_at, datetime)


@pytest.mark.asyncio
async def test_limit_two_per_second_window(rate_limit_service, clock):
    """Two requests pass, the third waits for the window to roll over."""
    client = "198.51.100.7"

    first = await rate_limit_service.check_rate_limit(client, "tight")
    second = await rate_limit_service.check_rate_limit(client, "tight")
    third = await rate_limit_service.check_rate_limit(client, "tight")

    assert (first.allowed, first.remaining) == (True, 1)
    assert (second.allowed, second.remaining) == (True, 0)
    assert third.allowed is False
    assert third.remaining == 0
    assert third.retry_after == 1

    clock.advance(1.0)
    fourth = await rate_limit_service.check_rate_limit(client, "tight")
    assert fourth.allowed is True
    assert fourth.remaining == 1


@pytest.mark.asyncio
async def test_denied_requests_do_not_increment(rate_limit_service):
    client = "198.51.100.7"
    for _ in range(5):
        await rate_limit_service.check_rate_limit(client, "tight")

    status = await rate_limit_service.get_status(client, "tight")
    assert status.count == 2
    assert status.remaining == 0
    assert status.blocked is True


@pytest.mark.asyncio
async def test_clients_do_not_share_counters(rate_limit_service):
    for _ in range(3):
        await rate_limit_service.check_rate_limit("198.51.100.7", "tight")

    other = await rate_limit_service.check_rate_limit("198.51.100.8", "tight")
    assert other.allowed is True
    assert other.remaining == 1


@pytest.mark.asyncio
async def test_buckets_do_not_share_counters(rate_limit_service):
    client = "198.51.100.7"
    for _ in range(3):
        await rate_limit_service.check_rate_limit(client, "tight")

    decision = await rate_limit_service.check_rate_limit(client, "api")
    assert decision.allowed is True
    assert decision.remaining == 299


@pytest.mark.asyncio
async def test_unknown_bucket_uses_default(rate_limit_service):
    decision = await rate_limit_service.check_rate_limit("198.51.100.7", "nope")

    assert decision.bucket == "default"
    assert decision.limit == 50


@pytest.mark.asyncio
async def test_block_extends_past_window(clock):
    service = RateLimitService(
        {"default": BucketConfig(name="default", limit=1, window_ms=1000, block_ms=2000)},
        clock=clock,
    )
    client = "198.51.100.7"

    assert (await service.check_rate_limit(client)).allowed is True
    denied = await service.check_rate_limit(client)
    assert denied.allowed is False
    assert denied.retry_after == 3

    clock.advance(1.5)
    still_blocked = await service.check_rate_limit(client)
    assert still_blocked.allowed is False
    assert still_blocked.retry_after == 2

    clock.advance(1.5)
    assert (await service.check_rate_limit(client)).allowed is True


@pytest.mark.asyncio
async def test_disabled_limiter_allows_everything(clock, buckets):
    service = RateLimitService(buckets, enabled=False, clock=clock)

    for _ in range(10):
        decision = await service.check_rate_limit("198.51.100.7", "tight")
        assert decision.allowed is True
        assert decision.remaining == 2

    assert len(service.store) == 0


@pytest.mark.asyncio
async def test_private_clients_exempt_when_configured(clock, buckets):
    service = RateLimitService(buckets, exempt_private=True, clock=clock)

    for client in ("127.0.0.1", "10.1.2.3", "192.168.0.10", "localhost"):
        for _ in range(3):
            assert (await service.check_rate_limit(client, "tight")).allowed is True

    for _ in range(2):
        await service.check_rate_limit("8.8.8.8", "tight")
    assert (await service.check_rate_limit("8.8.8.8", "tight")).allowed is False


@pytest.mark.asyncio
async def test_concurrent_hits_never_exceed_limit(clock):
    service = RateLimitService(
        {"default": BucketConfig(name="default", limit=5, window_ms=60_000)}, clock=clock
    )

    decisions = await asyncio.gather(
        *(service.check_rate_limit("198.51.100.7") for _ in range(20))
    )

    assert sum(1 for d in decisions if d.allowed) == 5


@pytest.mark.asyncio
async def test_denial_logs_fingerprint_not_address(rate_limit_service, caplog):
    client = "203.0.113.9"
    with caplog.at_level(logging.WARNING, logger="admission.services.rate_limit_service"):
        for _ in range(3):
            await rate_limit_service.check_rate_limit(client, "tight")

    assert "Rate limit exceeded" in caplog.text
    assert "hashed:" in caplog.text
    assert client not in caplog.text


def test_fingerprints():
    fingerprint = RateLimitService.fingerprint("203.0.113.9")

    assert len(fingerprint) == 64
    assert fingerprint == RateLimitService.fingerprint("203.0.113.9")
    assert RateLimitService.fingerprint(None) == "anonymous"
    assert RateLimitService.short_fingerprint(fingerprint) == f"hashed:{fingerprint[:12]}"
    assert RateLimitService.short_fingerprint("anonymous") == "hashed:anonymous"


def test_default_bucket_required():
    with pytest.raises(ValueError):
        RateLimitService({"api": BucketConfig(name="api", limit=1, window_ms=1000)})


@pytest.mark.asyncio
async def test_get_status_does_not_count(rate_limit_service):
    client = "198.51.100.7"
    await rate_limit_service.check_rate_limit(client, "tight")

    for _ in range(3):
        status = await rate_limit_service.get_status(client, "tight")

    assert status.count == 1
    assert status.remaining == 1
    assert status.blocked is False
    assert status.fingerprint.startswith("hashed:")


@pytest.mark.asyncio
async def test_get_status_unknown_client(rate_limit_service):
    status = await rate_limit_service.get_status("198.51.100.99", "tight")

    assert status.count == 0
    assert status.remaining == 2


@pytest.mark.asyncio
async def test_reset(rate_limit_service):
    client = "198.51.100.7"
    for _ in range(3):
        await rate_limit_service.check_rate_limit(client, "tight")

    await rate_limit_service.reset(client, "tight")

    assert (await rate_limit_service.check_rate_limit(client, "tight")).allowed is True


@pytest.mark.asyncio
async def test_suspicious_activity(rate_limit_service):
    for _ in range(4):
        await rate_limit_service.check_rate_limit("198.51.100.7", "tight")
    await rate_limit_service.check_rate_limit("198.51.100.8", "tight")

    activity = await rate_limit_service.get_suspicious_activity()

    assert len(activity) == 1
    assert activity[0].bucket == "tight"
    assert activity[0].attempts == 2
    assert activity[0].limit == 2
    assert activity[0].client.startswith("hashed:")
    assert "198.51.100.7" not in activity[0].client


@pytest.mark.asyncio
async def test_cleanup_expired(rate_limit_service, clock):
    await rate_limit_service.check_rate_limit("198.51.100.7", "tight")
    await rate_limit_service.check_rate_limit("198.51.100.8", "api")

    clock.advance(2.0)
    removed = await rate_limit_service.cleanup_expired()

    assert removed == 1
    assert len(rate_limit_service.store) == 1


@pytest.mark.asyncio
async def test_cleanup_skips_key_in_use(clock, buckets):
    store = InMemoryCounterStore()
    service = RateLimitService(buckets, store=store, clock=clock)
    await service.check_rate_limit("198.51.100.7", "tight")
    clock.advance(2.0)

    key = service._key("198.51.100.7", service.bucket("tight"))
    async with store._lock_for(key):
        assert await store.sweep(clock()) == 0

    assert await store.sweep(clock()) == 1


@pytest.mark.asyncio
async def test_start_and_stop_cleanup_idempotent(rate_limit_service):
    await rate_limit_service.start_cleanup(60)
    first_task = rate_limit_service._cleanup_task
    await rate_limit_service.start_cleanup(60)

    assert rate_limit_service.cleanup_running is True
    assert rate_limit_service._cleanup_task is first_task

    await rate_limit_service.stop_cleanup()
    await rate_limit_service.stop_cleanup()
    assert rate_limit_service.cleanup_running is False


@pytest.mark.asyncio
async def test_cleanup_loop_runs(clock, buckets):
    service = RateLimitService(buckets, clock=clock)
    await service.check_rate_limit("198.51.100.7", "tight")
    clock.advance(2.0)

    await service.start_cleanup(0.01)
    await asyncio.sleep(0.05)
    await service.stop_cleanup()

    assert len(service.store) == 0


def test_inflight_slots(rate_limit_service):
    client = "198.51.100.7"

    assert rate_limit_service.acquire_slot(client, 2) is True
    assert rate_limit_service.acquire_slot(client, 2) is True
    assert rate_limit_service.acquire_slot(client, 2) is False
    assert rate_limit_service.acquire_slot("198.51.100.8", 2) is True
    assert rate_limit_service.inflight(client) == 2

    rate_limit_service.release_slot(client)
    assert rate_limit_service.acquire_slot(client, 2) is True


def test_release_never_goes_negative(rate_limit_service):
    rate_limit_service.release_slot("198.51.100.7")
    rate_limit_service.acquire_slot("198.51.100.7", 1)
    rate_limit_service.release_slot("198.51.100.7")
    rate_limit_service.release_slot("198.51.100.7")

    assert rate_limit_service.inflight("198.51.100.7") == 0


def test_inflight_untracked_when_disabled(clock, buckets):
    service = RateLimitService(buckets, enabled=False, clock=clock)

    assert all(service.acquire_slot("198.51.100.7", 1) for _ in range(3))
    assert service.inflight("198.51.100.7") == 0


@pytest.mark.asyncio
async def test_cleanup_sweeps_idle_inflight_rows(rate_limit_service, clock):
    rate_limit_service.acquire_slot("198.51.100.7", 2)
    rate_limit_service.acquire_slot("198.51.100.8", 2)
    rate_limit_service.release_slot("198.51.100.7")

    clock.advance(301.0)
    removed = await rate_limit_service.cleanup_expired()

    assert removed == 1
    assert rate_limit_service.inflight("198.51.100.8") == 1
    assert len(rate_limit_service._inflight) == 1
