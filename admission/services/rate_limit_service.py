"""Fixed-window rate limiting keyed by client fingerprint and bucket."""

import asyncio
import hashlib
import ipaddress
import logging
import math
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from admission.models.rate_limit import (
    BucketConfig,
    InflightCount,
    RateLimitDecision,
    RateLimitStatus,
    SuspiciousActivity,
)
from admission.services.counter_store import CounterStore, InMemoryCounterStore

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "default"
# idle in-flight rows are kept at least this long after their last release
INFLIGHT_IDLE_SECONDS = 60.0


class RateLimitService:
    """Rate limiter over a pluggable counter store."""

    def __init__(
        self,
        buckets: Dict[str, BucketConfig],
        store: Optional[CounterStore] = None,
        enabled: bool = True,
        exempt_private: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize rate limit service.

        Args:
            buckets: Named bucket policies; must include ``default``
            store: Counter store (in-memory when omitted)
            enabled: When False every check is allowed
            exempt_private: Skip loopback/private network clients
            clock: Monotonic clock in seconds
        """
        if DEFAULT_BUCKET not in buckets:
            raise ValueError("bucket configuration must include 'default'")
        self.buckets = dict(buckets)
        self.store = store or InMemoryCounterStore()
        self.enabled = enabled
        self.exempt_private = exempt_private
        self._clock = clock
        self._cleanup_task: Optional[asyncio.Task] = None
        self._inflight: Dict[str, InflightCount] = {}

    def bucket(self, name: Optional[str]) -> BucketConfig:
        """Resolve a bucket by name, falling back to ``default``."""
        return self.buckets.get(name or DEFAULT_BUCKET) or self.buckets[DEFAULT_BUCKET]

    @staticmethod
    def fingerprint(client_identity: Optional[str]) -> str:
        if not client_identity:
            return "anonymous"
        return hashlib.sha256(client_identity.encode("utf-8")).hexdigest()

    @staticmethod
    def short_fingerprint(fingerprint: str) -> str:
        if not fingerprint or fingerprint == "anonymous":
            return "hashed:anonymous"
        return f"hashed:{fingerprint[:12]}"

    def is_exempt(self, client_identity: Optional[str]) -> bool:
        if not self.exempt_private or not client_identity:
            return False
        if client_identity in ("localhost", "unknown"):
            return True
        try:
            address = ipaddress.ip_address(client_identity)
        except ValueError:
            return False
        return address.is_loopback or address.is_private

    def _key(self, client_identity: Optional[str], bucket: BucketConfig) -> str:
        return f"{bucket.name}:{self.fingerprint(client_identity)}"

    def _wall_time(self, monotonic_at: float) -> datetime:
        return datetime.now(timezone.utc) + timedelta(seconds=monotonic_at - self._clock())

    async def check_rate_limit(
        self, client_identity: Optional[str], bucket: str = DEFAULT_BUCKET
    ) -> RateLimitDecision:
        """Count one request against ``bucket`` for the client.

        Args:
            client_identity: Client IP or other identity string
            bucket: Bucket name

        Returns:
            RateLimitDecision; ``retry_after`` is set only on denial
        """
        config = self.bucket(bucket)

        if not self.enabled or self.is_exempt(client_identity):
            return RateLimitDecision(
                allowed=True,
                limit=config.limit,
                remaining=config.limit,
                reset_at=datetime.now(timezone.utc) + timedelta(milliseconds=config.window_ms),
                bucket=config.name,
            )

        now = self._clock()
        allowed, state = await self.store.hit(self._key(client_identity, config), config, now)
        reset_at = self._wall_time(state.window_end)

        if allowed:
            return RateLimitDecision(
                allowed=True,
                limit=config.limit,
                remaining=max(0, config.limit - state.count),
                reset_at=reset_at,
                bucket=config.name,
            )

        until = state.blocked_until if state.is_blocked(now) else state.window_end
        retry_after = max(1, math.ceil(until - now))
        logger.warning(
            "Rate limit exceeded: bucket=%s client=%s retry_after=%ss",
            config.name,
            self.short_fingerprint(self.fingerprint(client_identity)),
            retry_after,
        )
        return RateLimitDecision(
            allowed=False,
            retry_after=retry_after,
            limit=config.limit,
            remaining=0,
            reset_at=self._wall_time(until),
            bucket=config.name,
        )

    async def get_status(
        self, client_identity: Optional[str], bucket: str = DEFAULT_BUCKET
    ) -> RateLimitStatus:
        """Get current rate limit status for a client without counting a request."""
        config = self.bucket(bucket)
        fingerprint = self.fingerprint(client_identity)
        now = self._clock()
        state = await self.store.get(self._key(client_identity, config), now, config)

        if state is None:
            return RateLimitStatus(
                bucket=config.name,
                fingerprint=self.short_fingerprint(fingerprint),
                count=0,
                limit=config.limit,
                remaining=config.limit,
                reset_at=self._wall_time(now + config.window_ms / 1000.0),
            )

        return RateLimitStatus(
            bucket=config.name,
            fingerprint=self.short_fingerprint(fingerprint),
            count=state.count,
            limit=config.limit,
            remaining=max(0, config.limit - state.count),
            reset_at=self._wall_time(state.window_end),
            blocked=state.is_blocked(now) or state.count >= config.limit,
        )

    async def reset(self, client_identity: Optional[str], bucket: str = DEFAULT_BUCKET):
        """Reset rate limit for a client in a bucket."""
        config = self.bucket(bucket)
        await self.store.reset(self._key(client_identity, config))
        logger.info(
            "Reset rate limit: bucket=%s client=%s",
            config.name,
            self.short_fingerprint(self.fingerprint(client_identity)),
        )

    async def get_suspicious_activity(self) -> List[SuspiciousActivity]:
        """Clients that have exhausted a bucket, most recent window first."""
        now = self._clock()
        suspicious = []
        for key, state in await self.store.items(now, self.buckets):
            bucket_name, _, fingerprint = key.partition(":")
            config = self.bucket(bucket_name)
            if state.count < config.limit:
                continue
            suspicious.append(
                SuspiciousActivity(
                    bucket=config.name,
                    client=self.short_fingerprint(fingerprint),
                    attempts=state.count,
                    limit=config.limit,
                    last_window_start_at=self._wall_time(state.window_start),
                )
            )
        return sorted(suspicious, key=lambda s: s.last_window_start_at, reverse=True)

    def _tracks_inflight(self, client_identity: Optional[str]) -> bool:
        return self.enabled and not self.is_exempt(client_identity)

    def acquire_slot(self, client_identity: Optional[str], max_concurrent: int) -> bool:
        """Reserve one in-flight slot for the client.

        Returns False when the client already has ``max_concurrent`` requests
        in flight. Every True result must be paired with ``release_slot``.
        """
        if not self._tracks_inflight(client_identity):
            return True
        fingerprint = self.fingerprint(client_identity)
        entry = self._inflight.get(fingerprint)
        current = entry.count if entry else 0
        if current >= max_concurrent:
            logger.warning(
                "Concurrency limit exceeded: client=%s in_flight=%s max=%s",
                self.short_fingerprint(fingerprint),
                current,
                max_concurrent,
            )
            return False
        self._inflight[fingerprint] = InflightCount(count=current + 1, last_updated=self._clock())
        return True

    def release_slot(self, client_identity: Optional[str]):
        """Give back a slot taken by ``acquire_slot``."""
        if not self._tracks_inflight(client_identity):
            return
        entry = self._inflight.get(self.fingerprint(client_identity))
        if entry is not None:
            entry.count = max(0, entry.count - 1)
            entry.last_updated = self._clock()

    def inflight(self, client_identity: Optional[str]) -> int:
        entry = self._inflight.get(self.fingerprint(client_identity))
        return entry.count if entry else 0

    def _sweep_inflight(self, now: float) -> int:
        idle = max(
            INFLIGHT_IDLE_SECONDS, max(b.window_ms for b in self.buckets.values()) / 1000.0
        )
        stale = [
            key
            for key, entry in self._inflight.items()
            if entry.count <= 0 and entry.last_updated + idle <= now
        ]
        for key in stale:
            del self._inflight[key]
        return len(stale)

    async def cleanup_expired(self) -> int:
        """Clean up expired rate limit entries and idle in-flight rows."""
        now = self._clock()
        removed = await self.store.sweep(now) + self._sweep_inflight(now)
        if removed:
            logger.info(f"Cleaned up {removed} expired rate limit entries")
        return removed

    async def start_cleanup(self, interval_seconds: float):
        """Start periodic cleanup of expired counters."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        logger.info("Starting rate limit cleanup every %ss", interval_seconds)
        self._cleanup_task = asyncio.create_task(self._cleanup_loop(interval_seconds))

    async def stop_cleanup(self):
        """Stop periodic cleanup. Safe to call more than once."""
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Stopped rate limit cleanup")

    @property
    def cleanup_running(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()

    async def _cleanup_loop(self, interval_seconds: float):
        """Background loop for counter eviction."""
        while True:
            try:
                await asyncio.sleep(interval_seconds)
                await self.cleanup_expired()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in rate limit cleanup loop: {e}")

    async def close(self):
        await self.stop_cleanup()
        await self.store.close()
