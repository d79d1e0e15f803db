"""Counter stores backing the fixed-window rate limiter."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Dict, List, Mapping, Optional, Tuple

import redis.asyncio as redis

from admission.models.rate_limit import BucketConfig, RateLimitState

logger = logging.getLogger(__name__)


def apply_hit(
    state: Optional[RateLimitState], bucket: BucketConfig, now: float
) -> Tuple[bool, RateLimitState]:
    """Fixed-window transition for one request.

    Denied requests do not increment, so count never exceeds the limit.
    """
    if state is None or state.is_expired(now):
        return True, RateLimitState(
            count=1, window_start=now, limit=bucket.limit, window_ms=bucket.window_ms
        )

    if state.is_blocked(now):
        return False, state

    if state.count < state.limit:
        state.count += 1
        return True, state

    if bucket.block_ms and state.blocked_until is None:
        state.blocked_until = state.window_end + bucket.block_ms / 1000.0
    return False, state


class CounterStore(ABC):
    """Storage for per-key rate limit counters.

    ``hit`` must be atomic with respect to other hits on the same key.
    """

    name = "counter-store"

    @abstractmethod
    async def hit(
        self, key: str, bucket: BucketConfig, now: float
    ) -> Tuple[bool, RateLimitState]:
        """Record one request for ``key`` and return (allowed, state)."""

    @abstractmethod
    async def get(
        self, key: str, now: float, bucket: Optional[BucketConfig] = None
    ) -> Optional[RateLimitState]:
        """Return the live state for ``key`` or None."""

    @abstractmethod
    async def reset(self, key: str) -> None:
        """Forget ``key``."""

    @abstractmethod
    async def items(
        self, now: float, buckets: Optional[Mapping[str, BucketConfig]] = None
    ) -> List[Tuple[str, RateLimitState]]:
        """Snapshot of all live rows.

        Keys are ``<bucket>:<fingerprint>``; ``buckets`` lets stores that do not
        keep window metadata rebuild each row from its bucket policy.
        """

    @abstractmethod
    async def sweep(self, now: float) -> int:
        """Evict expired rows, returning how many were removed."""

    @abstractmethod
    async def clear(self) -> None:
        """Forget every key."""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class InMemoryCounterStore(CounterStore):
    """Process-local store with one lock per key."""

    name = "memory"

    def __init__(self):
        self._rows: Dict[str, RateLimitState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def hit(
        self, key: str, bucket: BucketConfig, now: float
    ) -> Tuple[bool, RateLimitState]:
        async with self._lock_for(key):
            allowed, state = apply_hit(self._rows.get(key), bucket, now)
            self._rows[key] = state
            return allowed, replace(state)

    async def get(
        self, key: str, now: float, bucket: Optional[BucketConfig] = None
    ) -> Optional[RateLimitState]:
        state = self._rows.get(key)
        if state is None or state.is_expired(now):
            return None
        return replace(state)

    async def reset(self, key: str) -> None:
        async with self._lock_for(key):
            self._rows.pop(key, None)
        self._locks.pop(key, None)

    async def items(
        self, now: float, buckets: Optional[Mapping[str, BucketConfig]] = None
    ) -> List[Tuple[str, RateLimitState]]:
        return [
            (key, replace(state))
            for key, state in list(self._rows.items())
            if not state.is_expired(now)
        ]

    async def sweep(self, now: float) -> int:
        removed = 0
        for key in [k for k, state in self._rows.items() if state.is_expired(now)]:
            lock = self._locks.get(key)
            if lock is not None and lock.locked():
                continue
            del self._rows[key]
            self._locks.pop(key, None)
            removed += 1
        return removed

    async def clear(self) -> None:
        self._rows.clear()
        self._locks.clear()

    def __len__(self) -> int:
        return len(self._rows)


class RedisCounterStore(CounterStore):
    """Redis-backed store; expiry is delegated to key TTLs."""

    name = "redis"

    def __init__(self, client: "redis.Redis", prefix: str = "rate_limit"):
        self._redis = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "rate_limit") -> "RedisCounterStore":
        client = redis.from_url(
            url, decode_responses=True, socket_timeout=5, socket_connect_timeout=5
        )
        return cls(client, prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    def _block_key(self, key: str) -> str:
        return f"{self._prefix}:block:{key}"

    async def hit(
        self, key: str, bucket: BucketConfig, now: float
    ) -> Tuple[bool, RateLimitState]:
        counter_key = self._key(key)
        block_ttl = await self._redis.pttl(self._block_key(key))
        if block_ttl > 0:
            return False, RateLimitState(
                count=bucket.limit,
                window_start=now - bucket.window_ms / 1000.0,
                limit=bucket.limit,
                window_ms=bucket.window_ms,
                blocked_until=now + block_ttl / 1000.0,
            )

        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.incr(counter_key)
            pipe.pttl(counter_key)
            count, ttl = await pipe.execute()
        count = int(count)
        ttl = int(ttl)

        if count == 1 or ttl < 0:
            await self._redis.pexpire(counter_key, bucket.window_ms)
            ttl = bucket.window_ms

        window_start = now - (bucket.window_ms - ttl) / 1000.0
        if count <= bucket.limit:
            return True, RateLimitState(
                count=count,
                window_start=window_start,
                limit=bucket.limit,
                window_ms=bucket.window_ms,
            )

        # keep the stored counter pinned at the limit
        await self._redis.decr(counter_key)
        blocked_until = None
        if bucket.block_ms:
            block_ms = ttl + bucket.block_ms
            await self._redis.set(self._block_key(key), "1", px=block_ms, nx=True)
            blocked_until = now + block_ms / 1000.0
        return False, RateLimitState(
            count=bucket.limit,
            window_start=window_start,
            limit=bucket.limit,
            window_ms=bucket.window_ms,
            blocked_until=blocked_until,
        )

    async def get(
        self, key: str, now: float, bucket: Optional[BucketConfig] = None
    ) -> Optional[RateLimitState]:
        counter_key = self._key(key)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.get(counter_key)
            pipe.pttl(counter_key)
            raw, ttl = await pipe.execute()
        if raw is None or int(ttl) <= 0:
            return None
        ttl = int(ttl)
        if bucket is None:
            # window length is not stored; the remaining ttl stands in for it
            return RateLimitState(count=int(raw), window_start=now, limit=0, window_ms=ttl)
        return RateLimitState(
            count=int(raw),
            window_start=now - (bucket.window_ms - ttl) / 1000.0,
            limit=bucket.limit,
            window_ms=bucket.window_ms,
        )

    async def reset(self, key: str) -> None:
        await self._redis.delete(self._key(key), self._block_key(key))

    async def items(
        self, now: float, buckets: Optional[Mapping[str, BucketConfig]] = None
    ) -> List[Tuple[str, RateLimitState]]:
        rows = []
        block_prefix = f"{self._prefix}:block:"
        async for full_key in self._redis.scan_iter(match=f"{self._prefix}:*"):
            if full_key.startswith(block_prefix):
                continue
            key = full_key[len(self._prefix) + 1:]
            bucket_name = key.partition(":")[0]
            state = await self.get(key, now, (buckets or {}).get(bucket_name))
            if state is not None:
                rows.append((key, state))
        return rows

    async def sweep(self, now: float) -> int:
        return 0

    async def clear(self) -> None:
        keys = [k async for k in self._redis.scan_iter(match=f"{self._prefix}:*")]
        if keys:
            await self._redis.delete(*keys)

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except redis.RedisError as e:
            logger.warning("Redis counter store ping failed: %s", e)
            return False

    async def close(self) -> None:
        await self._redis.aclose()
