"""In-flight request deduplication.

Concurrent callers that present the same key share one execution of the
wrapped operation. The first caller starts the operation as a task and
registers it before yielding to the event loop, so a second caller can
never observe the key as free while the first is still starting. Joiners
await the task through ``asyncio.shield``: a joiner that is cancelled
stops waiting, the shared work keeps running for everyone else.

Entries leave the table when the task settles (success or error) or when
their TTL lapses, whichever happens first. A call made after settlement
therefore runs the operation again instead of replaying the old result.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class DedupEntry:
    """Shared handle for one in-flight operation."""

    key: str
    task: "asyncio.Task[Any]"
    created_at: float
    ttl_ms: int
    joiners: int = 0
    hits: int = 0

    def is_expired(self, now: float) -> bool:
        return now >= self.created_at + self.ttl_ms / 1000.0


class RequestDeduplicator:
    """Process-wide table of in-flight operations keyed by caller intent."""

    def __init__(
        self,
        default_ttl_ms: int = 5000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl_ms = default_ttl_ms
        self._entries: Dict[str, DedupEntry] = {}
        self._clock = clock
        self._sweep_task: Optional[asyncio.Task] = None

    @staticmethod
    def generate_key(
        user_id: str,
        operation: str,
        resource: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> str:
        parts = [user_id, operation]
        if resource:
            parts.append(resource)
        if session_id:
            parts.append(session_id)
        return ":".join(parts)

    async def deduplicate(
        self,
        key: str,
        operation: Callable[[], Awaitable[T]],
        ttl_ms: Optional[int] = None,
    ) -> T:
        """Run ``operation`` once per live ``key`` and share its outcome.

        Args:
            key: Caller identity + operation + resource
            operation: Zero-argument coroutine function
            ttl_ms: Lifetime of the entry; defaults to ``default_ttl_ms``

        Returns:
            The operation's result. Its exception is raised to every joiner.
        """
        now = self._clock()
        entry = self._entries.get(key)

        # lookup and registration happen without an await in between
        if entry is None or entry.is_expired(now):
            entry = self._register(key, operation, now, ttl_ms or self.default_ttl_ms)
        else:
            entry.hits += 1
            logger.debug("Joined in-flight operation: key=%s joiners=%d", key, entry.joiners + 1)

        entry.joiners += 1
        try:
            return await asyncio.shield(entry.task)
        finally:
            entry.joiners -= 1

    def _register(
        self,
        key: str,
        operation: Callable[[], Awaitable[T]],
        now: float,
        ttl_ms: int,
    ) -> DedupEntry:
        task = asyncio.ensure_future(operation())
        entry = DedupEntry(key=key, task=task, created_at=now, ttl_ms=ttl_ms)
        self._entries[key] = entry
        task.add_done_callback(lambda t, e=entry: self._settle(e, t))
        return entry

    def _settle(self, entry: DedupEntry, task: "asyncio.Task[Any]"):
        # a newer entry may already own the key after a TTL expiry
        if self._entries.get(entry.key) is entry:
            del self._entries[entry.key]

        if task.cancelled():
            logger.warning("Deduplicated operation cancelled: key=%s", entry.key)
            return
        error = task.exception()
        if error is not None:
            logger.info(
                "Deduplicated operation failed: key=%s shared_with=%d error=%s",
                entry.key,
                entry.hits,
                type(error).__name__,
            )

    def sweep(self) -> int:
        """Drop entries whose TTL has elapsed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Swept %d expired deduplication entries", len(expired))
        return len(expired)

    def is_pending(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired(self._clock())

    def stats(self) -> Dict[str, int]:
        return {
            "pending": len(self._entries),
            "joiners": sum(entry.joiners for entry in self._entries.values()),
            "shared_hits": sum(entry.hits for entry in self._entries.values()),
        }

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    async def start(self, interval_seconds: float):
        """Start the periodic TTL sweep."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop(interval_seconds))

    async def stop(self):
        """Stop the periodic sweep. Safe to call more than once."""
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    @property
    def sweeping(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def _sweep_loop(self, interval_seconds: float):
        while True:
            try:
                await asyncio.sleep(interval_seconds)
                self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in deduplication sweep loop: {e}")
