"""Rate limiting models."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class BucketConfig(BaseModel):
    """Named rate limit policy."""

    name: str
    limit: int = Field(ge=1)
    window_ms: int = Field(ge=1)
    block_ms: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True)


@dataclass
class RateLimitState:
    """Counter row for one (client fingerprint, bucket) key.

    Times are monotonic seconds from the limiter's clock.
    """

    count: int
    window_start: float
    limit: int
    window_ms: int
    blocked_until: Optional[float] = None

    @property
    def window_end(self) -> float:
        return self.window_start + self.window_ms / 1000.0

    def is_expired(self, now: float) -> bool:
        if self.blocked_until is not None and now < self.blocked_until:
            return False
        return now >= self.window_end

    def is_blocked(self, now: float) -> bool:
        return self.blocked_until is not None and now < self.blocked_until


@dataclass
class InflightCount:
    """Requests one client fingerprint currently has in flight."""

    count: int
    last_updated: float


class RateLimitDecision(BaseModel):
    """Outcome of a single rate limit check."""

    allowed: bool
    retry_after: Optional[int] = None
    limit: int
    remaining: int
    reset_at: datetime
    bucket: str


class RateLimitStatus(BaseModel):
    """Rate limit status for a client in a bucket."""

    bucket: str
    fingerprint: str
    count: int
    limit: int
    remaining: int
    reset_at: datetime
    blocked: bool = False


class SuspiciousActivity(BaseModel):
    """A client currently sitting at its bucket limit."""

    bucket: str
    client: str
    attempts: int
    limit: int
    last_window_start_at: datetime
