"""Per-client fixed-window request limiter for the public HTTP surface.

Counters live in Redis so every worker shares one window per client. When
Redis is not configured or stops answering, the limiter keeps going on
in-process counters and operators get one warning.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import redis.asyncio as redis_async
from redis.exceptions import RedisError

from app.config import Settings
from app.logging_config import get_logger
from app.services.alert_service import alert_warning

logger = get_logger("rate_limit_service")

RATE_LIMIT_MESSAGE = "Too many requests, please try again later."
REDIS_KEY_PREFIX = "webautomy:ratelimit"


@dataclass
class RateDecision:
    allowed: bool
    remaining: int
    retry_after: int = 0


class FixedWindowRateLimiter:
    """In-process counters. Used directly in tests and as the Redis fallback."""

    def __init__(self, max_requests: int, window_seconds: int, clock: Callable[[], float] = time.time):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, dict] = {}
        self._next_purge_at = 0.0
        self._lock = threading.Lock()

    def _purge(self, now_ts: float) -> None:
        if now_ts < self._next_purge_at:
            return
        expired = [key for key, window in self._windows.items() if window["expires_at"] <= now_ts]
        for key in expired:
            self._windows.pop(key, None)
        self._next_purge_at = now_ts + min(self.window_seconds, 60)

    def hit(self, key: Optional[str]) -> RateDecision:
        """Count one request for ``key`` and say whether it may proceed."""
        key = key or "unknown"
        now_ts = self._clock()
        with self._lock:
            self._purge(now_ts)
            window = self._windows.get(key)
            if not window or window["expires_at"] <= now_ts:
                window = {"count": 0, "expires_at": now_ts + self.window_seconds}
                self._windows[key] = window
            window["count"] += 1

            if window["count"] > self.max_requests:
                return RateDecision(
                    allowed=False,
                    remaining=0,
                    retry_after=max(int(window["expires_at"] - now_ts), 1),
                )
            return RateDecision(allowed=True, remaining=self.max_requests - window["count"])

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
            self._next_purge_at = 0.0


class RedisRateLimiter:
    """Fixed window shared across workers: INCR per client key, EXPIRE on first hit."""

    def __init__(
        self,
        redis_client,
        max_requests: int,
        window_seconds: int,
        fallback: Optional[FixedWindowRateLimiter] = None,
        key_prefix: str = REDIS_KEY_PREFIX,
    ):
        self.redis_client = redis_client
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.fallback = fallback or FixedWindowRateLimiter(max_requests, window_seconds)
        self.key_prefix = key_prefix
        self._fallback_warned = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisRateLimiter":
        redis_client = None
        if settings.redis_url:
            redis_client = redis_async.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_connect_timeout=settings.redis_socket_timeout_seconds,
                socket_timeout=settings.redis_socket_timeout_seconds,
            )
        return cls(redis_client, settings.rate_limit_max_requests, settings.rate_limit_window_seconds)

    def _fall_back(self, key: str, reason: str) -> RateDecision:
        if not self._fallback_warned:
            alert_warning("Rate limiter on per-worker counters (redis unavailable)", {"reason": reason})
            self._fallback_warned = True
        return self.fallback.hit(key)

    async def hit(self, key: Optional[str]) -> RateDecision:
        """Count one request for ``key`` and say whether it may proceed."""
        key = key or "unknown"
        if self.redis_client is None:
            return self._fall_back(key, "not_configured")

        redis_key = f"{self.key_prefix}:{key}"
        try:
            count = await self.redis_client.incr(redis_key)
            if count == 1:
                await self.redis_client.expire(redis_key, self.window_seconds)
            if count <= self.max_requests:
                return RateDecision(allowed=True, remaining=self.max_requests - count)

            ttl = await self.redis_client.ttl(redis_key)
            if ttl is None or ttl < 0:
                # key lost its expiry (EXPIRE failed after INCR); restart the window
                await self.redis_client.expire(redis_key, self.window_seconds)
                ttl = self.window_seconds
        except RedisError as exc:
            logger.warning("Rate limit redis update failed", extra={"context": {"error": str(exc)}})
            return self._fall_back(key, str(exc))

        return RateDecision(allowed=False, remaining=0, retry_after=max(int(ttl), 1))

    def reset(self) -> None:
        """Clear the in-process fallback counters. Redis keys expire on their own."""
        self.fallback.reset()
        self._fallback_warned = False
