import asyncio
from unittest.mock import patch

from redis.exceptions import ConnectionError as RedisConnectionError

from app.config import Settings
from app.services.rate_limit_service import FixedWindowRateLimiter, RedisRateLimiter


class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.ttls = {}

    async def incr(self, key: str):
        self.data[key] = int(self.data.get(key, 0)) + 1
        return self.data[key]

    async def expire(self, key: str, seconds: int):
        self.ttls[key] = seconds
        return True

    async def ttl(self, key: str):
        return self.ttls.get(key, -1)


class BrokenRedis:
    async def incr(self, key: str):
        raise RedisConnectionError("Connection refused")


class TestFixedWindowRateLimiter:
    def test_allows_up_to_limit(self):
        limiter = FixedWindowRateLimiter(3, 60, clock=_Clock())
        decisions = [limiter.hit("1.2.3.4") for _ in range(4)]
        assert [d.allowed for d in decisions] == [True, True, True, False]
        assert decisions[2].remaining == 0

    def test_blocked_request_reports_retry_after(self):
        clock = _Clock()
        limiter = FixedWindowRateLimiter(1, 60, clock=clock)
        limiter.hit("a")
        clock.now += 20
        decision = limiter.hit("a")
        assert decision.allowed is False
        assert decision.retry_after == 40

    def test_window_resets(self):
        clock = _Clock()
        limiter = FixedWindowRateLimiter(1, 60, clock=clock)
        limiter.hit("a")
        clock.now += 61
        assert limiter.hit("a").allowed is True

    def test_clients_are_counted_separately(self):
        limiter = FixedWindowRateLimiter(1, 60, clock=_Clock())
        assert limiter.hit("a").allowed is True
        assert limiter.hit("b").allowed is True
        assert limiter.hit("a").allowed is False

    def test_reset_clears_counters(self):
        limiter = FixedWindowRateLimiter(1, 60, clock=_Clock())
        limiter.hit("a")
        limiter.reset()
        assert limiter.hit("a").allowed is True

    def test_expired_windows_are_dropped(self):
        clock = _Clock()
        limiter = FixedWindowRateLimiter(1, 60, clock=clock)
        for n in range(50):
            limiter.hit(f"client-{n}")
        clock.now += 61
        limiter.hit("late")
        assert list(limiter._windows) == ["late"]


class TestRedisRateLimiter:
    def test_counts_in_redis_with_window_expiry(self):
        redis_client = FakeRedis()
        limiter = RedisRateLimiter(redis_client, 2, 900)

        decisions = [asyncio.run(limiter.hit("1.2.3.4")) for _ in range(3)]

        assert [d.allowed for d in decisions] == [True, True, False]
        assert redis_client.data == {"webautomy:ratelimit:1.2.3.4": 3}
        assert redis_client.ttls == {"webautomy:ratelimit:1.2.3.4": 900}
        assert decisions[2].retry_after == 900

    def test_limit_is_shared_between_limiter_instances(self):
        redis_client = FakeRedis()
        worker_a = RedisRateLimiter(redis_client, 2, 900)
        worker_b = RedisRateLimiter(redis_client, 2, 900)

        asyncio.run(worker_a.hit("a"))
        asyncio.run(worker_b.hit("a"))

        assert asyncio.run(worker_a.hit("a")).allowed is False
        assert asyncio.run(worker_b.hit("a")).allowed is False

    def test_key_without_expiry_gets_one(self):
        redis_client = FakeRedis()
        redis_client.data["webautomy:ratelimit:a"] = 5
        limiter = RedisRateLimiter(redis_client, 2, 900)

        decision = asyncio.run(limiter.hit("a"))

        assert decision.allowed is False
        assert decision.retry_after == 900
        assert redis_client.ttls["webautomy:ratelimit:a"] == 900

    @patch("app.services.rate_limit_service.alert_warning")
    def test_redis_failure_falls_back_to_local_counters(self, mock_alert):
        limiter = RedisRateLimiter(BrokenRedis(), 1, 900)

        first = asyncio.run(limiter.hit("a"))
        second = asyncio.run(limiter.hit("a"))

        assert first.allowed is True
        assert second.allowed is False
        mock_alert.assert_called_once()

    @patch("app.services.rate_limit_service.alert_warning")
    def test_unconfigured_redis_uses_local_counters(self, mock_alert):
        limiter = RedisRateLimiter.from_settings(Settings(redis_url=None, rate_limit_max_requests=1))

        assert limiter.redis_client is None
        assert asyncio.run(limiter.hit("a")).allowed is True
        assert asyncio.run(limiter.hit("a")).allowed is False
        assert mock_alert.call_args[0][1] == {"reason": "not_configured"}

    def test_from_settings_builds_client(self):
        with patch("app.services.rate_limit_service.redis_async.from_url") as mock_from_url:
            limiter = RedisRateLimiter.from_settings(
                Settings(redis_url="redis://cache:6379/0", redis_socket_timeout_seconds=0.25)
            )

        assert limiter.redis_client is mock_from_url.return_value
        mock_from_url.assert_called_once_with(
            "redis://cache:6379/0",
            decode_responses=True,
            socket_connect_timeout=0.25,
            socket_timeout=0.25,
        )
