"""Tests for the Redis rate limiting backend.

fakeredis emulates INCR/EXPIRE/TTL in memory so no Redis server is needed.
Fail-open behavior is exercised with a client whose every call raises a
connection error: request-path operations must never deny or propagate.
"""

import asyncio
import json
import logging

import pytest
import fakeredis.aioredis
from unittest.mock import AsyncMock, patch
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from marketplace_gateway.rl import (
    RedisBackend,
    RatePolicy,
    FixedWindowStrategy,
    RequestInfo,
    StorageKind,
)
from marketplace_gateway.rl.exceptions import RateLimitBackendError, RateLimitConfigurationError


class BrokenRedis:
    """Client double for an unreachable Redis server."""

    def __init__(self, error=None):
        self.error = error or RedisConnectionError("Connection refused")
        self.aclose = AsyncMock()

    def pipeline(self, *args, **kwargs):
        raise self.error

    async def ttl(self, key):
        raise self.error

    async def expire(self, key, seconds):
        raise self.error

    async def delete(self, *keys):
        raise self.error


@pytest.fixture
def redis_client():
    return fakeredis.aioredis.FakeRedis(decode_responses=True)


@pytest.fixture
def backend(redis_client):
    return RedisBackend(client=redis_client)


class TestRedisBackend:
    """Test increment/ttl/reset against fakeredis."""

    @pytest.mark.asyncio
    async def test_first_increment_sets_expiry(self, backend, redis_client):
        assert await backend.increment("rl:key", 60) == 1
        assert 0 < await redis_client.ttl("rl:key") <= 60
        assert 0 < await backend.get_ttl("rl:key") <= 60

    @pytest.mark.asyncio
    async def test_counts_increase(self, backend):
        counts = [await backend.increment("rl:key", 60) for _ in range(5)]
        assert counts == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_later_increments_keep_window(self, backend, redis_client):
        await backend.increment("rl:key", 60)
        await redis_client.expire("rl:key", 30)

        await backend.increment("rl:key", 60)

        assert await redis_client.ttl("rl:key") <= 30

    @pytest.mark.asyncio
    async def test_key_without_expiry_gets_one(self, backend, redis_client):
        await redis_client.set("rl:key", 3)

        assert await backend.increment("rl:key", 60) == 4
        assert 0 < await redis_client.ttl("rl:key") <= 60

    @pytest.mark.asyncio
    async def test_ttl_absent_key(self, backend):
        assert await backend.get_ttl("rl:missing") == 0

    @pytest.mark.asyncio
    async def test_window_restarts_after_expiry(self, backend, redis_client):
        await backend.increment("rl:key", 60)
        await backend.increment("rl:key", 60)

        await redis_client.pexpire("rl:key", 10)
        await asyncio.sleep(0.05)

        assert await backend.increment("rl:key", 60) == 1

    @pytest.mark.asyncio
    async def test_reset(self, backend, redis_client):
        await backend.increment("rl:key", 60)

        await backend.reset("rl:key")

        assert await redis_client.exists("rl:key") == 0
        assert await backend.increment("rl:key", 60) == 1

    @pytest.mark.asyncio
    async def test_concurrent_increments_are_not_lost(self, backend):
        counts = await asyncio.gather(*(backend.increment("rl:key", 60) for _ in range(20)))
        assert sorted(counts) == list(range(1, 21))

    def test_requires_url_or_client(self):
        with pytest.raises(RateLimitConfigurationError):
            RedisBackend()


class TestRedisFailOpen:
    """Backend outages degrade protection, never availability."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        RedisConnectionError("Connection refused"),
        RedisTimeoutError("Timeout reading from socket"),
        OSError("Network is unreachable"),
    ])
    async def test_increment_fails_open(self, error):
        backend = RedisBackend(client=BrokenRedis(error))
        assert await backend.increment("rl:key", 60) == 1
        assert await backend.get_ttl("rl:key") == 0

    @pytest.mark.asyncio
    async def test_strategy_always_allows_when_backend_down(self):
        backend = RedisBackend(client=BrokenRedis())
        policy = RatePolicy(window_seconds=60, max_requests=2, storage=StorageKind.SHARED)
        strategy = FixedWindowStrategy(backend, policy)
        request = RequestInfo.build("POST", "/api/digimons/mint", {"x-forwarded-for": "203.0.113.7"})

        for _ in range(10):
            result = await strategy.check(request)
            assert result.allowed is True
            assert result.remaining == 1
            assert result.response is None

    @pytest.mark.asyncio
    async def test_reset_reports_failure(self):
        backend = RedisBackend(client=BrokenRedis())
        with pytest.raises(RateLimitBackendError) as exc_info:
            await backend.reset("rl:key")
        assert exc_info.value.key == "rl:key"

    @pytest.mark.asyncio
    async def test_failure_logs_do_not_expose_bearer_token(self, caplog):
        backend = RedisBackend(client=BrokenRedis())
        key = "ratelimit:mint:token:SECRET-SESSION-TOKEN"

        with caplog.at_level(logging.DEBUG):
            await backend.increment(key, 60)
            await backend.get_ttl(key)
            with pytest.raises(RateLimitBackendError) as exc_info:
                await backend.reset(key)

        records = [r for r in caplog.records if r.name == "marketplace_gateway.rl.backend"]
        assert len(records) == 3
        assert "SECRET-SESSION-TOKEN" not in str(exc_info.value)
        for record in records:
            assert record.key.startswith("ratelimit:mint:token:sha256:")
            assert "SECRET-SESSION-TOKEN" not in record.getMessage()
            assert "SECRET-SESSION-TOKEN" not in str(record.__dict__)


class TestRedisConnectionLifecycle:
    """Lazy connection and reconnection for URL-configured backends."""

    @pytest.mark.asyncio
    async def test_connects_lazily_and_reuses_client(self, redis_client):
        with patch("marketplace_gateway.rl.backend.aioredis.from_url", return_value=redis_client) as from_url:
            backend = RedisBackend("redis://localhost:6379/0", socket_timeout=0.5)
            from_url.assert_not_called()

            await backend.increment("rl:key", 60)
            await backend.increment("rl:key", 60)

            from_url.assert_called_once()
            assert from_url.call_args.kwargs["socket_timeout"] == 0.5

    @pytest.mark.asyncio
    async def test_reconnects_after_failure(self, redis_client):
        broken = BrokenRedis()
        with patch(
            "marketplace_gateway.rl.backend.aioredis.from_url",
            side_effect=[broken, redis_client],
        ) as from_url:
            backend = RedisBackend("redis://localhost:6379/0")

            assert await backend.increment("rl:key", 60) == 1
            broken.aclose.assert_awaited_once()

            assert await backend.increment("rl:key", 60) == 1
            assert await backend.increment("rl:key", 60) == 2
            assert from_url.call_count == 2

    @pytest.mark.asyncio
    async def test_close_releases_client(self):
        client = AsyncMock()
        with patch("marketplace_gateway.rl.backend.aioredis.from_url", return_value=client):
            backend = RedisBackend("redis://localhost:6379/0")
            await backend._get_client()
            await backend.close()

        client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_denial_through_shared_backend(self, backend):
        policy = RatePolicy(window_seconds=60, max_requests=1, storage=StorageKind.SHARED)
        strategy = FixedWindowStrategy(backend, policy)
        request = RequestInfo.build("GET", "/api/digimons")

        await strategy.check(request)
        result = await strategy.check(request)

        assert result.allowed is False
        body = json.loads(result.response.body)
        assert 0 < body["retryAfter"] <= 60
