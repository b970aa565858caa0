"""Rate limiting backend implementations."""

import asyncio
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .exceptions import RateLimitBackendError, RateLimitConfigurationError
from .keys import redact_key

logger = logging.getLogger(__name__)


class LimiterBackend(ABC):
    """Abstract base class for fixed-window counter stores."""

    @abstractmethod
    async def increment(self, key: str, window_seconds: int) -> int:
        """
        Atomically increment the counter for `key` and return the new count.

        A missing or expired record starts a new window: count = 1 and
        expiry = now + window_seconds.
        """

    @abstractmethod
    async def get_ttl(self, key: str) -> int:
        """Return seconds left in the key's current window, 0 if absent."""

    @abstractmethod
    async def reset(self, key: str) -> None:
        """Delete the record so the next increment opens a fresh window."""

    async def close(self) -> None:
        """Release any resources held by the backend."""


@dataclass
class _CounterRecord:
    count: int
    expires_at: int


class MemoryBackend(LimiterBackend):
    """
    Thread-safe in-memory rate limiting backend.

    Counters live in this process only. Each worker process or server
    instance keeps its own counts, so the effective limit of a deployment
    with N instances is N times the configured one. Use RedisBackend for
    anything other than a single-instance deployment.
    """

    def __init__(self, purge_interval: int = 1000):
        self._records: Dict[str, _CounterRecord] = {}
        self._lock = threading.Lock()
        self._purge_interval = purge_interval
        self._ops_since_purge = 0

    async def increment(self, key: str, window_seconds: int) -> int:
        with self._lock:
            now = int(time.time())
            record = self._records.get(key)

            if record is None or record.expires_at <= now:
                record = _CounterRecord(count=1, expires_at=now + window_seconds)
                self._records[key] = record
            else:
                record.count += 1

            self._ops_since_purge += 1
            if self._ops_since_purge >= self._purge_interval:
                self._purge_expired(now)

            return record.count

    async def get_ttl(self, key: str) -> int:
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return 0
            return max(0, record.expires_at - int(time.time()))

    async def reset(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def __len__(self) -> int:
        return len(self._records)

    def _purge_expired(self, now: int) -> None:
        """Remove expired records to keep memory bounded. Caller holds the lock."""
        expired = [key for key, record in self._records.items() if record.expires_at <= now]
        for key in expired:
            del self._records[key]
        self._ops_since_purge = 0
        if expired:
            logger.debug("Purged expired rate limit records", extra={"purged": len(expired)})


class RedisBackend(LimiterBackend):
    """
    Redis-backed backend shared by every gateway instance.

    INCR is atomic server-side, so concurrent increments for one key never
    lose updates. Request-path failures fail open: increment reports a count
    of 1 and get_ttl reports 0, the fault is logged, and the client is
    dropped so the next call reconnects.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        client: Any = None,
        socket_timeout: float = 1.0,
    ):
        if client is None and not url:
            raise RateLimitConfigurationError(
                "Redis backend requires a connection URL",
                config_field="REDIS_URL",
            )
        self._url = url
        self._client = client
        self._socket_timeout = socket_timeout
        self._connect_lock = asyncio.Lock()

    async def increment(self, key: str, window_seconds: int) -> int:
        try:
            client = await self._get_client()
            async with client.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.ttl(key)
                count, ttl = await pipe.execute()
            # ttl == -1 means the key exists without expiry (lost EXPIRE)
            if count == 1 or ttl == -1:
                await client.expire(key, window_seconds)
            return int(count)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            await self._handle_failure("increment", key, e)
            return 1

    async def get_ttl(self, key: str) -> int:
        try:
            client = await self._get_client()
            ttl = await client.ttl(key)
            return max(0, int(ttl))
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            await self._handle_failure("get_ttl", key, e)
            return 0

    async def reset(self, key: str) -> None:
        try:
            client = await self._get_client()
            await client.delete(key)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            await self._handle_failure("reset", key, e)
            raise RateLimitBackendError(
                f"Failed to reset rate limit for '{redact_key(key)}'", key=key, backend_error=str(e)
            ) from e

    async def close(self) -> None:
        async with self._connect_lock:
            client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    async def _get_client(self) -> Any:
        """Return the shared client, connecting lazily on first use."""
        if self._client is not None:
            return self._client
        async with self._connect_lock:
            if self._client is None:
                self._client = aioredis.from_url(
                    self._url,
                    decode_responses=True,
                    socket_timeout=self._socket_timeout,
                    socket_connect_timeout=self._socket_timeout,
                )
                logger.info("Redis rate limit client created")
            return self._client

    async def _handle_failure(self, operation: str, key: str, error: Exception) -> None:
        logger.warning(
            "Redis backend error, failing open",
            extra={"operation": operation, "key": redact_key(key), "error": str(error)},
            exc_info=True,
        )
        # Injected clients are owned by the caller and kept as-is
        if self._url is None:
            return
        async with self._connect_lock:
            client, self._client = self._client, None
        if client is not None:
            try:
                await client.aclose()
            except (RedisError, OSError) as close_error:
                logger.debug("Error closing Redis client", extra={"error": str(close_error)})
