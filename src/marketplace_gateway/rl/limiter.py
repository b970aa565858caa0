"""Fixed-window rate limiter implementation."""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from starlette.responses import JSONResponse

from .backend import LimiterBackend
from .exceptions import RateLimitConfigurationError
from .keys import KeyGenerator, KeyGeneratorKind, IpKeyGenerator
from .request import RequestInfo

DEFAULT_MESSAGE = "Rate limit exceeded. Please try again later."


class StorageKind(str, Enum):
    """Which counter store a policy uses."""
    LOCAL = "local"
    SHARED = "shared"


@dataclass(frozen=True)
class RatePolicy:
    """
    Rate limiting policy configuration.

    Frozen so a single instance can be shared by concurrent requests and
    used as the strategy cache key.
    """
    window_seconds: int = 60
    max_requests: int = 60
    key_generator: KeyGeneratorKind = KeyGeneratorKind.IP
    storage: StorageKind = StorageKind.LOCAL
    key_prefix: str = "ratelimit"
    message: str = DEFAULT_MESSAGE
    credential_header: str = "authorization"

    def __post_init__(self):
        if self.window_seconds < 1:
            raise RateLimitConfigurationError(
                "window_seconds must be >= 1", config_field="window_seconds"
            )
        if self.max_requests < 1:
            raise RateLimitConfigurationError(
                "max_requests must be >= 1", config_field="max_requests"
            )
        if not self.key_prefix:
            raise RateLimitConfigurationError(
                "key_prefix must not be empty", config_field="key_prefix"
            )


@dataclass
class RateLimitResult:
    """Outcome of a single rate limit check."""
    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    key: str
    retry_after: Optional[int] = None
    response: Optional[JSONResponse] = None

    def headers(self) -> Dict[str, str]:
        """Standard X-RateLimit-* headers describing this result."""
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }


class FixedWindowStrategy:
    """
    Counts requests per key in fixed windows of `policy.window_seconds`.

    The strategy holds no state of its own; every check issues exactly one
    increment and one get_ttl against the backend. Bursts of up to twice the
    limit are possible across a window boundary.
    """

    def __init__(
        self,
        backend: LimiterBackend,
        policy: RatePolicy,
        key_generator: Optional[KeyGenerator] = None,
    ):
        self._backend = backend
        self._policy = policy
        self._key_generator = key_generator or IpKeyGenerator(policy.key_prefix)

    @property
    def policy(self) -> RatePolicy:
        return self._policy

    @property
    def backend(self) -> LimiterBackend:
        return self._backend

    @property
    def key_generator(self) -> KeyGenerator:
        return self._key_generator

    async def check(self, request: RequestInfo) -> RateLimitResult:
        """Consume one request from the caller's budget and return the verdict."""
        key = self._key_generator.generate_key(request)
        count = await self._backend.increment(key, self._policy.window_seconds)
        ttl = await self._backend.get_ttl(key)

        limit = self._policy.max_requests
        result = RateLimitResult(
            allowed=count <= limit,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=int(time.time()) + ttl,
            key=key,
        )

        if not result.allowed:
            result.retry_after = max(1, ttl)
            result.response = self._denial_response(result)

        return result

    def _denial_response(self, result: RateLimitResult) -> JSONResponse:
        headers = {"Retry-After": str(result.retry_after)}
        headers.update(result.headers())
        return JSONResponse(
            status_code=429,
            content={
                "error": "Too Many Requests",
                "message": self._policy.message or DEFAULT_MESSAGE,
                "retryAfter": result.retry_after,
            },
            headers=headers,
        )
