"""Rate limiting module."""

from .request import RequestInfo
from .keys import (
    KeyGenerator,
    KeyGeneratorKind,
    IpKeyGenerator,
    IpPathKeyGenerator,
    CredentialKeyGenerator,
    create_key_generator,
    get_client_ip,
    redact_key,
)
from .backend import LimiterBackend, MemoryBackend, RedisBackend
from .limiter import RatePolicy, RateLimitResult, FixedWindowStrategy, StorageKind
from .router import PolicyRouter, RouteRule
from .middleware import RateLimitMiddleware
from .config import (
    RateLimitConfig,
    WindowLimit,
    get_rate_limit_config,
    build_route_rules,
    build_default_policy,
    create_backend,
    create_policy_router,
)
from .exceptions import (
    RateLimitError,
    RateLimitConfigurationError,
    RateLimitBackendError
)

__all__ = [
    "RequestInfo",
    "KeyGenerator",
    "KeyGeneratorKind",
    "IpKeyGenerator",
    "IpPathKeyGenerator",
    "CredentialKeyGenerator",
    "create_key_generator",
    "get_client_ip",
    "redact_key",
    "LimiterBackend",
    "MemoryBackend",
    "RedisBackend",
    "RatePolicy",
    "RateLimitResult",
    "FixedWindowStrategy",
    "StorageKind",
    "PolicyRouter",
    "RouteRule",
    "RateLimitMiddleware",
    "RateLimitConfig",
    "WindowLimit",
    "get_rate_limit_config",
    "build_route_rules",
    "build_default_policy",
    "create_backend",
    "create_policy_router",
    "RateLimitError",
    "RateLimitConfigurationError",
    "RateLimitBackendError"
]
