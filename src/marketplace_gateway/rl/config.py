"""Rate limiting configuration, route policy table and startup wiring."""

import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from marketplace_gateway.core.config import Settings, get_settings
from .backend import LimiterBackend, MemoryBackend, RedisBackend
from .exceptions import RateLimitConfigurationError
from .keys import KeyGeneratorKind
from .limiter import RatePolicy, StorageKind
from .router import PolicyRouter, RouteRule

logger = logging.getLogger(__name__)

MINT_PATTERN = r"^/api/digimons/mint$"
TRANSACTION_PATTERN = r"^/api/marketplace/(buy|sell|list)"
READ_PATTERN = r"^/api/(digimons|marketplace)$"


class WindowLimit(BaseModel):
    """Requests allowed per window for one route class."""

    limit: int = Field(ge=1, description="Requests per window")
    window: int = Field(ge=1, description="Window in seconds")


class RateLimitConfig(BaseModel):
    """Rate limiting configuration model."""

    enabled: bool = Field(default=True, description="Enable rate limiting")
    storage: StorageKind = Field(default=StorageKind.LOCAL, description="Counter storage kind")
    redis_url: Optional[str] = Field(default=None, description="Redis URL if using shared storage")
    redis_socket_timeout: float = Field(default=1.0, gt=0, description="Redis socket timeout in seconds")
    key_prefix: str = Field(default="ratelimit", min_length=1, description="Prefix for rate limit keys")
    protected_prefix: str = Field(default="/api/", description="Only paths under this prefix are limited")
    bypass_prefixes: List[str] = Field(default_factory=lambda: ["/api/auth/"], description="Never-limited prefixes")
    mint: WindowLimit = Field(default_factory=lambda: WindowLimit(limit=5, window=60))
    transactions: WindowLimit = Field(default_factory=lambda: WindowLimit(limit=10, window=60))
    reads: WindowLimit = Field(default_factory=lambda: WindowLimit(limit=100, window=60))
    default: WindowLimit = Field(default_factory=lambda: WindowLimit(limit=60, window=60))


def get_rate_limit_config(settings: Optional[Settings] = None) -> RateLimitConfig:
    """Get rate limiting configuration from settings."""
    settings = settings or get_settings()

    return RateLimitConfig(
        enabled=settings.ENABLE_RATE_LIMITING,
        storage=StorageKind(settings.rate_limit_storage),
        redis_url=settings.REDIS_URL,
        redis_socket_timeout=settings.RATE_LIMIT_REDIS_SOCKET_TIMEOUT,
        key_prefix=settings.RATE_LIMIT_KEY_PREFIX,
        protected_prefix=settings.RATE_LIMIT_PROTECTED_PREFIX,
        bypass_prefixes=settings.RATE_LIMIT_BYPASS_PREFIXES,
        mint=WindowLimit(limit=settings.RATE_LIMIT_MINT_LIMIT, window=settings.RATE_LIMIT_MINT_WINDOW),
        transactions=WindowLimit(
            limit=settings.RATE_LIMIT_TRANSACTION_LIMIT, window=settings.RATE_LIMIT_TRANSACTION_WINDOW
        ),
        reads=WindowLimit(limit=settings.RATE_LIMIT_READ_LIMIT, window=settings.RATE_LIMIT_READ_WINDOW),
        default=WindowLimit(limit=settings.RATE_LIMIT_DEFAULT_LIMIT, window=settings.RATE_LIMIT_DEFAULT_WINDOW),
    )


def build_default_policy(config: RateLimitConfig) -> RatePolicy:
    """Moderate per-IP budget for API routes without a specific rule."""
    return RatePolicy(
        window_seconds=config.default.window,
        max_requests=config.default.limit,
        key_generator=KeyGeneratorKind.IP,
        storage=config.storage,
        key_prefix=config.key_prefix,
        message="Rate limit exceeded. Please try again later.",
    )


def build_route_rules(config: RateLimitConfig) -> List[RouteRule]:
    """
    Static route policy table, most specific first.

    Each policy gets its own key namespace under the configured prefix so a
    client exhausting one route class keeps its budget on the others.

    - minting: tightly limited per credential
    - marketplace buy/sell/list: limited per credential
    - collection reads: generous per-IP budget
    """
    return [
        RouteRule.create(
            MINT_PATTERN,
            "POST",
            RatePolicy(
                window_seconds=config.mint.window,
                max_requests=config.mint.limit,
                key_generator=KeyGeneratorKind.CREDENTIAL,
                storage=config.storage,
                key_prefix=f"{config.key_prefix}:mint",
                message="Minting rate limit exceeded. Please try again later.",
            ),
        ),
        RouteRule.create(
            TRANSACTION_PATTERN,
            "POST",
            RatePolicy(
                window_seconds=config.transactions.window,
                max_requests=config.transactions.limit,
                key_generator=KeyGeneratorKind.CREDENTIAL,
                storage=config.storage,
                key_prefix=f"{config.key_prefix}:transactions",
                message="Transaction rate limit exceeded. Please try again later.",
            ),
        ),
        RouteRule.create(
            READ_PATTERN,
            "GET",
            RatePolicy(
                window_seconds=config.reads.window,
                max_requests=config.reads.limit,
                key_generator=KeyGeneratorKind.IP,
                storage=config.storage,
                key_prefix=f"{config.key_prefix}:reads",
                message="Too many requests. Please try again later.",
            ),
        ),
    ]


def create_backend(kind: StorageKind, config: RateLimitConfig) -> LimiterBackend:
    """Create the counter store for a storage kind."""
    if kind == StorageKind.LOCAL:
        return MemoryBackend()
    if kind == StorageKind.SHARED:
        if not config.redis_url:
            raise RateLimitConfigurationError(
                "Shared rate limit storage selected but REDIS_URL is not set",
                config_field="REDIS_URL",
            )
        return RedisBackend(config.redis_url, socket_timeout=config.redis_socket_timeout)
    raise RateLimitConfigurationError(f"Unknown rate limit storage: {kind}", config_field="storage")


def create_policy_router(config: Optional[RateLimitConfig] = None) -> Optional[PolicyRouter]:
    """
    Create the policy router based on configuration.

    Args:
        config: Rate limiting configuration (defaults to settings)

    Returns:
        PolicyRouter instance or None if disabled

    Raises:
        RateLimitConfigurationError: If the configuration cannot be satisfied
    """
    if config is None:
        config = get_rate_limit_config()

    if not config.enabled:
        logger.info("Rate limiting disabled by configuration")
        return None

    rules = build_route_rules(config)
    default_policy = build_default_policy(config)

    backends: Dict[StorageKind, LimiterBackend] = {}
    for policy in [rule.policy for rule in rules] + [default_policy]:
        if policy.storage not in backends:
            backends[policy.storage] = create_backend(policy.storage, config)

    return PolicyRouter(
        rules,
        default_policy,
        backends,
        protected_prefix=config.protected_prefix,
        bypass_prefixes=config.bypass_prefixes,
    )
