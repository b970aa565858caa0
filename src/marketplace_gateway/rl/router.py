"""Per-route policy selection and strategy construction."""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .backend import LimiterBackend
from .exceptions import RateLimitConfigurationError
from .keys import create_key_generator
from .limiter import FixedWindowStrategy, RateLimitResult, RatePolicy, StorageKind
from .request import RequestInfo

logger = logging.getLogger(__name__)

ANY_METHOD = "ANY"


@dataclass(frozen=True)
class RouteRule:
    """Applies `policy` to requests whose path matches `pattern` and whose method matches."""
    pattern: re.Pattern[str]
    method: str
    policy: RatePolicy

    @classmethod
    def create(cls, pattern: Union[str, re.Pattern[str]], method: str, policy: RatePolicy) -> "RouteRule":
        compiled = re.compile(pattern) if isinstance(pattern, str) else pattern
        return cls(pattern=compiled, method=method.upper(), policy=policy)

    def matches(self, request: RequestInfo) -> bool:
        if self.method != ANY_METHOD and self.method != request.method.upper():
            return False
        return self.pattern.search(request.path) is not None


class PolicyRouter:
    """
    Chooses the policy for a request and runs the matching strategy.

    Rules are scanned in order and the first match wins; unmatched requests
    under the protected prefix get the default policy. Paths outside the
    protected prefix, and paths under a bypass prefix (auth endpoints must
    stay reachable), are never limited.
    """

    def __init__(
        self,
        rules: Sequence[RouteRule],
        default_policy: RatePolicy,
        backends: Mapping[StorageKind, LimiterBackend],
        protected_prefix: str = "/api/",
        bypass_prefixes: Iterable[str] = ("/api/auth/",),
    ):
        self._rules: List[RouteRule] = list(rules)
        self._default_policy = default_policy
        self._backends: Dict[StorageKind, LimiterBackend] = dict(backends)
        self._protected_prefix = protected_prefix
        self._bypass_prefixes = tuple(bypass_prefixes)
        self._strategies: Dict[RatePolicy, FixedWindowStrategy] = {}

        for policy in self.policies:
            if policy.storage not in self._backends:
                raise RateLimitConfigurationError(
                    f"No backend configured for storage kind '{policy.storage.value}'",
                    config_field="storage",
                )

        logger.info(
            "Rate limit policy router initialized",
            extra={
                "rules": len(self._rules),
                "protected_prefix": self._protected_prefix,
                "bypass_prefixes": self._bypass_prefixes,
                "backends": [kind.value for kind in self._backends],
            },
        )

    @property
    def rules(self) -> List[RouteRule]:
        return list(self._rules)

    @property
    def default_policy(self) -> RatePolicy:
        return self._default_policy

    @property
    def policies(self) -> List[RatePolicy]:
        return [rule.policy for rule in self._rules] + [self._default_policy]

    def is_exempt(self, request: RequestInfo) -> bool:
        """True when the request must pass through without a verdict."""
        if not request.path.startswith(self._protected_prefix):
            return True
        return any(request.path.startswith(prefix) for prefix in self._bypass_prefixes)

    def resolve(self, request: RequestInfo) -> Optional[RatePolicy]:
        """Return the policy for the request, or None if it is exempt."""
        if self.is_exempt(request):
            return None
        for rule in self._rules:
            if rule.matches(request):
                return rule.policy
        return self._default_policy

    def strategy_for(self, policy: RatePolicy) -> FixedWindowStrategy:
        """Return the cached strategy for `policy`, building it on first use."""
        strategy = self._strategies.get(policy)
        if strategy is None:
            backend = self._backends.get(policy.storage)
            if backend is None:
                raise RateLimitConfigurationError(
                    f"No backend configured for storage kind '{policy.storage.value}'",
                    config_field="storage",
                )
            key_generator = create_key_generator(
                policy.key_generator, policy.key_prefix, policy.credential_header
            )
            strategy = FixedWindowStrategy(backend, policy, key_generator)
            self._strategies[policy] = strategy
        return strategy

    async def check(self, request: RequestInfo) -> Optional[RateLimitResult]:
        """Run the rate limit check for the request; None means pass through."""
        policy = self.resolve(request)
        if policy is None:
            return None
        return await self.strategy_for(policy).check(request)

    async def aclose(self) -> None:
        """Close every backend the router was given."""
        for backend in {id(b): b for b in self._backends.values()}.values():
            await backend.close()
