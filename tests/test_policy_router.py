"""Tests for per-route policy selection."""

import pytest

from marketplace_gateway.rl import (
    RequestInfo,
    MemoryBackend,
    RatePolicy,
    PolicyRouter,
    RouteRule,
    StorageKind,
    KeyGeneratorKind,
    CredentialKeyGenerator,
    IpKeyGenerator,
    RateLimitConfig,
    WindowLimit,
    build_route_rules,
    build_default_policy,
)
from marketplace_gateway.rl.exceptions import RateLimitConfigurationError


def make_request(path, method="GET", headers=None):
    return RequestInfo.build(method=method, path=path, headers=headers)


@pytest.fixture
def config():
    return RateLimitConfig()


@pytest.fixture
def router(config):
    return PolicyRouter(
        build_route_rules(config),
        build_default_policy(config),
        {StorageKind.LOCAL: MemoryBackend()},
    )


class TestPolicyResolution:
    """Routing is pure: only a synthetic request is needed."""

    def test_mint_post_selects_mint_policy(self, router):
        policy = router.resolve(make_request("/api/digimons/mint", "POST"))

        assert policy is not None
        assert policy.max_requests == 5
        assert policy.key_generator == KeyGeneratorKind.CREDENTIAL
        assert policy is not router.default_policy

    def test_mint_get_falls_back_to_default(self, router):
        policy = router.resolve(make_request("/api/digimons/mint", "GET"))
        assert policy is router.default_policy

    @pytest.mark.parametrize("path", [
        "/api/marketplace/buy",
        "/api/marketplace/sell",
        "/api/marketplace/list",
        "/api/marketplace/list/42",
    ])
    def test_marketplace_transactions(self, router, path):
        policy = router.resolve(make_request(path, "POST"))
        assert policy.max_requests == 10
        assert policy.key_generator == KeyGeneratorKind.CREDENTIAL

    @pytest.mark.parametrize("path", ["/api/digimons", "/api/marketplace"])
    def test_read_endpoints(self, router, path):
        policy = router.resolve(make_request(path, "GET"))
        assert policy.max_requests == 100
        assert policy.key_generator == KeyGeneratorKind.IP

    def test_unmatched_api_path_uses_default(self, router):
        policy = router.resolve(make_request("/api/user/link-wallet", "POST"))
        assert policy is router.default_policy
        assert policy.max_requests == 60

    @pytest.mark.parametrize("path", ["/", "/marketplace", "/login", "/api", "/apiary"])
    def test_non_api_paths_pass_through(self, router, path):
        assert router.resolve(make_request(path)) is None

    @pytest.mark.parametrize("path", [
        "/api/auth/callback/credentials",
        "/api/auth/session",
        "/api/auth/wallet/nonce",
    ])
    def test_auth_paths_pass_through(self, router, path):
        assert router.resolve(make_request(path, "POST")) is None

    def test_first_match_wins(self):
        first = RatePolicy(max_requests=1)
        second = RatePolicy(max_requests=2)
        router = PolicyRouter(
            [
                RouteRule.create(r"^/api/items", "ANY", first),
                RouteRule.create(r"^/api/items/special$", "ANY", second),
            ],
            RatePolicy(),
            {StorageKind.LOCAL: MemoryBackend()},
        )
        assert router.resolve(make_request("/api/items/special", "DELETE")) is first

    def test_method_is_case_insensitive(self):
        policy = RatePolicy(max_requests=3)
        router = PolicyRouter(
            [RouteRule.create(r"^/api/things$", "post", policy)],
            RatePolicy(),
            {StorageKind.LOCAL: MemoryBackend()},
        )
        assert router.resolve(make_request("/api/things", "post")) is policy

    def test_lower_case_method_on_unnormalised_request(self, router):
        request = RequestInfo(method="post", path="/api/digimons/mint")
        policy = router.resolve(request)
        assert policy.key_prefix == "ratelimit:mint"
        assert policy.key_generator == KeyGeneratorKind.CREDENTIAL

    def test_custom_prefixes(self, config):
        router = PolicyRouter(
            [],
            build_default_policy(config),
            {StorageKind.LOCAL: MemoryBackend()},
            protected_prefix="/v1/",
            bypass_prefixes=("/v1/login",),
        )
        assert router.resolve(make_request("/api/digimons")) is None
        assert router.resolve(make_request("/v1/login")) is None
        assert router.resolve(make_request("/v1/digimons")) is router.default_policy


class TestStrategyFactory:
    """Test strategy construction and reuse."""

    def test_strategy_cached_per_policy(self, router):
        policy = router.resolve(make_request("/api/digimons/mint", "POST"))
        assert router.strategy_for(policy) is router.strategy_for(policy)

    def test_strategy_wiring(self, router):
        mint = router.resolve(make_request("/api/digimons/mint", "POST"))
        default = router.default_policy

        assert isinstance(router.strategy_for(mint).key_generator, CredentialKeyGenerator)
        assert isinstance(router.strategy_for(default).key_generator, IpKeyGenerator)
        assert router.strategy_for(mint).backend is router.strategy_for(default).backend

    def test_missing_backend_is_configuration_error(self, config):
        with pytest.raises(RateLimitConfigurationError):
            PolicyRouter(
                build_route_rules(config),
                build_default_policy(config),
                {StorageKind.SHARED: MemoryBackend()},
            )


class TestRouterCheck:
    """Test end-to-end checks through the router."""

    @pytest.mark.asyncio
    async def test_auth_callback_never_denied(self, router):
        request = make_request("/api/auth/callback/credentials", "POST")
        for _ in range(200):
            assert await router.check(request) is None

    @pytest.mark.asyncio
    async def test_mint_limit_per_token(self, router):
        alice = make_request("/api/digimons/mint", "POST", {"authorization": "Bearer alice"})
        bob = make_request("/api/digimons/mint", "POST", {"authorization": "Bearer bob"})

        results = [await router.check(alice) for _ in range(6)]
        assert [r.allowed for r in results] == [True] * 5 + [False]
        assert results[-1].key == "ratelimit:mint:token:alice"

        result = await router.check(bob)
        assert result.allowed is True
        assert result.remaining == 4

    @pytest.mark.asyncio
    async def test_policies_have_independent_buckets(self):
        config = RateLimitConfig(mint=WindowLimit(limit=1, window=60), default=WindowLimit(limit=3, window=60))
        router = PolicyRouter(
            build_route_rules(config),
            build_default_policy(config),
            {StorageKind.LOCAL: MemoryBackend()},
        )
        headers = {"x-forwarded-for": "203.0.113.7"}

        assert (await router.check(make_request("/api/digimons/mint", "POST", headers))).allowed is True
        assert (await router.check(make_request("/api/digimons/mint", "POST", headers))).allowed is False

        result = await router.check(make_request("/api/user/profile", "GET", headers))
        assert result.allowed is True
        assert result.remaining == 2
        assert result.key == "ratelimit:ip:203.0.113.7"
