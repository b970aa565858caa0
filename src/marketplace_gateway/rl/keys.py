"""Rate limiting key generators."""

import hashlib
from abc import ABC, abstractmethod
from enum import Enum

from .request import RequestInfo

UNKNOWN_IP = "unknown-ip"
BEARER_PREFIX = "Bearer "
TOKEN_SEGMENT = ":token:"


class KeyGeneratorKind(str, Enum):
    """How a request is mapped to its counter bucket."""
    IP = "ip"
    IP_PATH = "ip-path"
    CREDENTIAL = "credential"


def get_client_ip(request: RequestInfo) -> str:
    """
    Client address as reported by the fronting proxy.

    Order: first entry of X-Forwarded-For, then X-Real-IP, then "unknown-ip".
    """
    forwarded_for = request.header("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    real_ip = request.header("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return UNKNOWN_IP


class KeyGenerator(ABC):
    """Maps a request to the identity string its counter is stored under."""

    def __init__(self, prefix: str = "ratelimit"):
        self.prefix = prefix

    @abstractmethod
    def generate_key(self, request: RequestInfo) -> str:
        """Return the counter key for the request."""


class IpKeyGenerator(KeyGenerator):
    """One bucket per client IP: {prefix}:ip:{ip}"""

    def generate_key(self, request: RequestInfo) -> str:
        return f"{self.prefix}:ip:{get_client_ip(request)}"


class IpPathKeyGenerator(KeyGenerator):
    """One bucket per client IP and route: {prefix}:ip-path:{ip}:{path}"""

    def generate_key(self, request: RequestInfo) -> str:
        return f"{self.prefix}:ip-path:{get_client_ip(request)}:{request.path}"


class CredentialKeyGenerator(KeyGenerator):
    """
    One bucket per bearer token: {prefix}:token:{token}

    Requests without a well-formed "Bearer <token>" header fall back to the
    per-IP key so they are never left in an unbounded bucket.
    """

    def __init__(self, prefix: str = "ratelimit", header_name: str = "authorization"):
        super().__init__(prefix)
        self.header_name = header_name
        self._fallback = IpKeyGenerator(prefix)

    def generate_key(self, request: RequestInfo) -> str:
        value = request.header(self.header_name)
        if value and value.startswith(BEARER_PREFIX):
            token = value[len(BEARER_PREFIX):]
            if token.strip():
                return f"{self.prefix}:token:{token}"
        return self._fallback.generate_key(request)


def create_key_generator(
    kind: KeyGeneratorKind,
    prefix: str = "ratelimit",
    header_name: str = "authorization",
) -> KeyGenerator:
    """Build the key generator for a policy's key generator kind."""
    if kind == KeyGeneratorKind.IP_PATH:
        return IpPathKeyGenerator(prefix)
    if kind == KeyGeneratorKind.CREDENTIAL:
        return CredentialKeyGenerator(prefix, header_name)
    return IpKeyGenerator(prefix)


def redact_key(key: str) -> str:
    """
    Log-safe form of a counter key.

    Credential keys embed the caller's bearer token; it is replaced by a
    short SHA-256 digest so log lines stay correlatable without exposing it.
    """
    prefix, sep, token = key.partition(TOKEN_SEGMENT)
    if not sep:
        return key
    digest = hashlib.sha256(token.encode("utf-8")).hexdigest()[:12]
    return f"{prefix}{TOKEN_SEGMENT}sha256:{digest}"
