"""Framework-neutral request descriptor consumed by the rate limiter."""

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from starlette.requests import Request


@dataclass(frozen=True)
class RequestInfo:
    """
    The parts of an inbound HTTP request the rate limiter looks at.

    Header names are stored lower-cased so lookups are case-insensitive.
    Routing and key generation only ever read from this object, which keeps
    them testable with synthetic requests.
    """
    method: str
    path: str
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)
    client_host: Optional[str] = None

    @classmethod
    def build(
        cls,
        method: str,
        path: str,
        headers: Optional[Mapping[str, str]] = None,
        cookies: Optional[Mapping[str, str]] = None,
        client_host: Optional[str] = None,
    ) -> "RequestInfo":
        """Create a descriptor, normalising method and header names."""
        return cls(
            method=method.upper(),
            path=path,
            headers=_merge_headers(headers),
            cookies=dict(cookies or {}),
            client_host=client_host,
        )

    @classmethod
    def from_starlette(cls, request: Request) -> "RequestInfo":
        """Build a descriptor from a Starlette/FastAPI request."""
        return cls.build(
            method=request.method,
            path=request.url.path,
            headers=request.headers,
            cookies=request.cookies,
            client_host=request.client.host if request.client else None,
        )

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())

    def cookie(self, name: str) -> Optional[str]:
        return self.cookies.get(name)


def _merge_headers(headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """
    Lower-case header names, joining repeated header lines with ", ".

    Starlette's Headers.items() yields one pair per raw line, and repeated
    lines are equivalent to one comma-separated value (RFC 9110 5.3).
    """
    merged: Dict[str, str] = {}
    for name, value in (headers or {}).items():
        name = name.lower()
        merged[name] = f"{merged[name]}, {value}" if name in merged else value
    return merged
