"""Rate limiting middleware for FastAPI."""

import logging
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .keys import redact_key
from .request import RequestInfo
from .router import PolicyRouter

logger = logging.getLogger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware that applies the per-route rate limit policies."""

    def __init__(self, app, router: Optional[PolicyRouter] = None):
        """Initialize rate limiting middleware."""
        super().__init__(app)
        self.router = router

        # If no router provided, rate limiting is effectively disabled
        if self.router is None:
            logger.info("Rate limiting middleware initialized but disabled (no router provided)")
        else:
            logger.info(
                "Rate limiting middleware initialized",
                extra={
                    "rules": len(self.router.rules),
                    "default_limit": self.router.default_policy.max_requests,
                    "default_window": self.router.default_policy.window_seconds,
                },
            )

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Apply rate limiting to matching requests."""
        if self.router is None:
            return await call_next(request)

        info = RequestInfo.from_starlette(request)
        result = await self.router.check(info)

        if result is None:
            return await call_next(request)

        request.state.rate_limit = result

        if not result.allowed:
            logger.warning(
                "Rate limit exceeded",
                extra={
                    "rate_limit_key": redact_key(result.key),
                    "path": info.path,
                    "method": info.method,
                    "client": info.client_host,
                    "limit": result.limit,
                    "retry_after": result.retry_after,
                },
            )
            return result.response

        response = await call_next(request)

        try:
            for name, value in result.headers().items():
                response.headers[name] = value
        except Exception as e:
            logger.debug(
                "Could not annotate response with rate limit headers",
                extra={"path": info.path, "error": str(e)},
            )

        return response
