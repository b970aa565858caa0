"""Main entry point for the Marketplace Gateway application."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from marketplace_gateway.api.routes import router
from marketplace_gateway.core.config import Settings, get_settings
from marketplace_gateway.core.logging import setup_logging
from marketplace_gateway.rl import RateLimitConfig, RateLimitMiddleware, create_policy_router, get_rate_limit_config

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan management
    Releases the rate limit backends on shutdown
    """
    logger.info("Starting Marketplace Gateway...")
    yield
    logger.info("Shutting down Marketplace Gateway...")
    policy_router = getattr(app.state, "policy_router", None)
    if policy_router is not None:
        await policy_router.aclose()


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Custom validation error handler"""
    logger.warning(
        "Request validation failed",
        extra={
            "url": str(request.url),
            "method": request.method,
            "errors": exc.errors()
        }
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Request validation failed",
            "errors": exc.errors()
        }
    )


async def general_exception_handler(request: Request, exc: Exception):
    """General exception handler for unhandled errors"""
    logger.error(
        "Unhandled exception",
        extra={
            "url": str(request.url),
            "method": request.method,
            "error": str(exc)
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error occurred"
        }
    )


def create_app(
    settings: Optional[Settings] = None,
    rate_limit_config: Optional[RateLimitConfig] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    The rate limit router and its backends are built here, once, so a bad
    configuration (e.g. shared storage without REDIS_URL) fails at startup.
    """
    settings = settings or get_settings()
    rate_limit_config = rate_limit_config or get_rate_limit_config(settings)

    app = FastAPI(
        title="Marketplace Gateway",
        description="Rate limiting gateway for the NFT marketplace API",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
        openapi_tags=[
            {
                "name": "health",
                "description": "Health check and system status"
            }
        ]
    )

    policy_router = create_policy_router(rate_limit_config)
    app.state.policy_router = policy_router

    logger.info(
        "Gateway configuration",
        extra={
            "host": settings.HOST,
            "port": settings.PORT,
            "deploy_env": settings.DEPLOY_ENV,
            "log_level": settings.LOG_LEVEL,
            "rate_limiting_enabled": rate_limit_config.enabled,
            "rate_limit_storage": rate_limit_config.storage.value,
        }
    )

    app.add_middleware(RateLimitMiddleware, router=policy_router)

    # Add security middleware
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.allowed_hosts
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"]
    )

    # Add custom exception handlers
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(router, tags=["health"])

    return app


def main() -> None:
    """Main entry point for the application."""
    settings = get_settings()
    setup_logging(settings)

    logger.info("Starting Marketplace Gateway...")

    app = create_app(settings)

    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        access_log=True,
        server_header=False,  # Don't reveal server info
        date_header=True,
    )


if __name__ == "__main__":
    main()
