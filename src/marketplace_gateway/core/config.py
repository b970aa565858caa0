"""Configuration management for the Marketplace Gateway."""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings, read once at process start."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    # Server configuration
    HOST: str = Field(default="127.0.0.1", description="Server host")
    PORT: int = Field(default=8000, description="Server port")
    DEBUG: bool = Field(default=False, description="Debug mode")
    DEPLOY_ENV: str = Field(default="development", description="Deployment environment name")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(default="json", description="Logging format: json or text")

    # Security settings
    ALLOWED_HOSTS: list[str] = Field(default_factory=lambda: ["*"], description="Allowed hosts for TrustedHostMiddleware")
    CORS_ORIGINS: list[str] = Field(default_factory=lambda: ["*"], description="CORS allowed origins")

    # Rate limiting configuration
    ENABLE_RATE_LIMITING: bool = Field(default=True, description="Enable rate limiting")
    RATE_LIMIT_BACKEND: Optional[str] = Field(
        default=None,
        pattern="^(local|shared)$",
        description="Counter storage; derived from DEPLOY_ENV when unset",
    )
    REDIS_URL: Optional[str] = Field(default=None, description="Redis URL for the shared rate limit backend")
    RATE_LIMIT_REDIS_SOCKET_TIMEOUT: float = Field(default=1.0, gt=0, le=30, description="Redis socket timeout in seconds")
    RATE_LIMIT_KEY_PREFIX: str = Field(default="ratelimit", min_length=1, description="Prefix for rate limit keys")
    RATE_LIMIT_PROTECTED_PREFIX: str = Field(default="/api/", description="Only paths under this prefix are limited")
    RATE_LIMIT_BYPASS_PREFIXES: list[str] = Field(
        default_factory=lambda: ["/api/auth/"],
        description="Path prefixes that are never limited",
    )

    # Per-route policies
    RATE_LIMIT_MINT_LIMIT: int = Field(default=5, ge=1, le=100000, description="Mint requests per window")
    RATE_LIMIT_MINT_WINDOW: int = Field(default=60, ge=1, le=86400, description="Mint window in seconds")
    RATE_LIMIT_TRANSACTION_LIMIT: int = Field(default=10, ge=1, le=100000, description="Marketplace transactions per window")
    RATE_LIMIT_TRANSACTION_WINDOW: int = Field(default=60, ge=1, le=86400, description="Marketplace transaction window in seconds")
    RATE_LIMIT_READ_LIMIT: int = Field(default=100, ge=1, le=100000, description="Read requests per window")
    RATE_LIMIT_READ_WINDOW: int = Field(default=60, ge=1, le=86400, description="Read window in seconds")
    RATE_LIMIT_DEFAULT_LIMIT: int = Field(default=60, ge=1, le=100000, description="Default requests per window")
    RATE_LIMIT_DEFAULT_WINDOW: int = Field(default=60, ge=1, le=86400, description="Default window in seconds")

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator('LOG_FORMAT')
    @classmethod
    def validate_log_format(cls, v):
        """Validate log format"""
        valid_formats = ['json', 'text']
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of {valid_formats}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        return self.DEPLOY_ENV.lower() == "production"

    @property
    def rate_limit_storage(self) -> str:
        """Storage kind for rate limit counters: shared in production, local otherwise."""
        if self.RATE_LIMIT_BACKEND:
            return self.RATE_LIMIT_BACKEND
        return "shared" if self.is_production else "local"

    @property
    def allowed_hosts(self) -> list[str]:
        """Get allowed hosts for TrustedHostMiddleware."""
        return self.ALLOWED_HOSTS

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS allowed origins."""
        return self.CORS_ORIGINS


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings (for dependency injection)"""
    return settings
