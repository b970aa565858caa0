"""Rate limiting exceptions."""

from typing import Optional


class RateLimitError(Exception):
    """Base exception for rate limiting errors."""

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "rate_limit_error"


class RateLimitConfigurationError(RateLimitError):
    """Exception raised when rate limiting configuration is invalid."""

    def __init__(self, message: str, config_field: Optional[str] = None):
        super().__init__(message, "rate_limit_configuration_error")
        self.config_field = config_field


class RateLimitBackendError(RateLimitError):
    """Exception raised when a backend administrative operation fails."""

    def __init__(self, message: str, key: Optional[str] = None, backend_error: Optional[str] = None):
        super().__init__(message, "rate_limit_backend_error")
        self.key = key
        self.backend_error = backend_error
