"""Utils module for the Review Insights Engine."""

from review_insights.utils.logger import (
    LogContext,
    get_logger,
    setup_logging,
    setup_logging_from_settings,
)
from review_insights.utils.retry import (
    async_retry,
    CircuitBreaker,
    ErrorHandler,
    AppError,
    NetworkError,
    RateLimitError,
    ValidationError,
    APIKeyError,
    AppTimeoutError,
    ServiceUnavailableError,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "setup_logging_from_settings",
    "LogContext",
    "async_retry",
    "CircuitBreaker",
    "ErrorHandler",
    "AppError",
    "NetworkError",
    "RateLimitError",
    "ValidationError",
    "APIKeyError",
    "AppTimeoutError",
    "ServiceUnavailableError",
]
