"""
Resilient error handling utilities.

Provides the application exception hierarchy, an async retry decorator,
a circuit breaker for external gateways, and error categorisation used when
recording per-analysis failures.
"""

import asyncio
import time
from functools import wraps
from typing import Callable, Optional, Type

from review_insights.utils.logger import get_logger

logger = get_logger(__name__)

# =============================================================================
# Custom Exceptions
# =============================================================================

class AppError(Exception):
    """Base application exception."""
    pass

class NetworkError(AppError):
    pass

class RateLimitError(AppError):
    pass

class ValidationError(AppError):
    pass

class APIKeyError(AppError):
    pass

class AppTimeoutError(AppError):
    pass

class ServiceUnavailableError(AppError):
    """Raised when a gateway's circuit is open."""
    pass

# =============================================================================
# Retry Decorator
# =============================================================================

def async_retry(
    max_attempts: int = 3,
    backoff_factor: float = 2.0,
    initial_wait: float = 1.0,
    exceptions: tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[int, Exception], None]] = None
):
    """
    Retry decorator with exponential backoff.

    Waits ``initial_wait * backoff_factor ** (attempt - 1)`` seconds between
    attempts and re-raises the last exception once attempts are exhausted.
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            last_exception: Optional[Exception] = None

            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e

                    if attempt == max_attempts:
                        logger.warning(
                            "Final attempt failed",
                            function=func.__name__,
                            attempt=attempt,
                            error=str(e),
                        )
                        break

                    sleep_time = initial_wait * (backoff_factor ** (attempt - 1))

                    if on_retry:
                        try:
                            on_retry(attempt, e)
                        except Exception as cb_err:
                            logger.debug("Retry callback failed", error=str(cb_err))

                    logger.warning(
                        "Attempt failed, retrying",
                        function=func.__name__,
                        attempt=attempt,
                        wait_seconds=round(sleep_time, 2),
                        error=str(e),
                    )

                    await asyncio.sleep(sleep_time)

            raise last_exception
        return wrapper
    return decorator

# =============================================================================
# Circuit Breaker
# =============================================================================

class CircuitBreaker:
    """
    Circuit breaker for external services.

    After ``failure_threshold`` consecutive failures the circuit opens and
    calls fail fast with ServiceUnavailableError until ``recovery_timeout``
    seconds pass; the next call is then a half-open trial.
    """

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 60, name: str = "CircuitBreaker"):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.name = name

        self.failures = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half-open

    def _elapsed(self) -> float:
        if self.last_failure_time is None:
            return 0.0
        return time.monotonic() - self.last_failure_time

    def _should_attempt_reset(self) -> bool:
        if self.state != "open" or self.last_failure_time is None:
            return False
        return self._elapsed() > self.recovery_timeout

    def _on_success(self):
        if self.state != "closed":
            logger.info("Circuit closed", circuit=self.name)
        self.failures = 0
        self.state = "closed"
        self.last_failure_time = None

    def _on_failure(self):
        self.failures += 1
        self.last_failure_time = time.monotonic()

        if self.state == "half-open":
            self.state = "open"
            logger.warning("Circuit trial failed, re-opened", circuit=self.name)
        elif self.failures >= self.failure_threshold and self.state == "closed":
            self.state = "open"
            logger.error("Circuit opened", circuit=self.name, failures=self.failures)

    async def call(self, func: Callable, *args, **kwargs):
        if self.state == "open":
            if self._should_attempt_reset():
                self.state = "half-open"
                logger.info("Circuit half-open, attempting reset", circuit=self.name)
            else:
                remaining = self.recovery_timeout - self._elapsed()
                raise ServiceUnavailableError(
                    f"Circuit {self.name} is OPEN. Retry in {remaining:.1f}s"
                )

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

# =============================================================================
# Error Handler
# =============================================================================

class ErrorHandler:
    """Centralized error categorization."""

    TRANSIENT_CATEGORIES = frozenset({
        "NETWORK_ERROR",
        "RATE_LIMIT_ERROR",
        "TIMEOUT_ERROR",
        "SERVICE_UNAVAILABLE",
    })

    @staticmethod
    def categorize_error(error: Exception) -> str:
        """Categorize errors for logging and retry decisions."""
        if isinstance(error, ServiceUnavailableError):
            return "SERVICE_UNAVAILABLE"
        if isinstance(error, (NetworkError, ConnectionError)):
            return "NETWORK_ERROR"
        if isinstance(error, RateLimitError):
            return "RATE_LIMIT_ERROR"
        if isinstance(error, (AppTimeoutError, asyncio.TimeoutError)):
            return "TIMEOUT_ERROR"
        if isinstance(error, APIKeyError):
            return "API_KEY_ERROR"
        if isinstance(error, (ValidationError, ValueError, TypeError)):
            return "VALIDATION_ERROR"

        err_str = str(error).lower()
        if "rate limit" in err_str:
            return "RATE_LIMIT_ERROR"
        if "timeout" in err_str or "timed out" in err_str:
            return "TIMEOUT_ERROR"
        if "api key" in err_str or "unauthorized" in err_str:
            return "API_KEY_ERROR"
        if "connection" in err_str:
            return "NETWORK_ERROR"

        return "UNKNOWN_ERROR"

    @classmethod
    def is_transient(cls, error: Exception) -> bool:
        """Whether re-running the same step later could plausibly succeed."""
        return cls.categorize_error(error) in cls.TRANSIENT_CATEGORIES
