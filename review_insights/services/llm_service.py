"""
Claude completion service for structured review analysis.

This module wraps Anthropic's async client with the pieces every analysis
call needs: retry with exponential backoff, request/token rate limiting,
token and cost tracking, JSON extraction and pydantic validation with a
self-correction round trip.

Example:
    >>> service = ClaudeService()
    >>> payload = await service.complete_json(system, prompt, SentimentPayload)
"""

from __future__ import annotations

import asyncio
import json
import random
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Type, TypeVar

import anthropic
from anthropic import APIError, APIStatusError, RateLimitError
from pydantic import BaseModel, ValidationError

from review_insights.config.settings import Settings, get_settings
from review_insights.utils.logger import get_logger

T = TypeVar("T", bound=BaseModel)

logger = get_logger(__name__)


# =============================================================================
# Constants and Enums
# =============================================================================

class TaskType(str, Enum):
    """Kinds of completion requests, used for temperature and logging."""
    ANALYSIS = "analysis"
    VALIDATION = "validation"


# Token costs per model (per 1K tokens)
TOKEN_COSTS = {
    "claude-sonnet-4-20250514": {"input": 0.003, "output": 0.015},
    "claude-3-5-sonnet-20241022": {"input": 0.003, "output": 0.015},
    "claude-3-haiku-20240307": {"input": 0.00025, "output": 0.00125},
}

DEFAULT_RATE_LIMIT = 50  # requests per minute
DEFAULT_TOKEN_LIMIT = 100000  # tokens per minute

CORRECTION_SYSTEM_PROMPT = """You are a JSON validation and correction specialist.
Fix any JSON errors while preserving the original intent and data.
Only output the corrected JSON - no explanation or markdown."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class TokenUsage:
    """Token usage tracking for a single request."""
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0
    model: str = ""
    timestamp: datetime = field(default_factory=_utcnow)

    def calculate_cost(self, model: str) -> float:
        """Calculate estimated cost based on token usage."""
        if model in TOKEN_COSTS:
            costs = TOKEN_COSTS[model]
            self.estimated_cost = (
                (self.input_tokens / 1000) * costs["input"]
                + (self.output_tokens / 1000) * costs["output"]
            )
        return self.estimated_cost


@dataclass
class RateLimiter:
    """Sliding-window limiter on requests and tokens per minute."""
    max_requests: int = DEFAULT_RATE_LIMIT
    max_tokens: int = DEFAULT_TOKEN_LIMIT
    window_seconds: int = 60

    _request_timestamps: list[float] = field(default_factory=list)
    _token_usage: list[tuple[float, int]] = field(default_factory=list)

    def _cleanup_old_entries(self) -> None:
        cutoff = time.time() - self.window_seconds
        self._request_timestamps = [t for t in self._request_timestamps if t > cutoff]
        self._token_usage = [(t, n) for t, n in self._token_usage if t > cutoff]

    async def acquire(self, estimated_tokens: int = 0) -> None:
        """Wait until a request of ``estimated_tokens`` fits in the window."""
        self._cleanup_old_entries()

        if len(self._request_timestamps) >= self.max_requests:
            wait_time = self._request_timestamps[0] + self.window_seconds - time.time()
            if wait_time > 0:
                logger.warning("Rate limit reached, waiting", wait_seconds=round(wait_time, 2))
                await asyncio.sleep(wait_time)
                self._cleanup_old_entries()

        current_tokens = sum(n for _, n in self._token_usage)
        if self._token_usage and current_tokens + estimated_tokens > self.max_tokens:
            wait_time = self._token_usage[0][0] + self.window_seconds - time.time()
            if wait_time > 0:
                logger.warning("Token limit reached, waiting", wait_seconds=round(wait_time, 2))
                await asyncio.sleep(wait_time)
                self._cleanup_old_entries()

        self._request_timestamps.append(time.time())

    def record_usage(self, tokens: int) -> None:
        self._token_usage.append((time.time(), tokens))


# =============================================================================
# Custom Exceptions
# =============================================================================

class ClaudeServiceError(Exception):
    """Base exception for Claude service errors."""
    pass


class SchemaValidationError(ClaudeServiceError):
    """Raised when a response doesn't match the expected schema."""
    def __init__(self, message: str, raw_response: str, errors: list[str]):
        super().__init__(message)
        self.raw_response = raw_response
        self.errors = errors


class MaxRetriesExceededError(ClaudeServiceError):
    """Raised when max retries are exceeded."""
    pass


# =============================================================================
# Main Service Class
# =============================================================================

class ClaudeService:
    """
    Async Claude client producing schema-validated JSON.

    Attributes:
        settings: Application settings
        client: Anthropic API client
        rate_limiter: Request/token limiter
        token_usage_history: Per-request token usage
        total_cost: Running total of estimated API cost
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        api_key: Optional[str] = None,
        max_retries: Optional[int] = None,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        self.settings = settings or get_settings()
        self.max_retries = max_retries or self.settings.max_retries

        if client is not None:
            self.client = client
        else:
            self.client = anthropic.AsyncAnthropic(
                api_key=api_key or self.settings.anthropic_api_key.get_secret_value(),
                timeout=self.settings.request_timeout_seconds,
            )

        self.rate_limiter = RateLimiter(
            max_requests=self.settings.max_concurrent_requests * 10,
        )
        self.token_usage_history: list[TokenUsage] = []
        self.total_cost: float = 0.0

        logger.info(
            "ClaudeService initialized",
            model=self.settings.claude_model,
            max_retries=self.max_retries,
        )

    async def __aenter__(self) -> "ClaudeService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.close()
        logger.info(
            "ClaudeService closed",
            total_requests=len(self.token_usage_history),
            total_cost=f"${self.total_cost:.4f}",
        )

    # =========================================================================
    # Core API Methods
    # =========================================================================

    async def _call_api(
        self,
        messages: list[dict[str, str]],
        system: str = "",
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        task_type: TaskType = TaskType.ANALYSIS,
    ) -> tuple[str, TokenUsage]:
        """
        Make an API call with retry logic and rate limiting.

        Returns:
            Tuple of (response_text, token_usage)

        Raises:
            ClaudeServiceError: On non-retryable API errors
            MaxRetriesExceededError: When retryable errors persist
        """
        max_tokens = max_tokens or self.settings.claude_max_tokens
        if temperature is None:
            temperature = self.settings.analysis_temperature

        estimated_input_tokens = self._estimate_tokens(
            system + "".join(m["content"] for m in messages)
        )
        await self.rate_limiter.acquire(estimated_input_tokens + max_tokens)

        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                start_time = time.time()
                response = await self.client.messages.create(
                    model=self.settings.claude_model,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    system=system,
                    messages=messages,
                )
                elapsed = time.time() - start_time

                response_text = response.content[0].text
                usage = TokenUsage(
                    input_tokens=response.usage.input_tokens,
                    output_tokens=response.usage.output_tokens,
                    total_tokens=response.usage.input_tokens + response.usage.output_tokens,
                    model=self.settings.claude_model,
                )
                usage.calculate_cost(self.settings.claude_model)

                self.token_usage_history.append(usage)
                self.total_cost += usage.estimated_cost
                self.rate_limiter.record_usage(usage.total_tokens)

                logger.info(
                    "API call successful",
                    task_type=task_type.value,
                    attempt=attempt + 1,
                    elapsed_seconds=f"{elapsed:.2f}",
                    input_tokens=usage.input_tokens,
                    output_tokens=usage.output_tokens,
                )
                return response_text, usage

            except RateLimitError as e:
                last_error = e
                wait_time = self._calculate_backoff(attempt, base=30)
                logger.warning(
                    "Rate limit hit, backing off",
                    attempt=attempt + 1,
                    wait_seconds=wait_time,
                )
                await asyncio.sleep(wait_time)

            except APIStatusError as e:
                last_error = e
                if e.status_code >= 500:
                    wait_time = self._calculate_backoff(attempt)
                    logger.warning(
                        "Server error, retrying",
                        attempt=attempt + 1,
                        status_code=e.status_code,
                        wait_seconds=wait_time,
                    )
                    await asyncio.sleep(wait_time)
                elif e.status_code == 401:
                    logger.error("Authentication failed", error=str(e))
                    raise ClaudeServiceError(f"Authentication failed: {e}") from e
                else:
                    logger.error("API error", status_code=e.status_code, error=str(e))
                    raise ClaudeServiceError(f"API error: {e}") from e

            except (APIError, asyncio.TimeoutError) as e:
                last_error = e
                wait_time = self._calculate_backoff(attempt)
                logger.warning(
                    "API error, retrying",
                    attempt=attempt + 1,
                    wait_seconds=wait_time,
                    error=str(e),
                )
                await asyncio.sleep(wait_time)

        logger.error(
            "Max retries exceeded",
            task_type=task_type.value,
            max_retries=self.max_retries,
            last_error=str(last_error),
        )
        raise MaxRetriesExceededError(
            f"Failed after {self.max_retries} attempts: {last_error}"
        )

    # =========================================================================
    # High-Level Methods
    # =========================================================================

    async def complete_json(
        self,
        system: str,
        prompt: str,
        schema: Type[T],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> T:
        """
        Run a completion that must answer with JSON matching ``schema``.

        Raises:
            SchemaValidationError: If the response cannot be validated even
                after correction attempts.
        """
        response_text, _ = await self._call_api(
            messages=[{"role": "user", "content": prompt}],
            system=system,
            temperature=temperature,
            max_tokens=max_tokens,
            task_type=TaskType.ANALYSIS,
        )
        return await self.validate_and_retry(response_text, schema)

    async def validate_and_retry(
        self,
        response: str,
        expected_schema: Type[T],
        max_retries: int = 3,
    ) -> T:
        """
        Validate a response against a schema, asking Claude to correct it
        when it does not parse or validate.
        """
        last_error: Optional[str] = None
        current_response = response

        for attempt in range(max_retries):
            try:
                data = json.loads(self._extract_json(current_response))
                result = expected_schema.model_validate(data)
                if attempt > 0:
                    logger.info(
                        "Validation succeeded after correction",
                        attempt=attempt + 1,
                        schema=expected_schema.__name__,
                    )
                return result

            except json.JSONDecodeError as e:
                last_error = f"JSON parse error: {e}"
                logger.warning("Invalid JSON, attempting correction", attempt=attempt + 1, error=str(e))

            except ValidationError as e:
                errors = [f"{err['loc']}: {err['msg']}" for err in e.errors()]
                last_error = f"Validation errors: {'; '.join(errors)}"
                logger.warning(
                    "Schema validation failed, attempting correction",
                    attempt=attempt + 1,
                    errors=errors[:3],
                )

            if attempt < max_retries - 1:
                current_response = await self._request_correction(
                    current_response, last_error, expected_schema,
                )

        raise SchemaValidationError(
            f"Failed to validate response after {max_retries} attempts",
            raw_response=response,
            errors=[last_error] if last_error else [],
        )

    async def _request_correction(
        self,
        invalid_response: str,
        error_message: str,
        expected_schema: Type[BaseModel],
    ) -> str:
        correction_prompt = f"""The following JSON response has errors:

## Invalid Response:
{invalid_response[:2000]}

## Error:
{error_message}

## Expected Schema:
{json.dumps(expected_schema.model_json_schema(), indent=2)}

Please fix the JSON to match the expected schema. Output ONLY the corrected JSON:"""

        response_text, _ = await self._call_api(
            messages=[{"role": "user", "content": correction_prompt}],
            system=CORRECTION_SYSTEM_PROMPT,
            temperature=0.1,
            task_type=TaskType.VALIDATION,
        )
        return response_text

    # =========================================================================
    # Utility Methods
    # =========================================================================

    def _extract_json(self, text: str) -> str:
        """Extract JSON from text that may contain markdown or other content."""
        matches = re.findall(r"```(?:json)?\s*([\s\S]*?)```", text)
        if matches:
            return matches[0].strip()

        matches = re.findall(r"(\{[\s\S]*\}|\[[\s\S]*\])", text)
        if matches:
            return max(matches, key=len)

        return text.strip()

    def _estimate_tokens(self, text: str) -> int:
        # ~4 characters per token for English
        return len(text) // 4

    def _calculate_backoff(self, attempt: int, base: float = 1.0) -> float:
        """Exponential backoff with jitter, capped at 60 seconds."""
        backoff = base * (2 ** attempt)
        jitter = random.uniform(0, backoff * 0.1)
        return min(backoff + jitter, 60)


__all__ = [
    "ClaudeService",
    "TaskType",
    "TokenUsage",
    "RateLimiter",
    "ClaudeServiceError",
    "SchemaValidationError",
    "MaxRetriesExceededError",
]
