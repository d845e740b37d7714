import pytest
import json
from typing import Optional
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import httpx
from pydantic import BaseModel

from review_insights.services.llm_service import (
    CORRECTION_SYSTEM_PROMPT,
    ClaudeService,
    ClaudeServiceError,
    MaxRetriesExceededError,
    RateLimiter,
    SchemaValidationError,
    TaskType,
    TokenUsage,
)


class SimplePayload(BaseModel):
    summary: str
    score: Optional[int] = None


def _status_error(cls, status_code: int):
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    return cls("boom", response=httpx.Response(status_code, request=request), body=None)


def _api_response(text: str, input_tokens: int = 50, output_tokens: int = 30):
    response = MagicMock()
    response.content = [MagicMock(text=text)]
    response.usage.input_tokens = input_tokens
    response.usage.output_tokens = output_tokens
    return response


@pytest.fixture
def client():
    client = MagicMock()
    client.messages.create = AsyncMock()
    client.close = AsyncMock()
    return client


@pytest.fixture
def service(mock_settings, client):
    return ClaudeService(settings=mock_settings, client=client)


def test_llm_service_init(mock_settings):
    service = ClaudeService(settings=mock_settings)
    assert service.settings == mock_settings
    assert service.client is not None
    assert service.max_retries == 3
    assert not hasattr(service, "_cache")


# =============================================================================
# complete_json
# =============================================================================

@pytest.mark.asyncio
async def test_complete_json_returns_validated_model(service):
    with patch.object(service, "_call_api", new_callable=AsyncMock) as mock_call:
        mock_call.return_value = (json.dumps({"summary": "Great mug"}), TokenUsage(input_tokens=10, output_tokens=10))

        result = await service.complete_json("system", "prompt", SimplePayload, temperature=0.2, max_tokens=100)

    assert isinstance(result, SimplePayload)
    assert result.summary == "Great mug"
    mock_call.assert_called_once()
    kwargs = mock_call.call_args.kwargs
    assert kwargs["system"] == "system"
    assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]
    assert kwargs["temperature"] == 0.2
    assert kwargs["max_tokens"] == 100
    assert kwargs["task_type"] == TaskType.ANALYSIS


@pytest.mark.asyncio
async def test_complete_json_accepts_fenced_json(service):
    text = "Here you go:\n```json\n{\"summary\": \"ok\", \"score\": 3}\n```"
    with patch.object(service, "_call_api", new_callable=AsyncMock) as mock_call:
        mock_call.return_value = (text, TokenUsage())
        result = await service.complete_json("system", "prompt", SimplePayload)

    assert result.score == 3


@pytest.mark.asyncio
async def test_complete_json_requests_correction(service):
    with patch.object(service, "_call_api", new_callable=AsyncMock) as mock_call:
        mock_call.side_effect = [
            (json.dumps({"wrong_field": "data"}), TokenUsage()),
            (json.dumps({"summary": "fixed"}), TokenUsage()),
        ]
        result = await service.complete_json("system", "prompt", SimplePayload)

    assert result.summary == "fixed"
    assert mock_call.call_count == 2
    correction = mock_call.call_args_list[1].kwargs
    assert correction["system"] == CORRECTION_SYSTEM_PROMPT
    assert correction["task_type"] == TaskType.VALIDATION
    assert "wrong_field" in correction["messages"][0]["content"]


@pytest.mark.asyncio
async def test_complete_json_raises_after_failed_corrections(service):
    with patch.object(service, "_call_api", new_callable=AsyncMock) as mock_call:
        mock_call.return_value = ("not json at all", TokenUsage())

        with pytest.raises(SchemaValidationError) as exc_info:
            await service.complete_json("system", "prompt", SimplePayload)

    # one completion plus two corrections
    assert mock_call.call_count == 3
    assert exc_info.value.raw_response == "not json at all"
    assert exc_info.value.errors
    assert isinstance(exc_info.value, ClaudeServiceError)


def test_extract_json(service):
    assert service._extract_json('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert service._extract_json('Sure! {"a": {"b": 2}} Thanks') == '{"a": {"b": 2}}'
    assert service._extract_json("[1, 2]") == "[1, 2]"
    assert service._extract_json("  plain  ") == "plain"


# =============================================================================
# _call_api
# =============================================================================

@pytest.mark.asyncio
async def test_call_api_success(service, client, mock_settings):
    client.messages.create.return_value = _api_response("Response text")

    text, usage = await service._call_api([{"role": "user", "content": "hi"}], system="sys")

    assert text == "Response text"
    assert usage.input_tokens == 50
    assert usage.output_tokens == 30
    assert usage.total_tokens == 80
    kwargs = client.messages.create.call_args.kwargs
    assert kwargs["model"] == mock_settings.claude_model
    assert kwargs["temperature"] == 0.1
    assert kwargs["max_tokens"] == 4000
    assert kwargs["system"] == "sys"

    assert len(service.token_usage_history) == 1
    assert service.total_cost == pytest.approx(usage.estimated_cost)


@pytest.mark.asyncio
async def test_call_api_auth_error_is_not_retried(service, client):
    client.messages.create.side_effect = _status_error(anthropic.AuthenticationError, 401)

    with pytest.raises(ClaudeServiceError, match="Authentication failed"):
        await service._call_api([{"role": "user", "content": "hi"}])

    assert client.messages.create.call_count == 1


@pytest.mark.asyncio
async def test_call_api_client_error_is_not_retried(service, client):
    client.messages.create.side_effect = _status_error(anthropic.BadRequestError, 400)

    with pytest.raises(ClaudeServiceError, match="API error"):
        await service._call_api([{"role": "user", "content": "hi"}])

    assert client.messages.create.call_count == 1


@pytest.mark.asyncio
async def test_call_api_retries_server_errors(service, client):
    client.messages.create.side_effect = [
        _status_error(anthropic.InternalServerError, 500),
        _api_response("recovered"),
    ]

    with patch("review_insights.services.llm_service.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        text, _ = await service._call_api([{"role": "user", "content": "hi"}])

    assert text == "recovered"
    assert client.messages.create.call_count == 2
    mock_sleep.assert_awaited_once()


@pytest.mark.asyncio
async def test_call_api_max_retries_exceeded(service, client):
    client.messages.create.side_effect = _status_error(anthropic.InternalServerError, 500)

    with patch("review_insights.services.llm_service.asyncio.sleep", new_callable=AsyncMock):
        with pytest.raises(MaxRetriesExceededError):
            await service._call_api([{"role": "user", "content": "hi"}])

    assert client.messages.create.call_count == 3


@pytest.mark.asyncio
async def test_identical_prompts_always_reach_the_api(service, client):
    client.messages.create.side_effect = [_api_response("first"), _api_response("second")]
    messages = [{"role": "user", "content": "hi"}]

    first, _ = await service._call_api(messages)
    second, _ = await service._call_api(messages)

    assert (first, second) == ("first", "second")
    assert client.messages.create.call_count == 2
    assert len(service.token_usage_history) == 2


@pytest.mark.asyncio
async def test_close_closes_client(service, client):
    await service.close()
    client.close.assert_awaited_once()


# =============================================================================
# Helpers
# =============================================================================

def test_token_usage_cost():
    usage = TokenUsage(input_tokens=1000, output_tokens=1000)
    cost = usage.calculate_cost("claude-3-5-sonnet-20241022")
    assert cost > 0
    assert usage.estimated_cost == cost
    assert TokenUsage(input_tokens=1000).calculate_cost("unknown-model") == 0.0


def test_backoff_is_capped(service):
    assert 1.0 <= service._calculate_backoff(0) <= 1.1
    assert service._calculate_backoff(10) == 60


@pytest.mark.asyncio
async def test_rate_limiter_records_requests():
    limiter = RateLimiter(max_requests=10, max_tokens=1000)
    await limiter.acquire(100)
    limiter.record_usage(100)
    assert len(limiter._request_timestamps) == 1
    assert limiter._token_usage[0][1] == 100
