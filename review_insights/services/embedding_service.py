"""
Embedding gateway.

Turns review texts and topic queries into fixed-length vectors using the
OpenAI embeddings endpoint. Texts are normalised (newlines flattened,
truncated) before being sent, transient failures are retried with tenacity,
and bulk requests are sent in small concurrent batches with a pause between
batches to stay under provider rate limits.

Example:
    >>> service = EmbeddingService()
    >>> vector = await service.embed("battery life is great")
    >>> vectors = await service.embed_many(["a", "b", "c"])
"""

from __future__ import annotations

import asyncio
from typing import Optional, Sequence

import openai
from openai import AsyncOpenAI
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from review_insights.config.settings import Settings, get_settings
from review_insights.utils.logger import get_logger

logger = get_logger(__name__)

# Provider input limit, in characters
MAX_INPUT_CHARS = 8000

_TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
)


class EmbeddingServiceError(Exception):
    """Raised when an embedding cannot be produced."""
    pass


def prepare_text(text: str) -> str:
    """Flatten newlines and clip to the provider input limit."""
    return text.replace("\n", " ")[:MAX_INPUT_CHARS]


class EmbeddingService:
    """
    Async OpenAI embedding client.

    Attributes:
        model: Embedding model name
        batch_size: Texts embedded concurrently per batch
        batch_delay: Seconds to wait between batches
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.settings = settings or get_settings()
        self.model = self.settings.embedding_model
        self.batch_size = self.settings.embedding_batch_size
        self.batch_delay = self.settings.embedding_batch_delay_seconds

        if client is not None:
            self.client = client
        elif self.settings.has_embedding_provider():
            self.client = AsyncOpenAI(
                api_key=self.settings.openai_api_key.get_secret_value(),
                timeout=self.settings.request_timeout_seconds,
            )
        else:
            raise EmbeddingServiceError("OpenAI API key not configured")

        self._request_count = 0

    async def __aenter__(self) -> "EmbeddingService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.close()

    @retry(
        retry=retry_if_exception_type(_TRANSIENT_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _create(self, text: str) -> list[float]:
        response = await self.client.embeddings.create(
            model=self.model,
            input=text,
        )
        self._request_count += 1
        return list(response.data[0].embedding)

    async def embed(self, text: str) -> list[float]:
        """
        Embed a single text.

        Raises:
            EmbeddingServiceError: If the provider rejects the request or
                transient errors persist after retries.
        """
        try:
            return await self._create(prepare_text(text))
        except openai.OpenAIError as e:
            logger.error("Embedding request failed", model=self.model, error=str(e))
            raise EmbeddingServiceError(f"Embedding failed: {e}") from e

    async def embed_many(
        self,
        texts: Sequence[str],
        batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None,
    ) -> list[list[float]]:
        """
        Embed many texts, preserving input order.

        Requests inside a batch run concurrently; batches run one after
        another with ``batch_delay`` seconds between them.
        """
        batch_size = batch_size or self.batch_size
        batch_delay = self.batch_delay if batch_delay is None else batch_delay

        vectors: list[list[float]] = []
        for start in range(0, len(texts), batch_size):
            batch = texts[start:start + batch_size]
            vectors.extend(await asyncio.gather(*(self.embed(t) for t in batch)))

            if start + batch_size < len(texts) and batch_delay > 0:
                await asyncio.sleep(batch_delay)

        logger.debug(
            "Embedded texts",
            count=len(texts),
            batches=(len(texts) + batch_size - 1) // batch_size,
        )
        return vectors

    def get_stats(self) -> dict[str, int | str]:
        return {"model": self.model, "request_count": self._request_count}
