"""
Persona portrait generation.

Generates a headshot for each buyer persona with the OpenAI images endpoint
and saves it under the configured persona image directory. When the download
fails the remote URL is kept instead of a local path.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Optional

import httpx
import openai
from openai import AsyncOpenAI

from review_insights.config.settings import Settings, get_settings
from review_insights.utils.logger import get_logger
from review_insights.utils.retry import NetworkError, async_retry

logger = get_logger(__name__)

PORTRAIT_PROMPT = (
    "Professional headshot photo of {description}. Realistic, clean background, "
    "business casual attire, friendly expression, high quality portrait photography style."
)


def persona_description(persona: dict[str, Any]) -> Optional[str]:
    """``"<intro> - <age> <job_title>"``, or None when the persona lacks either part."""
    demographics = persona.get("demographics")
    intro = persona.get("persona_intro")
    if not demographics or not intro:
        return None
    return f"{intro} - {demographics.get('age')} {demographics.get('job_title')}"


class PersonaImageService:
    """Generate and store persona portraits."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[AsyncOpenAI] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        self.model = self.settings.persona_image_model
        self.image_dir = Path(self.settings.persona_image_dir)

        if client is None:
            if not self.settings.has_embedding_provider():
                raise ValueError("OpenAI API key not configured")
            client = AsyncOpenAI(api_key=self.settings.openai_api_key.get_secret_value())
        self.client = client
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(connect=10.0, read=60.0, write=10.0, pool=5.0),
        )

    async def close(self) -> None:
        await self._http.aclose()
        await self.client.close()

    async def generate(self, description: str) -> Optional[str]:
        """Return the remote URL of a generated portrait, or None on failure."""
        try:
            response = await self.client.images.generate(
                model=self.model,
                prompt=PORTRAIT_PROMPT.format(description=description),
                size="1024x1024",
                quality="standard",
                n=1,
            )
        except openai.OpenAIError as e:
            logger.warning("Persona image generation failed", error=str(e))
            return None
        if not response.data:
            return None
        return response.data[0].url

    @async_retry(max_attempts=3, initial_wait=1.0, exceptions=(NetworkError,))
    async def _download(self, url: str) -> bytes:
        try:
            response = await self._http.get(url)
            response.raise_for_status()
        except httpx.TransportError as e:
            raise NetworkError(f"Image download failed: {e}") from e
        return response.content

    async def save_portrait(self, url: str, filename: str) -> str:
        """
        Download ``url`` into the image directory.

        Returns the local path, or ``url`` itself when the download fails.
        """
        try:
            content = await self._download(url)
            self.image_dir.mkdir(parents=True, exist_ok=True)
            path = self.image_dir / filename
            path.write_bytes(content)
        except (NetworkError, httpx.HTTPStatusError, OSError) as e:
            logger.warning("Falling back to remote persona image", filename=filename, error=str(e))
            return url

        logger.info("Saved persona image", path=str(path))
        return str(path)

    async def portrait_for(self, persona: dict[str, Any], filename_stem: str) -> bool:
        """
        Attach a portrait to ``persona`` in place.

        Returns True when ``image_url`` was set.
        """
        description = persona_description(persona)
        if description is None:
            return False

        url = await self.generate(description)
        if not url:
            return False

        timestamp = int(time.time() * 1000)
        persona["image_url"] = await self.save_portrait(url, f"{filename_stem}_{timestamp}.png")
        return True

    async def enrich_personas(self, product_id: str, data: dict[str, Any]) -> bool:
        """Add portraits to ``data["customer_personas"]``; True if anything changed."""
        changed = False
        for i, persona in enumerate(data.get("customer_personas") or []):
            if isinstance(persona, dict):
                changed |= await self.portrait_for(persona, f"persona_{product_id}_{i}")
        return changed

    async def enrich_stp(self, product_id: str, data: dict[str, Any]) -> bool:
        """Add portraits to each STP segment's buyer persona; True if anything changed."""
        changed = False
        segments = (data.get("stp_analysis") or {}).get("segmentation") or []
        for i, segment in enumerate(segments):
            persona = segment.get("buyer_persona") if isinstance(segment, dict) else None
            if isinstance(persona, dict):
                changed |= await self.portrait_for(persona, f"persona_stp_{product_id}_{i}")
        return changed
