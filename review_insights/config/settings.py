"""
Application settings and configuration management.

This module handles all environment variables, API keys, and application
configuration using Pydantic settings management for type safety and validation.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All sensitive values are stored as SecretStr to prevent accidental logging.
    Settings are validated on load and cached for performance.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # API Keys
    anthropic_api_key: SecretStr = Field(..., alias="ANTHROPIC_API_KEY")
    openai_api_key: Optional[SecretStr] = Field(default=None, alias="OPENAI_API_KEY")
    qdrant_api_key: Optional[SecretStr] = Field(default=None, alias="QDRANT_API_KEY")

    # Application Configuration
    app_env: Literal["development", "staging", "production"] = Field(
        default="development",
        alias="APP_ENV"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        alias="LOG_LEVEL"
    )

    # Completion Model Configuration
    claude_model: str = Field(
        default="claude-sonnet-4-20250514",
        alias="CLAUDE_MODEL"
    )
    claude_max_tokens: int = Field(default=4000, alias="CLAUDE_MAX_TOKENS")
    analysis_temperature: float = Field(default=0.1, alias="ANALYSIS_TEMPERATURE")

    # Embedding Configuration
    embedding_model: str = Field(default="text-embedding-3-small", alias="EMBEDDING_MODEL")
    embedding_dimension: int = Field(default=1536, alias="EMBEDDING_DIMENSION")
    embedding_batch_size: int = Field(default=10, ge=1, alias="EMBEDDING_BATCH_SIZE")
    embedding_batch_delay_seconds: float = Field(
        default=0.5, ge=0, alias="EMBEDDING_BATCH_DELAY_SECONDS"
    )

    # Vector Index (QDRANT_URL=":memory:" keeps it in process)
    qdrant_url: Optional[str] = Field(default=None, alias="QDRANT_URL")
    qdrant_path: Path = Field(default=Path("data/qdrant"), alias="QDRANT_PATH")

    # Relational Store
    database_url: str = Field(default="sqlite:///review_insights.db", alias="DATABASE_URL")
    processing_lease_ttl_seconds: int = Field(
        default=3600, gt=0, alias="PROCESSING_LEASE_TTL_SECONDS"
    )

    # Rate Limits
    analysis_pacing_seconds: float = Field(default=15.0, ge=0, alias="ANALYSIS_PACING_SECONDS")
    max_concurrent_requests: int = Field(default=5, alias="MAX_CONCURRENT_REQUESTS")
    request_timeout_seconds: int = Field(default=120, alias="REQUEST_TIMEOUT_SECONDS")
    max_retries: int = Field(default=3, alias="MAX_RETRIES")

    # Persona Images
    persona_images_enabled: bool = Field(default=True, alias="PERSONA_IMAGES_ENABLED")
    persona_image_model: str = Field(default="dall-e-3", alias="PERSONA_IMAGE_MODEL")
    persona_image_dir: Path = Field(
        default=Path("public/images/personas"),
        alias="PERSONA_IMAGE_DIR",
    )

    @field_validator("persona_image_dir", mode="before")
    @classmethod
    def validate_directories(cls, v: str | Path) -> Path:
        """Ensure directories exist."""
        path = Path(v)
        path.mkdir(parents=True, exist_ok=True)
        return path

    @field_validator("anthropic_api_key", mode="before")
    @classmethod
    def validate_anthropic_key(cls, v: str) -> str:
        """Validate Anthropic API key format."""
        if not v or not v.startswith("sk-"):
            raise ValueError("Invalid Anthropic API key format")
        return v

    def has_embedding_provider(self) -> bool:
        """Whether an embedding (and image) provider key is configured."""
        return self.openai_api_key is not None and bool(
            self.openai_api_key.get_secret_value()
        )

    def get_vector_backend(self) -> str:
        """Describe where the vector index lives."""
        if self.qdrant_url == ":memory:":
            return "in-memory"
        if self.qdrant_url:
            return self.qdrant_url
        return f"local ({self.qdrant_path})"


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
