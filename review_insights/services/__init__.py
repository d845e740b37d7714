"""
Services package for the Review Insights Engine.

Gateways to external systems:
    - ClaudeService: schema-validated completions using Anthropic Claude
    - EmbeddingService: OpenAI text embeddings
    - VectorIndex: namespaced Qdrant storage and filtered retrieval
    - PersonaImageService: OpenAI persona portraits
"""

from review_insights.services.embedding_service import (
    EmbeddingService,
    EmbeddingServiceError,
)
from review_insights.services.image_service import PersonaImageService
from review_insights.services.llm_service import (
    ClaudeService,
    ClaudeServiceError,
    MaxRetriesExceededError,
    SchemaValidationError,
    TaskType,
    TokenUsage,
)
from review_insights.services.vector_index import (
    MetadataFilter,
    VectorIndex,
    VectorIndexError,
)

__all__ = [
    # LLM Service
    "ClaudeService",
    "TaskType",
    "TokenUsage",
    "ClaudeServiceError",
    "SchemaValidationError",
    "MaxRetriesExceededError",
    # Embeddings
    "EmbeddingService",
    "EmbeddingServiceError",
    # Vector Index
    "VectorIndex",
    "MetadataFilter",
    "VectorIndexError",
    # Images
    "PersonaImageService",
]
