import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional, Sequence
from unittest.mock import AsyncMock, MagicMock, patch

from review_insights.models.schemas import (
    AnalysisResult,
    Competitor,
    Product,
    Review,
)
from review_insights.persistence.store import InMemoryAnalysisStore
from review_insights.services.vector_index import MetadataFilter

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


@pytest.fixture
def mock_settings():
    """Create mock settings for testing."""
    settings = MagicMock()
    settings.anthropic_api_key.get_secret_value.return_value = "sk-ant-api-mock-key"
    settings.openai_api_key.get_secret_value.return_value = "sk-openai-mock-key"
    settings.qdrant_api_key = None
    settings.has_embedding_provider.return_value = True

    settings.claude_model = "claude-3-5-sonnet-20241022"
    settings.claude_max_tokens = 4000
    settings.analysis_temperature = 0.1
    settings.request_timeout_seconds = 30
    settings.max_retries = 3
    settings.max_concurrent_requests = 5

    settings.embedding_model = "text-embedding-3-small"
    settings.embedding_dimension = 4
    settings.embedding_batch_size = 10
    settings.embedding_batch_delay_seconds = 0.0

    settings.qdrant_url = ":memory:"
    settings.qdrant_path = Path("data/qdrant")
    settings.database_url = "sqlite://"
    settings.processing_lease_ttl_seconds = 3600
    settings.analysis_pacing_seconds = 0.0

    settings.persona_images_enabled = False
    settings.persona_image_model = "dall-e-3"
    settings.persona_image_dir = Path("outputs/personas")

    settings.log_level = "INFO"
    settings.app_env = "development"

    settings.get_vector_backend.return_value = "in-memory"

    return settings


@pytest.fixture(autouse=True)
def patch_get_settings(mock_settings):
    """Globally patch get_settings to return mock_settings."""
    with patch("review_insights.config.settings.get_settings", return_value=mock_settings):
        # Also patch the modules that import get_settings directly
        with patch("review_insights.pipeline.orchestrator.get_settings", return_value=mock_settings):
            with patch("review_insights.main.get_settings", return_value=mock_settings):
                yield mock_settings


# =============================================================================
# Fake Gateways
# =============================================================================

def _matches(review: Review, metadata_filter: Optional[MetadataFilter]) -> bool:
    if metadata_filter is None:
        return True
    for cond in metadata_filter.conditions:
        value = getattr(review, cond.key, None)
        if cond.op == "eq" and value != cond.value:
            return False
        if cond.op == "range":
            gte, lt = cond.value
            if value is None:
                return False
            if gte is not None and value < gte:
                return False
            if lt is not None and value >= lt:
                return False
        if cond.op == "in" and value not in cond.value:
            return False
        if cond.op == "absent" and value is not None:
            return False
        if cond.op == "exists" and value is None:
            return False
    return True


class FakeVectorIndex:
    """Python-side stand-in for VectorIndex.fetch over namespaced reviews."""

    def __init__(self):
        self.namespaces: dict[str, list[Review]] = {}
        self.fetch_calls: list[tuple[str, MetadataFilter, int]] = []

    def add(self, namespace: str, reviews: Sequence[Review]) -> None:
        self.namespaces.setdefault(namespace, []).extend(reviews)

    async def fetch(self, namespace: str, metadata_filter=None, limit: int = 100) -> list[Review]:
        self.fetch_calls.append((namespace, metadata_filter, limit))
        if limit <= 0:
            return []
        matching = [r for r in self.namespaces.get(namespace, []) if _matches(r, metadata_filter)]
        return matching[:limit]


class FakeEmbedder:
    """Deterministic embeddings: texts mentioning 'quality' point along the query axis."""

    def __init__(self):
        self.embed = AsyncMock(side_effect=self._vector)
        self.embed_many = AsyncMock(side_effect=self._vectors)

    @staticmethod
    async def _vector(text: str) -> list[float]:
        return [1.0, 0.0, 0.0, 0.0] if "quality" in text.lower() else [0.6, 0.8, 0.0, 0.0]

    async def _vectors(self, texts, batch_size=None, batch_delay=None) -> list[list[float]]:
        return [await self._vector(t) for t in texts]


def _make_review(
    index: int,
    rating: Optional[float],
    product_id: str = "prod-1",
    competitor_id: Optional[str] = None,
    text: Optional[str] = None,
    days_old: int = 30,
) -> Review:
    return Review(
        id=f"r-{product_id}-{competitor_id or 'own'}-{index}",
        product_id=product_id,
        competitor_id=competitor_id,
        text=text or f"Review number {index} about the product and its quality in daily use " * 3,
        rating=rating,
        date=NOW - timedelta(days=days_old),
    )


@pytest.fixture
def make_review():
    """Factory for reviews dated relative to NOW."""
    return _make_review


@pytest.fixture
def now():
    return NOW


class FakeClock:
    """Settable clock for lease expiry."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def fake_index():
    return FakeVectorIndex()


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def balanced_reviews():
    """50 reviews, ten per star rating."""
    return [_make_review(i, float(i % 5 + 1)) for i in range(50)]


# =============================================================================
# Products & Store
# =============================================================================

@pytest.fixture
def product():
    return Product(id="prod-1", name="Trail Mug", brand_id="brand-1", user_id="user-1")


@pytest.fixture
def product_with_competitors():
    return Product(
        id="prod-1",
        name="Trail Mug",
        brand_id="brand-1",
        user_id="user-1",
        competitors=[
            Competitor(id="comp-1", name="Summit Cup", product_id="prod-1"),
            Competitor(id="comp-2", name="Ridge Flask", product_id="prod-1"),
        ],
    )


@pytest.fixture
def memory_store():
    return InMemoryAnalysisStore()


def completed_result(analysis_type: str, **data: Any) -> AnalysisResult:
    return AnalysisResult.completed(analysis_type, data or {"summary": f"{analysis_type} done"})


@pytest.fixture
def mock_executor():
    """Executor whose every analysis completes."""
    executor = MagicMock()

    async def execute(analysis_type, reviews, **kwargs):
        return completed_result(analysis_type)

    executor.execute = AsyncMock(side_effect=execute)
    executor.perform_competitor_swot = AsyncMock(
        return_value=AnalysisResult.completed("competitor_swot", {"strengths": [], "weaknesses": []}),
    )
    return executor
