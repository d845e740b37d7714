"""
Vector index gateway backed by Qdrant.

Every tenant/brand partition (``user_<u>_brand_<b>``) maps to one Qdrant
collection, created lazily on first write. Reviews are stored as points whose
payload is the review metadata and whose id is derived from the review
content, so ingesting the same file twice overwrites instead of duplicating.
Reads come in two flavours:

    - ``fetch``: metadata-only filtered retrieval (scroll, no vector)
    - ``query``: filtered top-K similarity search

Maintenance helpers cover per-version reads, deleting a product's reviews
and per-namespace counts.

Filters are expressed with ``MetadataFilter`` and translated to Qdrant
conditions, so callers never import qdrant models directly.
"""

from __future__ import annotations

import uuid
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError
from qdrant_client import AsyncQdrantClient, models
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse

from review_insights.config.settings import Settings, get_settings
from review_insights.models.schemas import NamespaceStats, Review
from review_insights.services.embedding_service import EmbeddingService
from review_insights.utils.logger import get_logger
from review_insights.utils.retry import CircuitBreaker, ServiceUnavailableError

logger = get_logger(__name__)

# Ingestion batching
INGEST_BATCH_SIZE = 10
INGEST_BATCH_DELAY_SECONDS = 1.0

HISTORICAL_LIMIT = 500
STATS_PAGE_SIZE = 256

REVIEW_ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_DNS, "review-insights")

_QDRANT_ERRORS = (UnexpectedResponse, ResponseHandlingException, ServiceUnavailableError)


class VectorIndexError(Exception):
    """Raised when the vector index cannot serve a request."""
    pass


# =============================================================================
# Filters
# =============================================================================

@dataclass(frozen=True)
class Condition:
    """One metadata predicate: ``eq``, ``range``, ``in``, ``exists`` or ``absent``."""
    key: str
    op: str
    value: Any = None


@dataclass
class MetadataFilter:
    """
    Conjunction of metadata predicates.

    Example:
        >>> f = MetadataFilter().eq("product_id", "p1").absent("competitor_id")
        >>> f.range("rating", gte=3.5, lt=4.5).to_qdrant()
    """

    conditions: list[Condition] = field(default_factory=list)

    def eq(self, key: str, value: Any) -> "MetadataFilter":
        self.conditions.append(Condition(key, "eq", value))
        return self

    def range(
        self,
        key: str,
        gte: Optional[float] = None,
        lt: Optional[float] = None,
    ) -> "MetadataFilter":
        self.conditions.append(Condition(key, "range", (gte, lt)))
        return self

    def is_in(self, key: str, values: Sequence[Any]) -> "MetadataFilter":
        self.conditions.append(Condition(key, "in", list(values)))
        return self

    def exists(self, key: str) -> "MetadataFilter":
        self.conditions.append(Condition(key, "exists"))
        return self

    def absent(self, key: str) -> "MetadataFilter":
        self.conditions.append(Condition(key, "absent"))
        return self

    def to_qdrant(self) -> Optional[models.Filter]:
        """Translate to a Qdrant filter (``None`` when there are no conditions)."""
        if not self.conditions:
            return None

        must: list[Any] = []
        must_not: list[Any] = []
        for cond in self.conditions:
            if cond.op == "eq":
                must.append(models.FieldCondition(
                    key=cond.key, match=models.MatchValue(value=cond.value),
                ))
            elif cond.op == "range":
                gte, lt = cond.value
                must.append(models.FieldCondition(
                    key=cond.key, range=models.Range(gte=gte, lt=lt),
                ))
            elif cond.op == "in":
                must.append(models.FieldCondition(
                    key=cond.key, match=models.MatchAny(any=cond.value),
                ))
            elif cond.op == "absent":
                must.append(models.IsEmptyCondition(
                    is_empty=models.PayloadField(key=cond.key),
                ))
            elif cond.op == "exists":
                must_not.append(models.IsEmptyCondition(
                    is_empty=models.PayloadField(key=cond.key),
                ))
            else:
                raise ValueError(f"Unsupported filter operator: {cond.op}")

        return models.Filter(must=must or None, must_not=must_not or None)


# =============================================================================
# Index Gateway
# =============================================================================

class VectorIndex:
    """
    Namespaced Qdrant gateway.

    All client calls go through a circuit breaker; a missing collection reads
    as empty.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[AsyncQdrantClient] = None,
    ):
        self.settings = settings or get_settings()
        self.dimension = self.settings.embedding_dimension

        if client is not None:
            self.client = client
        elif self.settings.qdrant_url == ":memory:":
            self.client = AsyncQdrantClient(location=":memory:")
        elif self.settings.qdrant_url:
            api_key = self.settings.qdrant_api_key
            self.client = AsyncQdrantClient(
                url=self.settings.qdrant_url,
                api_key=api_key.get_secret_value() if api_key else None,
                timeout=self.settings.request_timeout_seconds,
            )
        else:
            # Embedded on-disk storage shared by successive CLI processes
            self.client = AsyncQdrantClient(path=str(self.settings.qdrant_path))

        self._breaker = CircuitBreaker(
            failure_threshold=5, recovery_timeout=30, name="qdrant",
        )
        self._known_collections: set[str] = set()

    async def close(self) -> None:
        await self.client.close()

    async def _call(self, func, *args, **kwargs):
        try:
            return await self._breaker.call(func, *args, **kwargs)
        except _QDRANT_ERRORS as e:
            logger.error("Vector index request failed", error=str(e))
            raise VectorIndexError(f"Vector index request failed: {e}") from e

    async def _has_collection(self, namespace: str) -> bool:
        if namespace in self._known_collections:
            return True
        exists = await self._call(self.client.collection_exists, namespace)
        if exists:
            self._known_collections.add(namespace)
        return exists

    async def ensure_namespace(self, namespace: str) -> None:
        """Create the namespace's collection if it does not exist yet."""
        if await self._has_collection(namespace):
            return
        await self._call(
            self.client.create_collection,
            collection_name=namespace,
            vectors_config=models.VectorParams(
                size=self.dimension,
                distance=models.Distance.COSINE,
            ),
        )
        self._known_collections.add(namespace)
        logger.info("Created vector namespace", namespace=namespace)

    @staticmethod
    def _to_reviews(records: Sequence[Any]) -> list[Review]:
        reviews = []
        for record in records:
            try:
                reviews.append(Review.from_payload(record.id, record.payload or {}))
            except PydanticValidationError as e:
                logger.warning("Skipping malformed review point", point_id=str(record.id), error=str(e))
        return reviews

    async def upsert(
        self,
        namespace: str,
        points: Sequence[tuple[str, list[float], dict[str, Any]]],
    ) -> int:
        """Upsert ``(id, vector, payload)`` triples into a namespace."""
        if not points:
            return 0
        await self.ensure_namespace(namespace)
        await self._call(
            self.client.upsert,
            collection_name=namespace,
            points=[
                models.PointStruct(id=point_id, vector=vector, payload=payload)
                for point_id, vector, payload in points
            ],
        )
        return len(points)

    async def fetch(
        self,
        namespace: str,
        metadata_filter: Optional[MetadataFilter] = None,
        limit: int = 100,
    ) -> list[Review]:
        """Metadata-only retrieval of up to ``limit`` reviews."""
        if limit <= 0 or not await self._has_collection(namespace):
            return []
        records, _ = await self._call(
            self.client.scroll,
            collection_name=namespace,
            scroll_filter=metadata_filter.to_qdrant() if metadata_filter else None,
            limit=limit,
            with_payload=True,
            with_vectors=False,
        )
        return self._to_reviews(records)

    async def query(
        self,
        namespace: str,
        vector: list[float],
        metadata_filter: Optional[MetadataFilter] = None,
        limit: int = 10,
    ) -> list[tuple[Review, float]]:
        """Top-K similarity search returning ``(review, similarity)`` pairs."""
        if limit <= 0 or not await self._has_collection(namespace):
            return []
        response = await self._call(
            self.client.query_points,
            collection_name=namespace,
            query=vector,
            query_filter=metadata_filter.to_qdrant() if metadata_filter else None,
            limit=limit,
            with_payload=True,
        )
        reviews = self._to_reviews(response.points)
        scores = {str(p.id): p.score for p in response.points}
        return [(r, scores.get(r.id, 0.0)) for r in reviews]

    async def store_reviews(
        self,
        namespace: str,
        reviews: Sequence[Review],
        embedder: EmbeddingService,
    ) -> list[Review]:
        """
        Embed and store reviews under content-derived point ids.

        Identical reviews collapse into one point, both within ``reviews``
        and across repeated ingestions. Returns the stored reviews carrying
        their point ids.
        """
        unique: dict[str, Review] = {}
        for review in reviews:
            point_id = review_point_id(review)
            unique.setdefault(point_id, review.model_copy(update={"id": point_id}))
        stored = list(unique.values())
        if not stored:
            return []

        vectors = await embedder.embed_many(
            [r.text for r in stored],
            batch_size=INGEST_BATCH_SIZE,
            batch_delay=INGEST_BATCH_DELAY_SECONDS,
        )
        await self.upsert(
            namespace,
            [(r.id, v, r.to_payload()) for r, v in zip(stored, vectors)],
        )

        logger.info(
            "Stored reviews",
            namespace=namespace,
            count=len(stored),
            duplicates=len(reviews) - len(stored),
        )
        return stored

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def count(
        self,
        namespace: str,
        metadata_filter: Optional[MetadataFilter] = None,
    ) -> int:
        """Exact number of points matching ``metadata_filter``."""
        if not await self._has_collection(namespace):
            return 0
        result = await self._call(
            self.client.count,
            collection_name=namespace,
            count_filter=metadata_filter.to_qdrant() if metadata_filter else None,
            exact=True,
        )
        return result.count

    async def delete_product_reviews(self, namespace: str, product_id: str) -> int:
        """
        Delete every review of a product, competitor reviews included.

        Returns:
            Number of deleted reviews
        """
        metadata_filter = MetadataFilter().eq("product_id", product_id)
        deleted = await self.count(namespace, metadata_filter)
        if deleted:
            await self._call(
                self.client.delete,
                collection_name=namespace,
                points_selector=models.FilterSelector(filter=metadata_filter.to_qdrant()),
            )
        logger.info("Deleted product reviews", namespace=namespace, product_id=product_id, count=deleted)
        return deleted

    async def get_historical_reviews(
        self,
        namespace: str,
        product_id: str,
        versions: Sequence[str],
        limit: int = HISTORICAL_LIMIT,
    ) -> dict[str, list[Review]]:
        """Reviews of a product grouped by ingestion version tag."""
        results: dict[str, list[Review]] = {}
        for version in versions:
            results[version] = await self.fetch(
                namespace,
                MetadataFilter().eq("product_id", product_id).eq("analysis_version", version),
                limit=limit,
            )
        return results

    async def namespace_stats(self, namespace: str) -> NamespaceStats:
        """Review counts per product and per ingestion version."""
        if not await self._has_collection(namespace):
            return NamespaceStats(namespace=namespace)

        products: Counter[str] = Counter()
        versions: Counter[str] = Counter()
        offset = None
        while True:
            records, offset = await self._call(
                self.client.scroll,
                collection_name=namespace,
                limit=STATS_PAGE_SIZE,
                offset=offset,
                with_payload=["product_id", "analysis_version"],
                with_vectors=False,
            )
            for record in records:
                payload = record.payload or {}
                products[payload.get("product_id", "unknown")] += 1
                versions[payload.get("analysis_version", "unknown")] += 1
            if offset is None:
                break

        return NamespaceStats(
            namespace=namespace,
            exists=True,
            review_count=sum(products.values()),
            product_breakdown=dict(products),
            version_breakdown=dict(versions),
        )


def review_point_id(review: Review) -> str:
    """Stable point id derived from what identifies a review."""
    key = "|".join([
        review.product_id,
        review.competitor_id or "",
        review.analysis_version,
        review.date.isoformat() if review.date else "",
        "" if review.rating is None else str(review.rating),
        review.text,
    ])
    return str(uuid.uuid5(REVIEW_ID_NAMESPACE, key))
