"""
Review selector.

Picks a bounded, representative subset of a product's reviews for one
analysis type in three stages:

    1. Pool: metadata-only retrieval spread evenly across the five star buckets
    2. Score: similarity to the type's topic query plus length, recency,
       rating and keyword factors
    3. Balance: a floor and a ceiling on each star bucket, filled in score order

Example:
    >>> selector = ReviewSelector(index, embedder)
    >>> reviews = await selector.select(SelectionRequest(
    ...     product_id="p1", analysis_type="swot", target_count=100,
    ...     user_id="u1", brand_id="b1",
    ... ))
"""

from __future__ import annotations

import asyncio
import math
from datetime import datetime
from typing import Callable, Optional, Sequence

from review_insights.models.schemas import (
    Review,
    ScoredReview,
    SelectionRequest,
    brand_namespace,
)
from review_insights.selection.profiles import DEFAULT_SELECTION_CONFIG, SelectionConfig
from review_insights.selection.scoring import composite_score, cosine_similarity, rating_bucket
from review_insights.services.embedding_service import EmbeddingService
from review_insights.services.vector_index import MetadataFilter, VectorIndex
from review_insights.utils.logger import get_logger

logger = get_logger(__name__)

STAR_BUCKETS = (1, 2, 3, 4, 5)
COMPETITOR_REVIEW_LIMIT = 50


def balance_by_rating(scored: Sequence[ScoredReview], target: int) -> list[Review]:
    """
    Take reviews in score order while keeping every star bucket between
    ``target // 10`` and ``ceil(target / 3)`` where the pool allows.
    """
    floor = target // 10
    ceiling = math.ceil(target / 3)
    counts = {bucket: 0 for bucket in STAR_BUCKETS}
    chosen: list[int] = []
    taken: set[int] = set()

    for i, review in enumerate(scored):
        bucket = rating_bucket(review.rating)
        if counts[bucket] < floor and len(chosen) < target:
            chosen.append(i)
            taken.add(i)
            counts[bucket] += 1

    for i, review in enumerate(scored):
        if len(chosen) >= target:
            break
        bucket = rating_bucket(review.rating)
        if i not in taken and counts[bucket] < ceiling:
            chosen.append(i)
            taken.add(i)
            counts[bucket] += 1

    return [scored[i].to_review() for i in chosen]


class ReviewSelector:
    """
    Multi-stage review selection over the vector index.

    Attributes:
        index: Vector index gateway
        embedder: Embedding gateway
        config: Profiles and scoring weights
    """

    def __init__(
        self,
        index: VectorIndex,
        embedder: EmbeddingService,
        config: SelectionConfig = DEFAULT_SELECTION_CONFIG,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.index = index
        self.embedder = embedder
        self.config = config
        self._clock = clock

    # =========================================================================
    # Stage 1: Pool
    # =========================================================================

    def _base_filter(self, request: SelectionRequest) -> MetadataFilter:
        metadata_filter = MetadataFilter().eq("product_id", request.product_id)
        if request.competitor_id:
            metadata_filter.eq("competitor_id", request.competitor_id)
        elif not request.include_competitors:
            metadata_filter.absent("competitor_id")
        if request.version_filter:
            metadata_filter.eq("analysis_version", request.version_filter)
        return metadata_filter

    def pool_size_for(self, target_count: int) -> int:
        return min(target_count * self.config.pool_multiplier, self.config.max_pool_size)

    async def fetch_pool(self, request: SelectionRequest) -> list[Review]:
        """Concurrent metadata-only fetch, one query per star bucket."""
        per_bucket = max(self.pool_size_for(request.target_count) // len(STAR_BUCKETS), 1)

        async def fetch_bucket(star: int) -> list[Review]:
            bucket_filter = self._base_filter(request).range(
                "rating", gte=star - 0.5, lt=star + 0.5,
            )
            return await self.index.fetch(request.namespace, bucket_filter, limit=per_bucket)

        results = await asyncio.gather(*(fetch_bucket(star) for star in STAR_BUCKETS))
        return [review for bucket in results for review in bucket]

    # =========================================================================
    # Stage 2: Score
    # =========================================================================

    async def score(
        self,
        reviews: Sequence[Review],
        analysis_type: str,
        product_name: Optional[str] = None,
    ) -> list[ScoredReview]:
        """Score reviews for a type, highest first."""
        if not reviews:
            return []

        profile = self.config.profile_for(analysis_type)
        query_vector = await self.embedder.embed(
            self.config.query_for(analysis_type, product_name)
        )
        review_vectors = await self.embedder.embed_many([r.text for r in reviews])
        now = self._clock() if self._clock else None

        scored = [
            ScoredReview(
                **review.model_dump(),
                score=composite_score(
                    similarity=cosine_similarity(query_vector, vector),
                    word_count=review.word_count,
                    date=review.date,
                    rating=review.effective_rating,
                    text=review.text,
                    profile=profile,
                    weights=self.config.weights,
                    now=now,
                ),
            )
            for review, vector in zip(reviews, review_vectors)
        ]
        scored.sort(key=lambda r: r.score, reverse=True)
        return scored

    # =========================================================================
    # Public API
    # =========================================================================

    async def select(self, request: SelectionRequest) -> list[Review]:
        """
        Select up to ``request.target_count`` reviews for an analysis.

        Returns an empty list when the pool is empty. Gateway errors propagate.
        """
        if request.target_count <= 0:
            return []

        pool = await self.fetch_pool(request)
        if not pool:
            logger.info(
                "Empty review pool",
                product_id=request.product_id,
                analysis_type=request.analysis_type,
                competitor_id=request.competitor_id,
            )
            return []

        scored = await self.score(pool, request.analysis_type, request.product_name)
        selected = balance_by_rating(scored, request.target_count)

        logger.info(
            "Selected reviews",
            product_id=request.product_id,
            analysis_type=request.analysis_type,
            pool_size=len(pool),
            selected=len(selected),
        )
        return selected

    async def fetch_competitor_reviews(
        self,
        user_id: str,
        brand_id: str,
        product_id: str,
        competitor_ids: Sequence[str],
        limit: int = COMPETITOR_REVIEW_LIMIT,
    ) -> list[Review]:
        """Metadata-only fetch of reviews tagged with any of ``competitor_ids``."""
        if not competitor_ids:
            return []
        metadata_filter = (
            MetadataFilter()
            .eq("product_id", product_id)
            .is_in("competitor_id", competitor_ids)
        )
        return await self.index.fetch(
            brand_namespace(user_id, brand_id), metadata_filter, limit=limit,
        )
