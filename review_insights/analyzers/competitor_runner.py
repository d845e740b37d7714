"""
Competitor sub-analysis runner.

For every competitor of a product, runs a reduced battery (product
description, strengths/weaknesses SWOT, STP, customer journey) over that
competitor's reviews and collects the results into a bundle for the
smart competition analysis. Nothing here fails the caller: each sub-analysis
is skipped individually when it finds no reviews, fails or raises.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Sequence

from review_insights.analyzers.analysis_executor import AnalysisExecutor
from review_insights.models.schemas import (
    AnalysisResult,
    CompetitorAnalysisBundle,
    CompetitorAnalysisEntry,
    Product,
    Review,
    SelectionRequest,
)
from review_insights.selection.selector import ReviewSelector
from review_insights.utils.logger import get_logger
from review_insights.utils.retry import ErrorHandler

logger = get_logger(__name__)

# (bundle field, selection profile, review count)
COMPETITOR_BATTERY: tuple[tuple[str, str, int], ...] = (
    ("product_description", "product_description", 50),
    ("swot", "swot", 100),
    ("stp", "stp", 150),
    ("customer_journey", "customer_journey", 120),
)


class CompetitorRunner:
    """Run the competitor battery sequentially, one competitor at a time."""

    def __init__(self, selector: ReviewSelector, executor: AnalysisExecutor):
        self.selector = selector
        self.executor = executor

    def _analyzer_for(self, field: str) -> Callable[[Sequence[Review]], Awaitable[AnalysisResult]]:
        if field == "swot":
            return self.executor.perform_competitor_swot
        return lambda reviews: self.executor.execute(field, reviews)

    async def run(self, product: Product) -> CompetitorAnalysisBundle:
        bundle: CompetitorAnalysisBundle = {}

        logger.info(
            "Starting competitor analyses",
            product_id=product.id,
            competitors=len(product.competitors),
        )

        for competitor in product.competitors:
            entry = CompetitorAnalysisEntry(id=competitor.id, name=competitor.name)

            for field, profile, count in COMPETITOR_BATTERY:
                try:
                    reviews = await self.selector.select(SelectionRequest(
                        product_id=product.id,
                        analysis_type=profile,
                        target_count=count,
                        user_id=product.user_id,
                        brand_id=product.brand_id,
                        product_name=competitor.name,
                        competitor_id=competitor.id,
                    ))
                    if not reviews:
                        logger.info(
                            "No competitor reviews",
                            competitor=competitor.name,
                            analysis_type=field,
                        )
                        continue

                    result = await self._analyzer_for(field)(reviews)
                    if result.succeeded:
                        setattr(entry, field, result.data)
                    else:
                        logger.warning(
                            "Competitor analysis failed",
                            competitor=competitor.name,
                            analysis_type=field,
                            error=result.error,
                        )
                except Exception as e:
                    logger.error(
                        "Competitor analysis error",
                        competitor=competitor.name,
                        analysis_type=field,
                        error=str(e),
                        category=ErrorHandler.categorize_error(e),
                    )

            bundle[competitor.id] = entry

        return bundle
