"""
Analysis executor.

Runs one analysis type over a set of selected reviews: builds the prompt,
asks Claude for JSON and validates it against the type's payload schema.
Failures are returned as a failed ``AnalysisResult`` rather than raised, so
the orchestrator can record them and move on.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Type

from pydantic import BaseModel

from review_insights.analyzers.prompts import (
    DEFAULT_ANALYSIS_CONFIG,
    AnalysisPromptConfig,
    get_competitor_swot_prompt,
    get_system_prompt,
)
from review_insights.models.payloads import CompetitorSWOTPayload, payload_schema_for
from review_insights.models.schemas import (
    AnalysisResult,
    CompetitorAnalysisBundle,
    Review,
)
from review_insights.services.llm_service import ClaudeService, ClaudeServiceError
from review_insights.utils.logger import get_logger

logger = get_logger(__name__)

COMPETITOR_SWOT = "competitor_swot"


@dataclass
class ExecutorMetrics:
    """Counters collected across executor calls."""
    calls: int = 0
    failures: int = 0
    total_duration_ms: int = 0


def _format_date(review: Review) -> str:
    return review.date.date().isoformat() if review.date else "N/A"


def _format_rating(review: Review) -> str:
    return f"{review.rating:g}" if review.rating is not None else "N/A"


def build_user_prompt(
    analysis_type: str,
    reviews: Sequence[Review],
    competitor_reviews: Optional[Sequence[Review]] = None,
    existing_analyses: Optional[dict[str, Any]] = None,
    competitor_analyses: Optional[CompetitorAnalysisBundle] = None,
) -> str:
    """
    Render the user prompt for an analysis.

    Layout:
        header naming the analysis type
        MAIN PRODUCT REVIEWS (n reviews) with Rating / Date / Text per review
        COMPETITOR REVIEWS block when competitor reviews are given
        EXISTING ANALYSES / COMPETITOR ANALYSES JSON blocks when given
    """
    parts = [f"Analyze the following customer reviews for {analysis_type} analysis:\n"]

    parts.append(f"MAIN PRODUCT REVIEWS ({len(reviews)} reviews):")
    for i, review in enumerate(reviews, 1):
        parts.append(
            f"Review {i}:\n"
            f"Rating: {_format_rating(review)}\n"
            f"Date: {_format_date(review)}\n"
            f"Text: {review.text}\n"
        )

    if competitor_reviews:
        parts.append(f"\nCOMPETITOR REVIEWS ({len(competitor_reviews)} reviews):")
        for i, review in enumerate(competitor_reviews, 1):
            parts.append(
                f"Competitor Review {i}:\n"
                f"Competitor ID: {review.competitor_id}\n"
                f"Rating: {_format_rating(review)}\n"
                f"Text: {review.text}\n"
            )

    if existing_analyses:
        parts.append("\nEXISTING ANALYSES (main product):")
        parts.append(json.dumps(existing_analyses, indent=2, default=str))

    if competitor_analyses:
        parts.append("\nCOMPETITOR ANALYSES:")
        parts.append(json.dumps(
            {cid: entry.model_dump(exclude_none=True) for cid, entry in competitor_analyses.items()},
            indent=2,
            default=str,
        ))

    parts.append(
        f"\nPerform the {analysis_type} analysis based on these reviews. "
        "Ensure all percentages are realistic and based on the actual review content provided."
    )
    return "\n".join(parts)


class AnalysisExecutor:
    """
    Execute analyses through the Claude completion service.

    Example:
        >>> executor = AnalysisExecutor(ClaudeService())
        >>> result = await executor.execute("sentiment", reviews)
        >>> result.status
        'completed'
    """

    def __init__(
        self,
        claude_service: ClaudeService,
        config: AnalysisPromptConfig = DEFAULT_ANALYSIS_CONFIG,
    ):
        self.claude = claude_service
        self.config = config
        self.metrics = ExecutorMetrics()

    async def _run(
        self,
        label: str,
        system: str,
        prompt: str,
        schema: Type[BaseModel],
    ) -> AnalysisResult:
        start = time.time()
        self.metrics.calls += 1
        try:
            payload = await self.claude.complete_json(
                system=system,
                prompt=prompt,
                schema=schema,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except ClaudeServiceError as e:
            self.metrics.failures += 1
            logger.warning("Analysis failed", analysis_type=label, error=str(e))
            return AnalysisResult.failed(label, str(e))
        finally:
            self.metrics.total_duration_ms += int((time.time() - start) * 1000)

        logger.info("Analysis completed", analysis_type=label)
        return AnalysisResult.completed(label, payload.model_dump(mode="json"))

    async def execute(
        self,
        analysis_type: str,
        reviews: Sequence[Review],
        competitor_reviews: Optional[Sequence[Review]] = None,
        existing_analyses: Optional[dict[str, Any]] = None,
        competitor_analyses: Optional[CompetitorAnalysisBundle] = None,
    ) -> AnalysisResult:
        """Run one analysis type; never raises for model or schema failures."""
        try:
            schema = payload_schema_for(analysis_type)
        except ValueError as e:
            return AnalysisResult.failed(analysis_type, str(e))

        logger.info(
            "Starting analysis",
            analysis_type=analysis_type,
            reviews=len(reviews),
            competitor_reviews=len(competitor_reviews or ()),
        )
        prompt = build_user_prompt(
            analysis_type,
            reviews,
            competitor_reviews=competitor_reviews,
            existing_analyses=existing_analyses,
            competitor_analyses=competitor_analyses,
        )
        return await self._run(analysis_type, get_system_prompt(analysis_type), prompt, schema)

    async def perform_competitor_swot(self, reviews: Sequence[Review]) -> AnalysisResult:
        """Strengths/weaknesses-only SWOT over a competitor's reviews."""
        prompt = build_user_prompt("swot", reviews)
        return await self._run(
            COMPETITOR_SWOT, get_competitor_swot_prompt(), prompt, CompetitorSWOTPayload,
        )
