"""
Per-analysis-type payload schemas.

Each schema describes the JSON object the completion model returns for one
analysis type. Schemas are deliberately lenient: every field has a default and
unknown keys are kept, so a partially filled report still validates while a
response missing its top-level key or carrying the wrong shape is rejected.
"""

from __future__ import annotations

from typing import Any, Optional, Type

from pydantic import BaseModel, ConfigDict, Field

from review_insights.models.schemas import AnalysisType


class PayloadModel(BaseModel):
    """Lenient base for model-produced JSON."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


# =============================================================================
# Shared Fragments
# =============================================================================

class Insight(PayloadModel):
    """A quantified theme backed by a customer quote."""

    topic: Optional[str] = None
    theme: Optional[str] = None
    importance: Optional[str] = None
    percentage: Optional[str] = None
    summary: str = ""
    example_quote: Optional[str] = None


class Demographics(PayloadModel):
    age: Optional[str] = None
    education_level: Optional[str] = None
    job_title: Optional[str] = None
    income_range: Optional[str] = None
    living_environment: Optional[str] = None


class Persona(PayloadModel):
    """Buyer persona; ``image_url`` is filled in by image enrichment."""

    persona_name: str = ""
    representation_percentage: Optional[str] = None
    persona_intro: str = ""
    demographics: Optional[Demographics] = None
    psychographics: dict[str, Any] = Field(default_factory=dict)
    goals_motivations: list[str] = Field(default_factory=list)
    pain_points_frustrations: list[str] = Field(default_factory=list)
    buying_behavior: dict[str, Any] = Field(default_factory=dict)
    product_use_behavior: list[str] = Field(default_factory=list)
    day_in_the_life: Optional[str] = None
    image_url: Optional[str] = None


# =============================================================================
# Report Bodies
# =============================================================================

class ProductDescription(PayloadModel):
    summary: str = ""
    attributes: list[str] = Field(default_factory=list)
    variations: list[str] = Field(default_factory=list)


class SentimentAnalysis(PayloadModel):
    customer_likes: list[Insight] = Field(default_factory=list)
    customer_dislikes: list[Insight] = Field(default_factory=list)


class Keyword(PayloadModel):
    word: str
    frequency: int = 0


class VoiceOfCustomer(PayloadModel):
    keywords: list[Keyword] = Field(default_factory=list)


class RatingTheme(PayloadModel):
    theme: str = ""
    frequency: Optional[str] = None


class RatingBreakdown(PayloadModel):
    rating: int
    count: int = 0
    percentage: Optional[str] = None
    top_themes: list[RatingTheme] = Field(default_factory=list)


class RatingAnalysis(PayloadModel):
    ratings: list[RatingBreakdown] = Field(default_factory=list)
    insights: dict[str, Any] = Field(default_factory=dict)


class FourWMatrix(PayloadModel):
    who: list[Insight] = Field(default_factory=list)
    what: list[Insight] = Field(default_factory=list)
    where: list[Insight] = Field(default_factory=list)
    when: list[Insight] = Field(default_factory=list)


class JobToBeDone(Insight):
    job_statement: str = ""


class JTBDAnalysis(PayloadModel):
    functional_jobs: list[JobToBeDone] = Field(default_factory=list)
    emotional_jobs: list[JobToBeDone] = Field(default_factory=list)
    social_jobs: list[JobToBeDone] = Field(default_factory=list)


class Segment(PayloadModel):
    segment: str = ""
    percentage: Optional[str] = None
    description: str = ""
    example_quote: Optional[str] = None
    buyer_persona: Optional[Persona] = None


class STPAnalysis(PayloadModel):
    market_definition: Optional[str] = None
    segmentation: list[Segment] = Field(default_factory=list)
    targeting_strategy: dict[str, Any] = Field(default_factory=dict)
    positioning_strategy: dict[str, Any] = Field(default_factory=dict)
    implementation_recommendations: dict[str, Any] = Field(default_factory=dict)


class SWOTAnalysis(PayloadModel):
    strengths: list[Insight] = Field(default_factory=list)
    weaknesses: list[Insight] = Field(default_factory=list)
    opportunities: list[Insight] = Field(default_factory=list)
    threats: list[Insight] = Field(default_factory=list)


class CustomerJourney(PayloadModel):
    awareness: list[Insight] = Field(default_factory=list)
    consideration: list[Insight] = Field(default_factory=list)
    purchase: list[Insight] = Field(default_factory=list)
    delivery_unboxing: list[Insight] = Field(default_factory=list)
    usage: list[Insight] = Field(default_factory=list)
    post_purchase: list[Insight] = Field(default_factory=list)


class CompetitionAnalysis(PayloadModel):
    comparison_matrix: list[dict[str, Any]] = Field(default_factory=list)
    usps: dict[str, Any] = Field(default_factory=dict)
    pain_points: dict[str, Any] = Field(default_factory=dict)
    customer_segment_analysis: dict[str, Any] = Field(default_factory=dict)
    loyalty_indicators: dict[str, Any] = Field(default_factory=dict)
    price_value_perception: dict[str, Any] = Field(default_factory=dict)


class SmartCompetitionAnalysis(PayloadModel):
    product_attributes: list[dict[str, Any]] = Field(default_factory=list)
    swot_matrix: dict[str, Any] = Field(default_factory=dict)
    segmentation_analysis: dict[str, Any] = Field(default_factory=dict)
    journey_analysis: dict[str, Any] = Field(default_factory=dict)
    executive_summary: Any = None


class StrategicRecommendations(PayloadModel):
    executive_summary: str = ""
    product_strategy: list[dict[str, Any]] = Field(default_factory=list)
    marketing_strategy: list[dict[str, Any]] = Field(default_factory=list)
    customer_experience: list[dict[str, Any]] = Field(default_factory=list)
    competitive_strategy: list[dict[str, Any]] = Field(default_factory=list)


# =============================================================================
# Top-level Payloads (one per analysis type)
# =============================================================================

class ProductDescriptionPayload(PayloadModel):
    product_description: ProductDescription


class SentimentPayload(PayloadModel):
    sentiment_analysis: SentimentAnalysis


class VoiceOfCustomerPayload(PayloadModel):
    voice_of_customer: VoiceOfCustomer


class RatingAnalysisPayload(PayloadModel):
    rating_analysis: RatingAnalysis


class FourWMatrixPayload(PayloadModel):
    four_w_matrix: FourWMatrix


class JTBDPayload(PayloadModel):
    jtbd_analysis: JTBDAnalysis


class STPPayload(PayloadModel):
    stp_analysis: STPAnalysis


class SWOTPayload(PayloadModel):
    swot_analysis: SWOTAnalysis


class CompetitorSWOTPayload(PayloadModel):
    """Strengths/weaknesses-only SWOT used for competitor products."""

    strengths: list[Any] = Field(default_factory=list)
    weaknesses: list[Any] = Field(default_factory=list)


class CustomerJourneyPayload(PayloadModel):
    customer_journey: CustomerJourney


class PersonasPayload(PayloadModel):
    customer_personas: list[Persona] = Field(default_factory=list)


class CompetitionPayload(PayloadModel):
    competition_analysis: CompetitionAnalysis


class SmartCompetitionPayload(PayloadModel):
    smart_competition_analysis: SmartCompetitionAnalysis


class StrategicRecommendationsPayload(PayloadModel):
    strategic_recommendations: StrategicRecommendations


PAYLOAD_SCHEMAS: dict[str, Type[PayloadModel]] = {
    AnalysisType.PRODUCT_DESCRIPTION.value: ProductDescriptionPayload,
    AnalysisType.SENTIMENT.value: SentimentPayload,
    AnalysisType.VOICE_OF_CUSTOMER.value: VoiceOfCustomerPayload,
    AnalysisType.RATING_ANALYSIS.value: RatingAnalysisPayload,
    AnalysisType.FOUR_W_MATRIX.value: FourWMatrixPayload,
    AnalysisType.JTBD.value: JTBDPayload,
    AnalysisType.STP.value: STPPayload,
    AnalysisType.SWOT.value: SWOTPayload,
    AnalysisType.CUSTOMER_JOURNEY.value: CustomerJourneyPayload,
    AnalysisType.PERSONAS.value: PersonasPayload,
    AnalysisType.COMPETITION.value: CompetitionPayload,
    AnalysisType.SMART_COMPETITION.value: SmartCompetitionPayload,
    AnalysisType.STRATEGIC_RECOMMENDATIONS.value: StrategicRecommendationsPayload,
}

_missing = {t.value for t in AnalysisType} - set(PAYLOAD_SCHEMAS)
if _missing:
    raise RuntimeError(f"No payload schema registered for: {sorted(_missing)}")


def payload_schema_for(analysis_type: str) -> Type[PayloadModel]:
    """Look up the payload schema for an analysis type."""
    try:
        return PAYLOAD_SCHEMAS[analysis_type]
    except KeyError:
        raise ValueError(f"Unknown analysis type: {analysis_type}") from None
