"""
Pydantic models and schemas for the Review Insights Engine.

This module defines the records shared by the selector, the executor, the
orchestrator and the persistence gateway.

Models:
    - Review / ScoredReview: review metadata as stored in the vector index
    - SelectionRequest: contract between orchestrator and selector
    - Product / Competitor / Analysis: persisted records
    - AnalysisResult: typed executor outcome
    - StepOutcome / RunSummary / ReprocessResult: orchestration results
    - AnalysisStatusReport: status query surface
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Self

from pydantic import (
    BaseModel as PydanticBaseModel,
    ConfigDict,
    Field,
    field_serializer,
    model_validator,
)


# =============================================================================
# Base Configuration
# =============================================================================

class BaseModel(PydanticBaseModel):
    """Base model with common configuration for all schemas."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=False,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_json(self, **kwargs) -> str:
        """Serialize model to JSON string."""
        return self.model_dump_json(indent=2, **kwargs)

    def to_dict(self, **kwargs) -> dict[str, Any]:
        """Serialize model to dictionary."""
        return self.model_dump(**kwargs)

    @classmethod
    def from_json(cls, json_str: str) -> Self:
        """Deserialize model from JSON string."""
        return cls.model_validate_json(json_str)


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


# =============================================================================
# Enums
# =============================================================================

class AnalysisType(str, Enum):
    """Every qualitative report the orchestrator can produce for a product."""
    PRODUCT_DESCRIPTION = "product_description"
    SENTIMENT = "sentiment"
    VOICE_OF_CUSTOMER = "voice_of_customer"
    RATING_ANALYSIS = "rating_analysis"
    FOUR_W_MATRIX = "four_w_matrix"
    JTBD = "jtbd"
    STP = "stp"
    SWOT = "swot"
    CUSTOMER_JOURNEY = "customer_journey"
    PERSONAS = "personas"
    COMPETITION = "competition"
    SMART_COMPETITION = "smart_competition"
    STRATEGIC_RECOMMENDATIONS = "strategic_recommendations"


# Fixed execution order for a full run
ANALYSIS_CATALOGUE: tuple[AnalysisType, ...] = (
    AnalysisType.PRODUCT_DESCRIPTION,
    AnalysisType.SENTIMENT,
    AnalysisType.VOICE_OF_CUSTOMER,
    AnalysisType.RATING_ANALYSIS,
    AnalysisType.FOUR_W_MATRIX,
    AnalysisType.JTBD,
    AnalysisType.STP,
    AnalysisType.SWOT,
    AnalysisType.CUSTOMER_JOURNEY,
    AnalysisType.PERSONAS,
    AnalysisType.COMPETITION,
    AnalysisType.SMART_COMPETITION,
    AnalysisType.STRATEGIC_RECOMMENDATIONS,
)

# Types that only make sense when the product has competitors
COMPETITOR_DEPENDENT_TYPES: frozenset[str] = frozenset({
    AnalysisType.COMPETITION.value,
    AnalysisType.SMART_COMPETITION.value,
})

# Analyses that must be completed before smart_competition may run
SMART_COMPETITION_PREREQUISITES: tuple[str, ...] = (
    AnalysisType.PRODUCT_DESCRIPTION.value,
    AnalysisType.SWOT.value,
    AnalysisType.STP.value,
    AnalysisType.CUSTOMER_JOURNEY.value,
)


class AnalysisStatus(str, Enum):
    """Lifecycle of a single (product, analysis type) row."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class StepOutcomeKind(str, Enum):
    """What happened to one analysis type during a run."""
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    NO_REVIEWS = "no_reviews"


class ErrorType(str, Enum):
    """Error type classification."""
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND_ERROR = "not_found_error"
    OWNERSHIP_ERROR = "ownership_error"
    CONFLICT_ERROR = "conflict_error"
    ANALYSIS_ERROR = "analysis_error"
    INTERNAL_ERROR = "internal_error"


# =============================================================================
# Tenancy
# =============================================================================

def brand_namespace(user_id: str, brand_id: str) -> str:
    """Vector index partition for one tenant and brand."""
    return f"user_{user_id}_brand_{brand_id}"


# =============================================================================
# Review Models
# =============================================================================

class Review(BaseModel):
    """
    A customer review as stored alongside its embedding.

    Example:
        >>> review = Review(id="r1", product_id="p1", text="Love it", rating=5)
        >>> review.word_count
        2
    """

    id: str = Field(..., description="Vector index point id")
    product_id: str = Field(..., description="Owning product")
    competitor_id: Optional[str] = Field(
        default=None,
        description="Set when the review belongs to a competitor of the product",
    )
    text: str = Field(..., description="Review body")
    rating: Optional[float] = Field(default=None, ge=0.0, le=5.0)
    date: Optional[datetime] = Field(default=None, description="When the review was written")
    word_count: int = Field(default=0, ge=0)

    # Ingestion metadata
    brand_id: Optional[str] = None
    analysis_version: str = Field(default="v1", description="Ingestion version tag")
    upload_date: Optional[datetime] = None
    product_name: Optional[str] = None
    brand_name: Optional[str] = None

    @model_validator(mode="after")
    def fill_word_count(self) -> Self:
        """Derive word count from the text when not supplied."""
        if not self.word_count:
            self.word_count = len(self.text.split())
        return self

    @property
    def effective_rating(self) -> float:
        """Rating used for scoring and bucketing (neutral 3 when missing)."""
        return self.rating or 3.0

    def to_payload(self) -> dict[str, Any]:
        """Metadata stored next to the vector; absent values are omitted."""
        payload = self.model_dump(exclude={"id"}, exclude_none=True, mode="json")
        payload["text"] = self.text[:1000]
        return payload

    @classmethod
    def from_payload(cls, point_id: str, payload: dict[str, Any]) -> "Review":
        """Rebuild a review from a vector index point."""
        return cls.model_validate({**payload, "id": str(point_id)})


class ScoredReview(Review):
    """Review with its ephemeral selection score."""

    score: float = 0.0

    def to_review(self) -> Review:
        """Strip the score before handing the review on."""
        return Review.model_validate(self.model_dump(exclude={"score"}))


class NamespaceStats(BaseModel):
    """Review counts stored in one vector index namespace."""

    namespace: str
    exists: bool = False
    review_count: int = 0
    product_breakdown: dict[str, int] = Field(default_factory=dict)
    version_breakdown: dict[str, int] = Field(default_factory=dict)


class SelectionRequest(BaseModel):
    """What the orchestrator asks the selector for."""

    product_id: str
    analysis_type: str
    target_count: int = Field(default=100, ge=0)
    user_id: str
    brand_id: str
    include_competitors: bool = False
    version_filter: Optional[str] = None
    product_name: Optional[str] = None
    competitor_id: Optional[str] = Field(
        default=None,
        description="Restrict the pool to one competitor's reviews",
    )

    @property
    def namespace(self) -> str:
        return brand_namespace(self.user_id, self.brand_id)


# =============================================================================
# Persisted Records
# =============================================================================

class Competitor(BaseModel):
    """A competing product whose reviews live in the product's namespace."""

    id: str
    name: str
    product_id: Optional[str] = None


class Product(BaseModel):
    """A product and the tenant that owns it."""

    id: str
    name: str
    brand_id: str
    user_id: str = Field(..., description="Owner of the product's brand")
    competitors: list[Competitor] = Field(default_factory=list)
    is_processing: bool = False

    @property
    def has_competitors(self) -> bool:
        return len(self.competitors) > 0

    @property
    def namespace(self) -> str:
        return brand_namespace(self.user_id, self.brand_id)


class Analysis(BaseModel):
    """One analysis row, unique per (product_id, type)."""

    product_id: str
    type: str
    status: AnalysisStatus = AnalysisStatus.PENDING
    data: dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    updated_at: datetime = Field(default_factory=utcnow)

    @field_serializer("updated_at")
    def serialize_datetime(self, value: datetime) -> str:
        """Serialize datetime to ISO format string."""
        if value.tzinfo is None:
            return value.isoformat() + "Z"
        return value.isoformat()

    @property
    def is_completed(self) -> bool:
        return self.status == AnalysisStatus.COMPLETED


# =============================================================================
# Executor & Orchestration Results
# =============================================================================

class AnalysisResult(BaseModel):
    """Outcome of one executor call: completed data or a failure message."""

    type: str
    status: AnalysisStatus
    data: dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def completed(cls, analysis_type: str, data: dict[str, Any]) -> "AnalysisResult":
        return cls(type=analysis_type, status=AnalysisStatus.COMPLETED, data=data)

    @classmethod
    def failed(cls, analysis_type: str, error: str) -> "AnalysisResult":
        return cls(type=analysis_type, status=AnalysisStatus.FAILED, error=error)

    @property
    def succeeded(self) -> bool:
        return self.status == AnalysisStatus.COMPLETED


class CompetitorAnalysisEntry(BaseModel):
    """Sub-analyses gathered for one competitor; missing ones stay None."""

    id: str
    name: str
    product_description: Optional[dict[str, Any]] = None
    swot: Optional[dict[str, Any]] = None
    stp: Optional[dict[str, Any]] = None
    customer_journey: Optional[dict[str, Any]] = None


# competitor_id -> entry
CompetitorAnalysisBundle = dict[str, CompetitorAnalysisEntry]


class StepOutcome(BaseModel):
    """Accumulated result of one catalogue step."""

    type: str
    outcome: StepOutcomeKind
    detail: Optional[str] = None


class RunSummary(BaseModel):
    """Result of a full run over the catalogue."""

    success: bool
    completed_types: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    outcomes: list[StepOutcome] = Field(default_factory=list)


class ReprocessResult(BaseModel):
    """Result of re-running a single analysis type."""

    success: bool
    error: Optional[str] = None


class AnalysisStatusEntry(BaseModel):
    type: str
    status: AnalysisStatus
    error: Optional[str] = None


class AnalysisStatusReport(BaseModel):
    """Progress view of a product's analyses."""

    is_processing: bool
    completed_types: list[str] = Field(default_factory=list)
    failed_types: list[str] = Field(default_factory=list)
    total_expected_types: int
    analyses: list[AnalysisStatusEntry] = Field(default_factory=list)


def expected_types_for(product: Product) -> list[str]:
    """Catalogue types a product is expected to end up with."""
    return [
        t.value for t in ANALYSIS_CATALOGUE
        if product.has_competitors or t.value not in COMPETITOR_DEPENDENT_TYPES
    ]
