"""Data models module for the Review Insights Engine."""

from review_insights.models.schemas import (
    # Base Models
    BaseModel,

    # Enums & Catalogue
    AnalysisType,
    AnalysisStatus,
    StepOutcomeKind,
    ErrorType,
    ANALYSIS_CATALOGUE,
    COMPETITOR_DEPENDENT_TYPES,
    SMART_COMPETITION_PREREQUISITES,

    # Review Models
    Review,
    ScoredReview,
    SelectionRequest,

    # Persisted Records
    Competitor,
    Product,
    Analysis,

    # Results
    AnalysisResult,
    CompetitorAnalysisEntry,
    CompetitorAnalysisBundle,
    StepOutcome,
    RunSummary,
    ReprocessResult,
    AnalysisStatusEntry,
    AnalysisStatusReport,

    # Helpers
    brand_namespace,
    expected_types_for,
)
from review_insights.models.payloads import (
    PAYLOAD_SCHEMAS,
    CompetitorSWOTPayload,
    payload_schema_for,
)

__all__ = [
    # Base Models
    "BaseModel",

    # Enums & Catalogue
    "AnalysisType",
    "AnalysisStatus",
    "StepOutcomeKind",
    "ErrorType",
    "ANALYSIS_CATALOGUE",
    "COMPETITOR_DEPENDENT_TYPES",
    "SMART_COMPETITION_PREREQUISITES",

    # Review Models
    "Review",
    "ScoredReview",
    "SelectionRequest",

    # Persisted Records
    "Competitor",
    "Product",
    "Analysis",

    # Results
    "AnalysisResult",
    "CompetitorAnalysisEntry",
    "CompetitorAnalysisBundle",
    "StepOutcome",
    "RunSummary",
    "ReprocessResult",
    "AnalysisStatusEntry",
    "AnalysisStatusReport",

    # Helpers
    "brand_namespace",
    "expected_types_for",

    # Payloads
    "PAYLOAD_SCHEMAS",
    "CompetitorSWOTPayload",
    "payload_schema_for",
]
