"""Pipeline module for the Review Insights Engine."""

from review_insights.pipeline.orchestrator import (
    AnalysisOrchestrator,
    PipelineError,
    ProductNotFoundError,
    OwnershipError,
    ProcessingConflictError,
    RunStateDict,
    CATALOGUE_TYPES,
    plan_step,
    missing_prerequisites,
    analyze_product,
)

__all__ = [
    "AnalysisOrchestrator",
    "PipelineError",
    "ProductNotFoundError",
    "OwnershipError",
    "ProcessingConflictError",
    "RunStateDict",
    "CATALOGUE_TYPES",
    "plan_step",
    "missing_prerequisites",
    "analyze_product",
]
