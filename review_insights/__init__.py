"""
Review Insights Engine.

Selects representative customer reviews from a per-tenant vector index and
orchestrates a catalogue of LLM-generated qualitative analyses per product.
"""

__version__ = "1.0.0"
__author__ = "Review Insights Team"

# Lazy imports to avoid circular dependencies
def get_orchestrator():
    """Get the AnalysisOrchestrator class (lazy import)."""
    from review_insights.pipeline.orchestrator import AnalysisOrchestrator
    return AnalysisOrchestrator

__all__ = ["get_orchestrator", "__version__"]
