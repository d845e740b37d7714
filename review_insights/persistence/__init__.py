"""Persistence gateway: product records, processing lease and analysis rows."""

from review_insights.persistence.sql_store import SQLAnalysisStore
from review_insights.persistence.store import AnalysisStore, InMemoryAnalysisStore

__all__ = [
    "AnalysisStore",
    "InMemoryAnalysisStore",
    "SQLAnalysisStore",
]
