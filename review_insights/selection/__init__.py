"""Review selection: profiles, scoring and the multi-stage selector."""

from review_insights.selection.profiles import (
    DEFAULT_PROFILES,
    DEFAULT_SELECTION_CONFIG,
    AnalysisProfile,
    LengthBand,
    RatingPolicy,
    ScoringWeights,
    SelectionConfig,
)
from review_insights.selection.selector import ReviewSelector, balance_by_rating

__all__ = [
    "AnalysisProfile",
    "LengthBand",
    "RatingPolicy",
    "ScoringWeights",
    "SelectionConfig",
    "DEFAULT_PROFILES",
    "DEFAULT_SELECTION_CONFIG",
    "ReviewSelector",
    "balance_by_rating",
]
