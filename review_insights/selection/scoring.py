"""
Review scoring functions.

Every factor returns a value on a 0-100 scale; ``composite_score`` combines
them with ``ScoringWeights``. All functions are pure.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Optional, Sequence

from review_insights.selection.profiles import (
    AnalysisProfile,
    LengthBand,
    RatingPolicy,
    ScoringWeights,
)

# (max age in days, score), checked in order
RECENCY_STEPS: tuple[tuple[int, float], ...] = (
    (180, 100.0),
    (360, 80.0),
    (720, 60.0),
    (1095, 40.0),
)
RECENCY_OLDEST = 20.0
RECENCY_UNKNOWN = 50.0

KEYWORD_HIT_SCORE = 20.0


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; 0.0 when either vector has zero norm."""
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def length_score(word_count: int, band: LengthBand) -> float:
    """Peaks at 100 for the ideal length, 50 at either band edge."""
    if word_count < band.min:
        return word_count / band.min * 50
    if word_count > band.max:
        return max(0.0, 100 - (word_count - band.max) / band.max * 50)
    if word_count <= band.ideal:
        if band.ideal == band.min:
            return 100.0
        return 50 + (word_count - band.min) / (band.ideal - band.min) * 50
    if band.max == band.ideal:
        return 100.0
    return 100 - (word_count - band.ideal) / (band.max - band.ideal) * 50


def recency_score(date: Optional[datetime], now: Optional[datetime] = None) -> float:
    if date is None:
        return RECENCY_UNKNOWN

    now = now or datetime.now(timezone.utc)
    if date.tzinfo is None:
        date = date.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    days = (now - date).total_seconds() / 86400
    for max_days, score in RECENCY_STEPS:
        if days <= max_days:
            return score
    return RECENCY_OLDEST


def rating_relevance_score(rating: float, policy: RatingPolicy | str) -> float:
    """How useful a review with this rating is under the type's rating policy."""
    policy = RatingPolicy(policy)
    if policy == RatingPolicy.EXTREME:
        if rating <= 2 or rating >= 4.5:
            return 100.0
        if rating <= 2.5 or rating >= 4:
            return 70.0
        return 40.0
    if policy == RatingPolicy.BALANCED:
        return 80.0
    if rating <= 2 or rating >= 4.5:
        return 90.0
    return 70.0


def keyword_score(text: str, keywords: Sequence[str]) -> float:
    """20 points per keyword found (case-insensitive substring), capped at 100."""
    lowered = text.lower()
    hits = sum(1 for kw in keywords if kw.lower() in lowered)
    return min(hits * KEYWORD_HIT_SCORE, 100.0)


def composite_score(
    similarity: float,
    word_count: int,
    date: Optional[datetime],
    rating: float,
    text: str,
    profile: AnalysisProfile,
    weights: ScoringWeights,
    now: Optional[datetime] = None,
) -> float:
    return (
        weights.similarity * similarity * 100
        + weights.length * length_score(word_count, profile.length_band)
        + weights.recency * recency_score(date, now)
        + weights.rating * rating_relevance_score(rating, profile.rating_policy)
        + weights.keyword * keyword_score(text, profile.keywords)
    )


def rating_bucket(rating: Optional[float]) -> int:
    """Star bucket 1-5; missing ratings count as 3, halves round up."""
    value = math.floor((rating or 3) + 0.5)
    return min(5, max(1, value))


__all__ = [
    "cosine_similarity",
    "length_score",
    "recency_score",
    "rating_relevance_score",
    "keyword_score",
    "composite_score",
    "rating_bucket",
]
