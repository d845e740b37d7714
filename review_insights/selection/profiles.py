"""
Per-analysis-type selection profiles.

A profile tells the selector what a good review looks like for one analysis
type: the topic query it should be similar to, the preferred length band, the
rating policy, the keywords worth rewarding and how many reviews the
orchestrator asks for. ``SelectionConfig`` bundles the profiles with the
scoring weights so tests and deployments can override either.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class RatingPolicy(str, Enum):
    """How strongly a review's star rating matters for a type."""
    EXTREME = "extreme"     # favour clearly positive/negative reviews
    BALANCED = "balanced"   # every rating is equally useful
    DEFAULT = "default"


@dataclass(frozen=True)
class LengthBand:
    """Preferred review length in words."""
    min: int
    ideal: int
    max: int

    def __post_init__(self):
        if not 0 <= self.min <= self.ideal <= self.max or self.max <= 0:
            raise ValueError(
                f"Invalid length band ({self.min}, {self.ideal}, {self.max}): "
                "expected 0 <= min <= ideal <= max and max > 0"
            )


@dataclass(frozen=True)
class ScoringWeights:
    """Weights of the composite review score; each factor is on a 0-100 scale."""
    similarity: float = 0.4
    length: float = 0.2
    recency: float = 0.1
    rating: float = 0.2
    keyword: float = 0.1


@dataclass(frozen=True)
class AnalysisProfile:
    """Selection preferences for one analysis type."""
    query_text: str = "general product review analysis"
    length_band: LengthBand = LengthBand(20, 60, 150)
    rating_policy: RatingPolicy = RatingPolicy.DEFAULT
    keywords: tuple[str, ...] = ()
    review_count: int = 100


DEFAULT_PROFILE = AnalysisProfile()


DEFAULT_PROFILES: dict[str, AnalysisProfile] = {
    "product_description": AnalysisProfile(
        query_text="product features specifications attributes characteristics description quality materials components",
        length_band=LengthBand(15, 40, 100),
        review_count=50,
    ),
    "sentiment": AnalysisProfile(
        query_text="customer satisfaction likes dislikes positive negative feedback opinion emotions feelings",
        length_band=LengthBand(20, 50, 150),
        rating_policy=RatingPolicy.EXTREME,
        keywords=("love", "hate", "excellent", "terrible", "amazing", "awful", "perfect", "horrible"),
        review_count=100,
    ),
    "voice_of_customer": AnalysisProfile(
        query_text="keywords frequently mentioned terms common phrases customer language vocabulary expressions",
        length_band=LengthBand(10, 40, 100),
        review_count=200,
    ),
    "rating_analysis": AnalysisProfile(review_count=150),
    "four_w_matrix": AnalysisProfile(
        query_text="who uses what for where when buying occasion purpose location timing context situation environment",
        length_band=LengthBand(20, 60, 150),
        rating_policy=RatingPolicy.BALANCED,
        keywords=("use it for", "when I", "where I", "because I", "during", "at home", "at work"),
        review_count=80,
    ),
    "jtbd": AnalysisProfile(
        query_text="job to be done functional emotional social needs goals outcomes tasks problems solutions hiring firing",
        length_band=LengthBand(30, 100, 300),
        keywords=("helps me", "allows me", "enables", "so that I", "need to", "want to", "trying to"),
        review_count=100,
    ),
    "stp": AnalysisProfile(
        query_text="market segmentation targeting positioning customer segments demographics psychographics behaviors",
        length_band=LengthBand(25, 70, 200),
        rating_policy=RatingPolicy.BALANCED,
        review_count=150,
    ),
    "swot": AnalysisProfile(
        query_text="strengths weaknesses opportunities threats competitive advantages challenges problems benefits drawbacks",
        length_band=LengthBand(40, 100, 250),
        rating_policy=RatingPolicy.EXTREME,
        review_count=100,
    ),
    "customer_journey": AnalysisProfile(
        query_text="awareness consideration purchase delivery usage experience touchpoints pain points satisfaction stages",
        length_band=LengthBand(40, 120, 300),
        review_count=120,
    ),
    "personas": AnalysisProfile(
        query_text="customer profile demographics age occupation lifestyle buyer persona who uses identity characteristics",
        length_band=LengthBand(30, 80, 200),
        rating_policy=RatingPolicy.BALANCED,
        keywords=("I am", "my age", "my job", "lifestyle", "daily", "routine", "prefer", "always"),
        review_count=150,
    ),
    "competition": AnalysisProfile(
        query_text="competitor comparison features benefits advantages disadvantages versus alternative better worse",
        length_band=LengthBand(30, 80, 200),
        keywords=("better than", "worse than", "compared to", "alternative", "switched from", "instead of"),
        review_count=100,
    ),
    "smart_competition": AnalysisProfile(review_count=200),
    "strategic_recommendations": AnalysisProfile(
        query_text="recommendations strategy improvement opportunities growth suggestions enhancement future",
        length_band=LengthBand(30, 80, 200),
        rating_policy=RatingPolicy.EXTREME,
        review_count=100,
    ),
}


@dataclass(frozen=True)
class SelectionConfig:
    """
    Injectable selection configuration.

    Attributes:
        profiles: Per-type profiles; unknown types fall back to ``default_profile``
        weights: Composite score weights
        max_pool_size: Upper bound on the candidate pool
        pool_multiplier: Pool size as a multiple of the target count
    """
    profiles: dict[str, AnalysisProfile] = field(default_factory=lambda: dict(DEFAULT_PROFILES))
    default_profile: AnalysisProfile = DEFAULT_PROFILE
    weights: ScoringWeights = ScoringWeights()
    max_pool_size: int = 500
    pool_multiplier: int = 3

    def profile_for(self, analysis_type: str) -> AnalysisProfile:
        return self.profiles.get(analysis_type, self.default_profile)

    def review_count_for(self, analysis_type: str) -> int:
        return self.profile_for(analysis_type).review_count

    def query_for(self, analysis_type: str, product_name: Optional[str] = None) -> str:
        """Topic query for a type, prefixed with the product name when known."""
        query = self.profile_for(analysis_type).query_text
        if product_name:
            return f"{product_name} {query}"
        return query


DEFAULT_SELECTION_CONFIG = SelectionConfig()
