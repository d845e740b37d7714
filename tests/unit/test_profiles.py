import pytest

from review_insights.models.schemas import ANALYSIS_CATALOGUE
from review_insights.selection.profiles import (
    DEFAULT_PROFILE,
    DEFAULT_SELECTION_CONFIG,
    AnalysisProfile,
    LengthBand,
    RatingPolicy,
    ScoringWeights,
    SelectionConfig,
)


def test_every_catalogue_type_has_a_profile():
    for analysis_type in ANALYSIS_CATALOGUE:
        assert analysis_type.value in DEFAULT_SELECTION_CONFIG.profiles


@pytest.mark.parametrize("analysis_type,count", [
    ("product_description", 50),
    ("sentiment", 100),
    ("voice_of_customer", 200),
    ("four_w_matrix", 80),
    ("jtbd", 100),
    ("stp", 150),
    ("swot", 100),
    ("customer_journey", 120),
    ("personas", 150),
    ("competition", 100),
    ("smart_competition", 200),
    ("strategic_recommendations", 100),
    ("rating_analysis", 150),
])
def test_review_counts(analysis_type, count):
    assert DEFAULT_SELECTION_CONFIG.review_count_for(analysis_type) == count


def test_unknown_type_uses_default_profile():
    config = SelectionConfig()
    assert config.profile_for("mystery") is DEFAULT_PROFILE
    assert config.review_count_for("mystery") == 100


def test_query_is_prefixed_with_product_name():
    config = SelectionConfig()
    query = config.query_for("swot", "Trail Mug")
    assert query.startswith("Trail Mug ")
    assert "strengths" in query
    assert config.query_for("swot") == config.profile_for("swot").query_text


def test_default_weights_sum_to_one():
    weights = ScoringWeights()
    total = weights.similarity + weights.length + weights.recency + weights.rating + weights.keyword
    assert total == pytest.approx(1.0)


def test_profiles_are_overridable():
    config = SelectionConfig(
        profiles={"swot": AnalysisProfile(review_count=7, rating_policy=RatingPolicy.BALANCED)},
        weights=ScoringWeights(similarity=1.0, length=0, recency=0, rating=0, keyword=0),
        max_pool_size=30,
    )
    assert config.review_count_for("swot") == 7
    assert config.review_count_for("sentiment") == 100
    assert config.max_pool_size == 30


@pytest.mark.parametrize("bounds", [(0, 0, 0), (30, 20, 100), (10, 60, 40), (-5, 10, 20)])
def test_length_band_rejects_invalid_bounds(bounds):
    with pytest.raises(ValueError, match="Invalid length band"):
        LengthBand(*bounds)


def test_length_band_accepts_degenerate_band():
    band = LengthBand(0, 0, 10)
    assert (band.min, band.ideal, band.max) == (0, 0, 10)
