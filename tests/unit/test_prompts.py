import pytest

from review_insights.analyzers.prompts import (
    ANALYST_PREAMBLE,
    DEFAULT_ANALYSIS_CONFIG,
    get_competitor_swot_prompt,
    get_system_prompt,
    list_analysis_prompts,
)
from review_insights.models.schemas import ANALYSIS_CATALOGUE


def test_every_catalogue_type_has_a_prompt():
    assert list_analysis_prompts() == [t.value for t in ANALYSIS_CATALOGUE]


@pytest.mark.parametrize("analysis_type,key", [
    ("product_description", "product_description"),
    ("sentiment", "sentiment_analysis"),
    ("voice_of_customer", "voice_of_customer"),
    ("rating_analysis", "rating_analysis"),
    ("four_w_matrix", "four_w_matrix"),
    ("jtbd", "jtbd_analysis"),
    ("stp", "stp_analysis"),
    ("swot", "swot_analysis"),
    ("customer_journey", "customer_journey"),
    ("personas", "customer_personas"),
    ("competition", "competition_analysis"),
    ("smart_competition", "smart_competition_analysis"),
    ("strategic_recommendations", "strategic_recommendations"),
])
def test_system_prompt_names_response_key(analysis_type, key):
    prompt = get_system_prompt(analysis_type)
    assert prompt.startswith(ANALYST_PREAMBLE)
    assert "Response format:" in prompt
    assert key in prompt


def test_unknown_type_gets_preamble_only():
    assert get_system_prompt("unknown") == ANALYST_PREAMBLE


def test_competitor_swot_prompt_is_strengths_and_weaknesses_only():
    prompt = get_competitor_swot_prompt()
    assert '"strengths"' in prompt
    assert '"weaknesses"' in prompt
    assert "opportunities" not in prompt


def test_default_config():
    assert DEFAULT_ANALYSIS_CONFIG.temperature == 0.1
    assert DEFAULT_ANALYSIS_CONFIG.max_tokens == 4000
