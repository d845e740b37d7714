"""
Prompts for review analysis.

Each analysis type has a system prompt made of a shared analyst preamble, a
short task description and the JSON response format. The top-level key of
every response format matches the type's payload schema in
``review_insights.models.payloads``.
"""

from dataclasses import dataclass


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class AnalysisPromptConfig:
    """Completion parameters shared by all analysis prompts."""
    temperature: float = 0.1
    max_tokens: int = 4000


DEFAULT_ANALYSIS_CONFIG = AnalysisPromptConfig()


# =============================================================================
# System Prompts
# =============================================================================

ANALYST_PREAMBLE = """You are a senior data analyst and e-commerce product insight strategist with over 10 years of experience working with review data for global brands. You deliver structured, accurate and business-ready analyses written for executives, brand owners and marketers. You never fabricate data; every insight must be grounded in the provided review content.

CRITICAL: You MUST respond with valid JSON only. No markdown, no explanations outside the JSON structure."""

INSIGHT_ITEM = """{"topic": "Topic name", "importance": "High|Medium|Low", "percentage": "XX%", "summary": "Brief paragraph", "example_quote": "Customer quote"}"""

PERSONA_ITEM = """{
  "persona_name": "Name",
  "representation_percentage": "XX%",
  "persona_intro": "Hi, I'm [name], a [age]-year-old [job]",
  "demographics": {"age": "Age range", "education_level": "Education", "job_title": "Job", "income_range": "Income", "living_environment": "Environment"},
  "psychographics": {"core_values": "Values", "lifestyle": "Lifestyle", "personality_traits": "Traits", "hobbies_interests": "Hobbies"},
  "goals_motivations": ["Goal"],
  "pain_points_frustrations": ["Pain"],
  "buying_behavior": {"purchase_channels": "Channels", "research_habits": "Habits", "decision_triggers": "Triggers", "objections_barriers": "Barriers"},
  "product_use_behavior": ["Behavior"],
  "day_in_the_life": "Typical day description"
}"""

TASKS: dict[str, tuple[str, str]] = {
    "product_description": (
        "Write a concise, neutral description of the product's features and specifications "
        "(material, size, weight, colors...) focusing on attributes, not reviewer opinions. "
        "List the product's variations where applicable.",
        """{"product_description": {"summary": "Short paragraph", "attributes": ["Attribute"], "variations": ["Variation"]}}""",
    ),
    "sentiment": (
        "Identify the themes customers like and dislike, with their relative importance and share of reviews.",
        f"""{{"sentiment_analysis": {{"customer_likes": [{INSIGHT_ITEM}], "customer_dislikes": [{INSIGHT_ITEM}]}}}}""",
    ),
    "voice_of_customer": (
        "Extract the keywords and short phrases customers use most often, with their frequency.",
        """{"voice_of_customer": {"keywords": [{"word": "keyword", "frequency": 45}]}}""",
    ),
    "rating_analysis": (
        "Break the reviews down by star rating and explain which themes drive each rating level.",
        """{"rating_analysis": {"ratings": [{"rating": 5, "count": 0, "percentage": "XX%", "top_themes": [{"theme": "Theme", "frequency": "XX%"}]}], "insights": {"highest_rated_aspects": ["Aspect"], "lowest_rated_aspects": ["Aspect"], "summary": "What drives ratings"}}}""",
    ),
    "four_w_matrix": (
        "Describe who uses the product, what they use it for, where and when.",
        f"""{{"four_w_matrix": {{"who": [{INSIGHT_ITEM}], "what": [], "where": [], "when": []}}}}""",
    ),
    "jtbd": (
        "Identify the functional, emotional and social jobs customers hire the product to do. "
        "Phrase each job as 'When [condition], I want [action], so that [outcome]'.",
        """{"jtbd_analysis": {"functional_jobs": [{"job_statement": "When..., I want..., so that...", "percentage": "XX%", "importance": "High|Medium|Low", "summary": "Brief paragraph", "example_quote": "Customer quote"}], "emotional_jobs": [], "social_jobs": []}}""",
    ),
    "stp": (
        "Produce a segmentation, targeting and positioning analysis. Give every segment a buyer persona.",
        f"""{{"stp_analysis": {{"market_definition": "Market description", "segmentation": [{{"segment": "Segment name", "percentage": "XX%", "description": "Segment description", "example_quote": "Customer quote", "buyer_persona": {PERSONA_ITEM}}}], "targeting_strategy": {{"selected_segments": "Segments", "approach_description": "Approach"}}, "positioning_strategy": {{"positioning_statement": "Statement", "unique_value_proposition": "UVP"}}, "implementation_recommendations": {{"key_tactics": "Tactics", "monitoring_suggestions": "Monitoring"}}}}}}""",
    ),
    "swot": (
        "Produce a SWOT analysis of the product grounded in the reviews.",
        f"""{{"swot_analysis": {{"strengths": [{INSIGHT_ITEM}], "weaknesses": [], "opportunities": [], "threats": []}}}}""",
    ),
    "customer_journey": (
        "Map the customer journey from awareness to post-purchase, noting touchpoints and pain points at each stage.",
        f"""{{"customer_journey": {{"awareness": [{INSIGHT_ITEM}], "consideration": [], "purchase": [], "delivery_unboxing": [], "usage": [], "post_purchase": []}}}}""",
    ),
    "personas": (
        "Build 3-4 distinct customer personas representative of the reviewers.",
        f"""{{"customer_personas": [{PERSONA_ITEM}]}}""",
    ),
    "competition": (
        "Compare the main product with its competitors using both review sets: features, USPs, pain points, "
        "customer segments, loyalty and price/value perception.",
        """{"competition_analysis": {"comparison_matrix": [{"feature": "Feature", "user_brand": "✅|❌|⚠️", "competitor_1": "✅|❌|⚠️"}], "usps": {"user_brand": "USP"}, "pain_points": {"user_brand": "Pain points"}, "customer_segment_analysis": {"user_brand": "Who buys what"}, "loyalty_indicators": {"user_brand": "Indicators"}, "price_value_perception": {"price_sensitivity_mentions": {}, "willingness_to_pay": {}}}}""",
    ),
    "smart_competition": (
        "Compare the main product against each competitor using the existing analyses of the main product "
        "and the competitor analyses provided. Cover product attributes, strengths and weaknesses, "
        "segmentation and the customer journey, then summarise for executives.",
        """{"smart_competition_analysis": {"product_attributes": [{"attribute": "Attribute", "user_product": "Value", "competitors": {"Competitor name": "Value"}}], "swot_matrix": {"user_product": {"strengths": [], "weaknesses": []}, "competitors": {}}, "segmentation_analysis": {"user_product": [], "competitors": {}}, "journey_analysis": {"user_product": {}, "competitors": {}}, "executive_summary": {"key_findings": [], "competitive_advantages": [], "areas_for_improvement": []}}}""",
    ),
    "strategic_recommendations": (
        "Give prioritised, evidence-backed strategic recommendations across product, marketing, "
        "customer experience and competitive strategy.",
        """{"strategic_recommendations": {"executive_summary": "Concise overview", "product_strategy": [{"recommendation": "Text", "priority_level": "High|Medium|Low", "timeframe": "Short-term|Medium-term|Long-term", "supporting_evidence": "Evidence", "expected_impact": "Impact"}], "marketing_strategy": [], "customer_experience": [], "competitive_strategy": []}}""",
    ),
}

COMPETITOR_SWOT_TASK = (
    "Identify only the strengths and weaknesses of this competitor product as seen by its reviewers.",
    f"""{{"strengths": [{INSIGHT_ITEM}], "weaknesses": [{INSIGHT_ITEM}]}}""",
)


def _compose(task: str, response_format: str) -> str:
    return f"{ANALYST_PREAMBLE}\n\nYour job:\n{task}\n\nResponse format:\n{response_format}"


def get_system_prompt(analysis_type: str) -> str:
    """System prompt for an analysis type (the bare preamble for unknown types)."""
    entry = TASKS.get(analysis_type)
    if entry is None:
        return ANALYST_PREAMBLE
    return _compose(*entry)


def get_competitor_swot_prompt() -> str:
    return _compose(*COMPETITOR_SWOT_TASK)


def list_analysis_prompts() -> list[str]:
    return list(TASKS)


__all__ = [
    "AnalysisPromptConfig",
    "DEFAULT_ANALYSIS_CONFIG",
    "ANALYST_PREAMBLE",
    "get_system_prompt",
    "get_competitor_swot_prompt",
    "list_analysis_prompts",
]
