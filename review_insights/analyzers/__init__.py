"""Analyzers module for the Review Insights Engine."""

from review_insights.analyzers.analysis_executor import (
    AnalysisExecutor,
    ExecutorMetrics,
    build_user_prompt,
)
from review_insights.analyzers.competitor_runner import COMPETITOR_BATTERY, CompetitorRunner
from review_insights.analyzers.prompts import (
    DEFAULT_ANALYSIS_CONFIG,
    AnalysisPromptConfig,
    get_competitor_swot_prompt,
    get_system_prompt,
    list_analysis_prompts,
)

__all__ = [
    # Executor
    "AnalysisExecutor",
    "ExecutorMetrics",
    "build_user_prompt",
    # Competitors
    "CompetitorRunner",
    "COMPETITOR_BATTERY",
    # Prompts
    "AnalysisPromptConfig",
    "DEFAULT_ANALYSIS_CONFIG",
    "get_system_prompt",
    "get_competitor_swot_prompt",
    "list_analysis_prompts",
]
