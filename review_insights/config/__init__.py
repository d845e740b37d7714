"""Configuration module for the Review Insights Engine."""

from review_insights.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
