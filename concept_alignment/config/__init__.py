"""Configuration and prompt templates."""

from .settings import MergeRoundPolicy, Settings, get_settings

__all__ = ["MergeRoundPolicy", "Settings", "get_settings"]
