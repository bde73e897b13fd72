"""LLM client and chain configurations."""

from .client import LLMSettings, TaskProfile, context_window, create_oracle_llm, get_llm_settings
from .chains import (
    LLMChainError,
    run_alignment_scoring_chain,
    run_concept_extraction_chain,
    run_concept_merge_chain,
)

__all__ = [
    "LLMSettings",
    "TaskProfile",
    "LLMChainError",
    "context_window",
    "create_oracle_llm",
    "get_llm_settings",
    "run_concept_extraction_chain",
    "run_concept_merge_chain",
    "run_alignment_scoring_chain",
]
