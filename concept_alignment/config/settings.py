"""Application settings using Pydantic."""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class MergeRoundPolicy(BaseModel):
    """How permissive one merge round is.

    Rounds run loose to tight: near-duplicates first, then thematic grouping,
    then aggressive consolidation toward a small target count.
    """

    label: str
    criteria: str
    target_count: Optional[int] = None


DEFAULT_ROUND_POLICIES: list[MergeRoundPolicy] = [
    MergeRoundPolicy(
        label="EXACT MATCHING",
        criteria=(
            "Only merge concepts that are:\n"
            "- Nearly identical names (e.g., \"User Auth\" and \"User Authentication\")\n"
            "- Obvious duplicates with minor wording differences\n"
            "- Clearly the same concept described differently"
        ),
    ),
    MergeRoundPolicy(
        label="THEMATIC MATCHING",
        criteria=(
            "Merge concepts that are:\n"
            "- Thematically related (e.g., \"Login Flow\" + \"Session Management\" -> \"Authentication System\")\n"
            "- Part of the same functional domain\n"
            "- Logically connected sub-concepts"
        ),
    ),
    MergeRoundPolicy(
        label="AGGRESSIVE CONSOLIDATION",
        criteria=(
            "Aggressively merge into broad categories:\n"
            "- Combine related domains (e.g., \"Auth\", \"Permissions\", \"Roles\" -> \"Access Control\")\n"
            "- Create high-level concepts\n"
            "- When in doubt, MERGE"
        ),
        target_count=15,
    ),
]


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Batching
    batch_char_budget: int = 50_000

    # Merging
    merge_total_rounds: int = 3
    merge_round_policies: list[MergeRoundPolicy] = DEFAULT_ROUND_POLICIES

    # Scoring
    default_aligned_polarity: float = 0.5

    # Graph
    element_description_limit: int = 2000

    # Oracle transport
    oracle_backend: Literal["http", "local"] = "http"
    oracle_base_url: str = "http://localhost:54321/functions/v1"
    oracle_api_key: Optional[str] = None
    oracle_timeout_seconds: float = 300.0
    extraction_path: str = "/audit-extract-concepts"
    merge_path: str = "/audit-merge-concepts-v2"
    scoring_path: str = "/audit-build-tesseract"
    venn_path: str = "/audit-generate-venn"

    # Storage
    runs_dir: Path = Path("data/runs")
    # Finished runs kept in memory by the API; older ones are served from runs_dir
    retained_runs: int = 16

    # Logging
    log_level: str = "INFO"

    def round_policy(self, round_number: int) -> MergeRoundPolicy:
        """Policy for a 1-based round; rounds past the table reuse the last entry."""
        index = min(max(round_number, 1), len(self.merge_round_policies)) - 1
        return self.merge_round_policies[index]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
