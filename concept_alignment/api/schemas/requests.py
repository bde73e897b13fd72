"""
Request schemas for the API.

These define the expected input structure for API endpoints.
"""

from typing import Optional

from pydantic import BaseModel, Field

from concept_alignment.models import Element


class StartRunRequest(BaseModel):
    """Request to start a pipeline run over two corpora."""
    d1_elements: list[Element] = Field(default_factory=list, description="Requirements corpus")
    d2_elements: list[Element] = Field(default_factory=list, description="Implementation corpus")
    merge_rounds: Optional[int] = Field(None, ge=1, description="Override the configured number of merge rounds")
    batch_char_budget: Optional[int] = Field(None, gt=0, description="Override the extraction batch budget")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "d1_elements": [{"id": "r1", "label": "Login", "content": "Users must log in"}],
                    "d2_elements": [{"id": "f1", "label": "auth.py", "content": "def login(): ..."}],
                }
            ]
        }
    }
