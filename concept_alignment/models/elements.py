"""Input element models."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Element(BaseModel):
    """A single textual element of one corpus (a requirement, a file, a slide...).

    Elements are immutable once handed to the pipeline.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(min_length=1, description="Caller-assigned element identifier")
    label: str = Field(default="", description="Short human-readable title")
    content: str = Field(default="", description="Full text content")
    category: Optional[str] = Field(None, description="Optional caller-defined category")

    @property
    def size(self) -> int:
        """Character size used for batching."""
        return len(self.content or "")
