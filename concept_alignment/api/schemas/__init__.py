"""API schemas package."""

from .requests import StartRunRequest
from .responses import (
    AbortResponse,
    RunResultsResponse,
    RunStatusResponse,
    StartRunResponse,
)

__all__ = [
    # Requests
    "StartRunRequest",
    # Responses
    "StartRunResponse",
    "RunStatusResponse",
    "AbortResponse",
    "RunResultsResponse",
]
