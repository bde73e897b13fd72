"""Typed events of the oracle streaming protocol.

Each block of the stream carries an ``event:`` name and a JSON ``data:`` payload.
The reader maps every recognized event name onto one of these models.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


class ProgressEvent(BaseModel):
    event: Literal["progress"] = "progress"
    message: str = ""
    percent: int = 0
    data: dict[str, Any] = Field(default_factory=dict)


class ItemEvent(BaseModel):
    """Incremental item (a concept or a cell) emitted before the final result."""

    event: Literal["concept", "cell"]
    data: dict[str, Any] = Field(default_factory=dict)


class ResultEvent(BaseModel):
    event: Literal["result"] = "result"
    data: dict[str, Any] = Field(default_factory=dict)


class DoneEvent(BaseModel):
    event: Literal["done"] = "done"
    data: dict[str, Any] = Field(default_factory=dict)


class ErrorEvent(BaseModel):
    event: Literal["error"] = "error"
    message: str = "Unknown stream error"


StreamEvent = Annotated[
    Union[ProgressEvent, ItemEvent, ResultEvent, DoneEvent, ErrorEvent],
    Field(discriminator="event"),
]

TERMINAL_EVENTS = frozenset({"done", "error"})
