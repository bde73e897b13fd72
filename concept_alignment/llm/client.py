"""Ollama clients for the local oracles.

Each oracle task has its own profile: an optional model override and an output
budget. The context window is sized per call from the rendered prompt, so a
scoring call over two short elements does not reserve the window of a full
extraction batch.
"""

from functools import lru_cache
from typing import Literal, Optional

from langchain_ollama import OllamaLLM
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

OracleTask = Literal["extraction", "merge", "scoring"]

# Rough prompt size estimate; Ollama does not expose a tokenizer
CHARS_PER_TOKEN = 4
CONTEXT_STEP = 2048


class TaskProfile(BaseModel):
    """Model and output budget for one oracle task."""

    model_name: Optional[str] = None
    num_predict: int


class LLMSettings(BaseSettings):
    """LLM configuration for the local oracle backend.

    Per-task values can be overridden with nested variables, e.g.
    ``LLM_SCORING__MODEL_NAME=gemma3:latest``.
    """

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    ollama_base_url: str = "http://localhost:11434"
    model_name: str = "gpt-oss:20b"
    fallback_model_name: Optional[str] = "gemma3:latest"  # tried when a model returns nothing
    temperature: float = 0.0
    request_timeout: int = 300
    max_context: int = 32768

    # Extraction returns one entry per concept in the batch, scoring a single verdict
    extraction: TaskProfile = TaskProfile(num_predict=8192)
    merge: TaskProfile = TaskProfile(num_predict=4096)
    scoring: TaskProfile = TaskProfile(num_predict=1024)

    def profile(self, task: OracleTask) -> TaskProfile:
        return getattr(self, task)

    def models_for(self, task: OracleTask) -> list[str]:
        """Models to try for ``task``, in order."""
        primary = self.profile(task).model_name or self.model_name
        models = [primary]
        if self.fallback_model_name and self.fallback_model_name != primary:
            models.append(self.fallback_model_name)
        return models


@lru_cache
def get_llm_settings() -> LLMSettings:
    """Get cached LLM settings."""
    return LLMSettings()


def context_window(prompt_chars: int, num_predict: int, max_context: int) -> int:
    """Smallest multiple of ``CONTEXT_STEP`` tokens that fits prompt and reply, capped at ``max_context``."""
    needed = prompt_chars // CHARS_PER_TOKEN + num_predict
    steps = max(1, -(-needed // CONTEXT_STEP))
    return min(steps * CONTEXT_STEP, max_context)


def create_oracle_llm(
    task: OracleTask,
    model: str,
    prompt_chars: int,
    settings: LLMSettings | None = None,
) -> OllamaLLM:
    """Create the client for one call of an oracle task.

    Args:
        task: Which oracle is calling; selects the output budget.
        model: Model to run, normally one of ``settings.models_for(task)``.
        prompt_chars: Length of the rendered prompt, used to size ``num_ctx``.
        settings: Optional custom settings.
    """
    settings = settings or get_llm_settings()
    num_predict = settings.profile(task).num_predict

    return OllamaLLM(
        model=model,
        base_url=settings.ollama_base_url,
        temperature=settings.temperature,
        timeout=settings.request_timeout,
        num_ctx=context_window(prompt_chars, num_predict, settings.max_context),
        num_predict=num_predict,
        # JSON is recovered from free text in chains._parse_json_response
        streaming=False,
    )
