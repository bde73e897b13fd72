"""LangChain chains backing the local oracles."""

import json
import re

import structlog
from langchain_core.output_parsers import JsonOutputParser, StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from tenacity import retry, stop_after_attempt, wait_exponential

from concept_alignment.config.prompts import (
    ALIGNMENT_SCORING_SYSTEM_PROMPT,
    ALIGNMENT_SCORING_USER_PROMPT,
    CONCEPT_EXTRACTION_SYSTEM_PROMPT,
    CONCEPT_EXTRACTION_USER_PROMPT,
    CONCEPT_MERGE_SYSTEM_PROMPT,
    CONCEPT_MERGE_USER_PROMPT,
)
from concept_alignment.llm.client import OracleTask, create_oracle_llm, get_llm_settings

logger = structlog.get_logger(__name__)


class LLMChainError(Exception):
    """Error during LLM chain execution."""


_DECODER = json.JSONDecoder()
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


def _normalize_llm_json(text: str) -> str:
    """Drop BOM/zero-width characters and trailing commas before a closing bracket."""
    return _TRAILING_COMMA.sub(r"\1", text.strip("\ufeff\u200b\u200c\u200d"))


def _first_json_object(text: str) -> dict | None:
    """Decode the first ``{`` in ``text`` that starts a complete JSON object.

    Preamble and trailing chatter are ignored; braces inside strings are handled
    by the decoder itself.
    """
    start = text.find("{")
    while start != -1:
        try:
            parsed, _ = _DECODER.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        return parsed
    return None


def _invoke_task(task: OracleTask, prompt: ChatPromptTemplate, variables: dict) -> tuple[str, str]:
    """Run ``prompt`` for an oracle task, moving to the next model on an empty reply.

    Returns:
        Tuple of (response_text, model_used).

    Raises:
        LLMChainError: If every model returns an empty response.
    """
    settings = get_llm_settings()
    prompt_chars = len(prompt.format(**variables))
    models = settings.models_for(task)

    for model in models:
        chain = prompt | create_oracle_llm(task, model, prompt_chars, settings) | StrOutputParser()
        response = chain.invoke(variables)
        if response and response.strip():
            logger.debug("llm_response", task=task, model=model, length=len(response), prompt_chars=prompt_chars)
            return response, model
        logger.warning("llm_empty_response", task=task, model=model)

    raise LLMChainError(f"Empty {task} response from: {', '.join(models)}")


def _parse_json_response(response: str) -> dict:
    """Parse a JSON object out of a raw LLM response.

    Tries a fenced code block first, then the whole text, then the first
    decodable object inside it.

    Raises:
        LLMChainError: If no JSON object can be recovered.
    """
    if not response or not response.strip():
        raise LLMChainError("Empty response from LLM")

    text = response.strip()
    match = _FENCED_BLOCK.search(text)
    if match and match.group(1).strip().startswith("{"):
        text = match.group(1).strip()
    text = _normalize_llm_json(text)

    try:
        parsed = json.loads(text)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError as e:
        logger.debug("direct_parse_failed", error=str(e))

    parsed = _first_json_object(text)
    if parsed is not None:
        return parsed

    logger.error("json_parse_error", response_preview=text[:300])
    raise LLMChainError(f"Failed to parse LLM JSON response. Response preview: {text[:150]}")


def _parse_result(response: str) -> dict:
    # JsonOutputParser first, manual recovery second
    try:
        result = JsonOutputParser().parse(response)
        if isinstance(result, dict):
            return result
    except Exception as e:
        logger.debug("json_parser_failed", error=str(e))
    return _parse_json_response(response)


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=30),
)
def run_concept_extraction_chain(dataset_label: str, elements_text: str, element_count: int) -> dict:
    """Group one batch of elements into concepts.

    Returns:
        Dict with a ``concepts`` list.
    """
    prompt = ChatPromptTemplate.from_messages([
        ("system", CONCEPT_EXTRACTION_SYSTEM_PROMPT),
        ("human", CONCEPT_EXTRACTION_USER_PROMPT),
    ])

    logger.debug("running_concept_extraction", dataset=dataset_label, elements=element_count)

    response, model_used = _invoke_task(
        "extraction",
        prompt,
        {
            "dataset_label": dataset_label,
            "elements_text": elements_text,
            "element_count": element_count,
        },
    )
    result = _parse_result(response)

    logger.debug(
        "concept_extraction_complete",
        model_used=model_used,
        concepts_found=len(result.get("concepts", [])),
    )
    return result


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=30),
)
def run_concept_merge_chain(
    concepts_text: str,
    concept_count: int,
    round_number: int,
    total_rounds: int,
    round_label: str,
    criteria: str,
    target_count: int | None = None,
) -> dict:
    """Propose merge groups for one round.

    Returns:
        Dict with a ``merges`` list.
    """
    prompt = ChatPromptTemplate.from_messages([
        ("system", CONCEPT_MERGE_SYSTEM_PROMPT),
        ("human", CONCEPT_MERGE_USER_PROMPT),
    ])

    target_hint = f"- Aim for roughly {target_count} concepts in total" if target_count else ""

    response, model_used = _invoke_task(
        "merge",
        prompt,
        {
            "round": round_number,
            "total_rounds": total_rounds,
            "round_label": round_label,
            "criteria": criteria,
            "target_hint": target_hint,
            "concept_count": concept_count,
            "concepts_text": concepts_text,
        },
    )
    result = _parse_result(response)

    logger.debug(
        "concept_merge_complete",
        round=round_number,
        model_used=model_used,
        merges_found=len(result.get("merges", [])),
    )
    return result


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=30),
)
def run_alignment_scoring_chain(
    concept_label: str,
    concept_description: str,
    d1_text: str,
    d1_count: int,
    d2_text: str,
    d2_count: int,
) -> dict:
    """Score how well the D2 side of one concept implements its D1 side.

    Returns:
        Dict with ``polarity`` and ``rationale``.
    """
    prompt = ChatPromptTemplate.from_messages([
        ("system", ALIGNMENT_SCORING_SYSTEM_PROMPT),
        ("human", ALIGNMENT_SCORING_USER_PROMPT),
    ])

    response, model_used = _invoke_task(
        "scoring",
        prompt,
        {
            "concept_label": concept_label,
            "concept_description": concept_description or "(no description)",
            "d1_text": d1_text or "(No D1 elements linked to this concept)",
            "d1_count": d1_count,
            "d2_text": d2_text or "(No D2 elements linked to this concept)",
            "d2_count": d2_count,
        },
    )
    result = _parse_result(response)

    logger.debug("alignment_scoring_complete", concept=concept_label, model_used=model_used)
    return result
