"""HTTP oracle clients.

Extraction and scoring are plain JSON POSTs. Merge and venn responses are
streamed; their bytes are fed through the event stream reader as they arrive.
"""

from typing import Any, AsyncIterator, Optional

import httpx
import structlog
from pydantic import ValidationError

from concept_alignment.config.settings import Settings
from concept_alignment.models import (
    ExtractionRequest,
    ExtractionResponse,
    MergeRequest,
    ScoringRequest,
    ScoringResponse,
    StreamEvent,
    VennRequest,
)
from concept_alignment.oracles.base import (
    ExtractionOracle,
    MergeOracle,
    OracleSuite,
    ScoringOracle,
    VennOracle,
)
from concept_alignment.pipeline.errors import OracleError
from concept_alignment.pipeline.stream_reader import EventStreamReader, iter_stream_events

logger = structlog.get_logger(__name__)

PREVIEW_CHARS = 300


class OracleHTTPClient(httpx.AsyncClient):
    """Async HTTP client for the oracle endpoints.

    Ignores system proxy settings and sends the bearer token on every request.
    """

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: float = 300.0, **kwargs):
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
            headers["apikey"] = api_key
        kwargs.pop("proxies", None)
        super().__init__(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            trust_env=False,
            **kwargs,
        )

    async def post_json(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST ``payload`` and return the decoded JSON body.

        Raises:
            OracleError: On a transport failure, a non-2xx status or a body that
                is not a JSON object.
        """
        try:
            response = await self.post(path, json=payload)
        except httpx.HTTPError as e:
            raise OracleError(f"{path}: {type(e).__name__}: {e}") from e

        if not response.is_success:
            raise OracleError(
                f"{path} returned HTTP {response.status_code}: {response.text[:PREVIEW_CHARS]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise OracleError(f"{path}: invalid JSON body: {response.text[:PREVIEW_CHARS]}") from e
        if not isinstance(data, dict):
            raise OracleError(f"{path}: expected a JSON object, got {type(data).__name__}")
        return data

    async def stream_events(self, path: str, payload: dict[str, Any]) -> AsyncIterator[StreamEvent]:
        """POST ``payload`` and yield typed events from the streamed response.

        Raises:
            OracleError: On a transport failure or a non-2xx status.
        """
        reader = EventStreamReader()
        try:
            async with self.stream("POST", path, json=payload) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise OracleError(
                        f"{path} returned HTTP {response.status_code}: {body[:PREVIEW_CHARS]}",
                        status_code=response.status_code,
                    )
                async for event in iter_stream_events(response.aiter_bytes(), reader):
                    yield event
        except httpx.HTTPError as e:
            raise OracleError(f"{path}: {type(e).__name__}: {e}") from e

        if reader.quarantined:
            logger.warning("stream_blocks_quarantined", path=path, count=len(reader.quarantined))


class HttpExtractionOracle(ExtractionOracle):
    def __init__(self, client: OracleHTTPClient, path: str):
        self.client = client
        self.path = path

    async def extract(self, request: ExtractionRequest) -> ExtractionResponse:
        data = await self.client.post_json(self.path, request.to_wire())
        try:
            return ExtractionResponse.model_validate(data)
        except ValidationError as e:
            raise OracleError(f"{self.path}: malformed extraction response: {e}") from e


class HttpMergeOracle(MergeOracle):
    def __init__(self, client: OracleHTTPClient, path: str):
        self.client = client
        self.path = path

    async def propose_merges(self, request: MergeRequest) -> AsyncIterator[StreamEvent]:
        async for event in self.client.stream_events(self.path, request.to_wire()):
            yield event


class HttpScoringOracle(ScoringOracle):
    def __init__(self, client: OracleHTTPClient, path: str):
        self.client = client
        self.path = path

    async def score(self, request: ScoringRequest) -> ScoringResponse:
        data = await self.client.post_json(self.path, request.to_wire())
        try:
            return ScoringResponse.model_validate(data)
        except ValidationError as e:
            raise OracleError(f"{self.path}: malformed scoring response: {e}") from e


class HttpVennOracle(VennOracle):
    def __init__(self, client: OracleHTTPClient, path: str):
        self.client = client
        self.path = path

    async def generate(self, request: VennRequest) -> AsyncIterator[StreamEvent]:
        async for event in self.client.stream_events(self.path, request.to_wire()):
            yield event


def create_http_oracles(settings: Settings, client: Optional[OracleHTTPClient] = None) -> OracleSuite:
    """Build the four HTTP oracles on one shared client."""
    client = client or OracleHTTPClient(
        base_url=settings.oracle_base_url,
        api_key=settings.oracle_api_key,
        timeout=settings.oracle_timeout_seconds,
    )
    return OracleSuite(
        extraction=HttpExtractionOracle(client, settings.extraction_path),
        merge=HttpMergeOracle(client, settings.merge_path),
        scoring=HttpScoringOracle(client, settings.scoring_path),
        venn=HttpVennOracle(client, settings.venn_path),
        transport=client,
    )
