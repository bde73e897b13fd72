"""Unit tests for the HTTP oracle clients, using httpx.MockTransport."""

import json

import httpx
import pytest

from concept_alignment.models import (
    Concept,
    DatasetTag,
    Element,
    ExtractionRequest,
    MergeRequest,
    ScoringConcept,
    ScoringRequest,
    VennRequest,
)
from concept_alignment.oracles import create_oracles
from concept_alignment.oracles.http import OracleHTTPClient, create_http_oracles
from concept_alignment.pipeline.errors import MergeOracleError, OracleError
from concept_alignment.pipeline.merge import MergeEngine


def _client(handler, api_key="secret"):
    return OracleHTTPClient(
        base_url="http://oracle.test/functions/v1/",
        api_key=api_key,
        transport=httpx.MockTransport(handler),
    )


def _sse(*blocks):
    return "".join(f"event: {name}\ndata: {json.dumps(data)}\n\n" for name, data in blocks).encode("utf-8")


class TestPostJson:
    """Tests for JSON request/response oracles."""

    @pytest.mark.asyncio
    async def test_extraction_round_trip(self, settings):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("authorization")
            seen["apikey"] = request.headers.get("apikey")
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200, json={"success": True, "concepts": [{"label": "Auth", "elementIds": ["r1"]}]}
            )

        suite = create_http_oracles(settings, client=_client(handler))
        response = await suite.extraction.extract(
            ExtractionRequest(dataset_tag=DatasetTag.D1, elements=[Element(id="r1", content="login")])
        )
        await suite.aclose()

        assert response.success
        assert response.concepts[0].element_ids == ["r1"]
        assert seen["path"] == "/functions/v1/audit-extract-concepts"
        assert seen["auth"] == "Bearer secret"
        assert seen["apikey"] == "secret"
        assert seen["body"]["datasetTag"] == "d1"

    @pytest.mark.asyncio
    async def test_scoring_sends_single_concept(self, settings):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200, json={"success": True, "cells": [{"conceptLabel": "Auth", "polarity": 0.4, "rationale": "ok"}]}
            )

        suite = create_http_oracles(settings, client=_client(handler))
        response = await suite.scoring.score(
            ScoringRequest(concept=ScoringConcept(id="C1", label="Auth"))
        )

        assert response.cells[0].polarity == 0.4
        assert seen["body"]["concept"]["id"] == "C1"
        assert seen["body"]["concept"]["d1Elements"] == []

    @pytest.mark.asyncio
    async def test_http_error_status(self, settings):
        client = _client(lambda request: httpx.Response(503, text="overloaded"))
        suite = create_http_oracles(settings, client=client)

        with pytest.raises(OracleError, match="HTTP 503: overloaded") as exc_info:
            await suite.extraction.extract(ExtractionRequest(dataset_tag=DatasetTag.D1, elements=[]))
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_invalid_json_body(self, settings):
        suite = create_http_oracles(settings, client=_client(lambda request: httpx.Response(200, text="<html>")))
        with pytest.raises(OracleError, match="invalid JSON"):
            await suite.scoring.score(ScoringRequest(concept=ScoringConcept(id="C1", label="x")))

    @pytest.mark.asyncio
    async def test_malformed_response(self, settings):
        suite = create_http_oracles(settings, client=_client(lambda request: httpx.Response(200, json={"ok": 1})))
        with pytest.raises(OracleError, match="malformed extraction"):
            await suite.extraction.extract(ExtractionRequest(dataset_tag=DatasetTag.D1, elements=[]))

    @pytest.mark.asyncio
    async def test_transport_error(self, settings):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        suite = create_http_oracles(settings, client=_client(handler))
        with pytest.raises(OracleError, match="ConnectError"):
            await suite.extraction.extract(ExtractionRequest(dataset_tag=DatasetTag.D1, elements=[]))

    def test_no_auth_headers_without_key(self):
        client = _client(lambda request: httpx.Response(200), api_key=None)
        assert "authorization" not in client.headers
        assert "apikey" not in client.headers


class TestStreamedOracles:
    """Tests for merge and venn streaming."""

    @pytest.mark.asyncio
    async def test_merge_stream(self, settings):
        body = _sse(
            ("progress", {"message": "thinking", "progress": 30}),
            ("result", {"merges": [{"sourceIds": ["C1", "C2"], "mergedLabel": "Auth"}]}),
            ("done", {}),
        )
        suite = create_http_oracles(settings, client=_client(lambda request: httpx.Response(200, content=body)))

        events = [
            event
            async for event in suite.merge.propose_merges(MergeRequest(concepts=[], round=1, total_rounds=1))
        ]

        assert [e.event for e in events] == ["progress", "result", "done"]
        assert events[1].data["merges"][0]["mergedLabel"] == "Auth"

    @pytest.mark.asyncio
    async def test_merge_engine_over_http(self, settings):
        body = _sse(("result", {"merges": [{"sourceIds": ["C1", "C2"], "mergedLabel": "Auth"}]}))
        suite = create_http_oracles(settings, client=_client(lambda request: httpx.Response(200, content=body)))
        concepts = [
            Concept(id="C1", label="Login", d1_ids=["r1"]),
            Concept(id="C2", label="auth.py", d2_ids=["f1"]),
        ]

        merge_log = []
        await MergeEngine(suite.merge, settings).run(concepts, 3, merge_log, total_rounds=1)

        assert merge_log[0].to_label == "Auth"
        assert concepts[-1].is_aligned

    @pytest.mark.asyncio
    async def test_unrecognized_events_are_skipped(self, settings):
        body = (
            b": keep-alive\n\n"
            + _sse(
                ("heartbeat", {}),
                ("result", {"merges": [{"sourceIds": ["C1", "C2"], "mergedLabel": "Auth"}]}),
                ("done", {}),
            )
        )
        suite = create_http_oracles(settings, client=_client(lambda request: httpx.Response(200, content=body)))
        concepts = [
            Concept(id="C1", label="Login", d1_ids=["r1"]),
            Concept(id="C2", label="auth.py", d2_ids=["f1"]),
        ]

        merge_log = []
        await MergeEngine(suite.merge, settings).run(concepts, 3, merge_log, total_rounds=1)

        assert [entry.to_label for entry in merge_log] == ["Auth"]
        assert concepts[-1].is_aligned

    @pytest.mark.asyncio
    async def test_stream_error_status_becomes_merge_error(self, settings):
        suite = create_http_oracles(settings, client=_client(lambda request: httpx.Response(500, text="boom")))
        concepts = [Concept(id="C1", label="a", d1_ids=["r1"]), Concept(id="C2", label="b", d1_ids=["r2"])]

        with pytest.raises(MergeOracleError, match="HTTP 500"):
            await MergeEngine(suite.merge, settings).run(concepts, 3, [], total_rounds=1)

    @pytest.mark.asyncio
    async def test_venn_stream(self, settings):
        body = _sse(("result", {"unique_to_d2": [{"label": "Caching"}]}))
        suite = create_http_oracles(settings, client=_client(lambda request: httpx.Response(200, content=body)))

        events = [event async for event in suite.venn.generate(VennRequest())]

        assert events[0].data["unique_to_d2"][0]["label"] == "Caching"


class TestCreateOracles:
    """Tests for backend selection."""

    @pytest.mark.asyncio
    async def test_http_backend(self, settings):
        suite = create_oracles(settings)
        assert isinstance(suite.transport, OracleHTTPClient)
        await suite.aclose()

    def test_local_backend(self, settings):
        suite = create_oracles(settings.model_copy(update={"oracle_backend": "local"}))
        assert suite.transport is None
        assert suite.venn is not None
