"""Unit tests for the LangChain-backed local oracles and JSON recovery."""

import pytest
from langchain_core.language_models import FakeListLLM
from langchain_core.prompts import ChatPromptTemplate

from concept_alignment.llm import chains
from concept_alignment.llm.chains import LLMChainError, _first_json_object, _invoke_task, _parse_json_response
from concept_alignment.llm.client import LLMSettings, TaskProfile, context_window
from concept_alignment.models import (
    DatasetTag,
    Element,
    ExtractionRequest,
    MergeConceptRef,
    MergeRequest,
    ScoringConcept,
    ScoringElement,
    ScoringRequest,
    VennConceptRef,
    VennRequest,
)
from concept_alignment.oracles import local
from concept_alignment.oracles.local import (
    LocalExtractionOracle,
    LocalMergeOracle,
    LocalScoringOracle,
    LocalVennOracle,
    format_elements,
)


class TestParseJsonResponse:
    """Tests for JSON recovery from raw LLM output."""

    def test_plain_json(self):
        assert _parse_json_response('{"concepts": []}') == {"concepts": []}

    def test_fenced_block(self):
        text = 'Here you go:\n```json\n{"merges": [{"sourceIds": ["C1"]}]}\n```'
        assert _parse_json_response(text)["merges"][0]["sourceIds"] == ["C1"]

    def test_preamble_and_trailing_comma(self):
        text = 'Sure! {"polarity": 0.5, "rationale": "ok",} thanks'
        assert _parse_json_response(text) == {"polarity": 0.5, "rationale": "ok"}

    def test_braces_inside_strings(self):
        text = 'x {"rationale": "uses {placeholders}"} y'
        assert _first_json_object(text) == {"rationale": "uses {placeholders}"}

    def test_empty_response(self):
        with pytest.raises(LLMChainError):
            _parse_json_response("   ")

    def test_no_json(self):
        with pytest.raises(LLMChainError):
            _parse_json_response("I cannot help with that")

    def test_skips_unbalanced_prefix(self):
        assert _first_json_object('{oops {"merges": []} tail') == {"merges": []}


class TestTaskProfiles:
    """Tests for per-task model selection and context sizing."""

    def test_context_window_grows_with_prompt(self):
        assert context_window(0, 1024, 32768) == 2048
        assert context_window(8192 * 4, 1024, 32768) == 10240
        assert context_window(10**7, 1024, 32768) == 32768

    def test_models_for_task(self):
        settings = LLMSettings(
            _env_file=None,
            model_name="big",
            fallback_model_name="small",
            scoring=TaskProfile(model_name="small", num_predict=512),
        )
        assert settings.models_for("extraction") == ["big", "small"]
        assert settings.models_for("scoring") == ["small"]
        assert settings.profile("scoring").num_predict == 512

    def test_empty_reply_moves_to_next_model(self, monkeypatch):
        settings = LLMSettings(_env_file=None, model_name="big", fallback_model_name="small")
        replies = {"big": "   ", "small": '{"polarity": 0.9}'}
        calls = []

        def fake_llm(task, model, prompt_chars, settings=None):
            calls.append((task, model, prompt_chars))
            return FakeListLLM(responses=[replies[model]])

        monkeypatch.setattr(chains, "get_llm_settings", lambda: settings)
        monkeypatch.setattr(chains, "create_oracle_llm", fake_llm)
        prompt = ChatPromptTemplate.from_messages([("human", "Score {label}")])

        response, model = _invoke_task("scoring", prompt, {"label": "Auth"})

        assert model == "small"
        assert _parse_json_response(response) == {"polarity": 0.9}
        assert [c[1] for c in calls] == ["big", "small"]
        assert all(c[0] == "scoring" and c[2] > 0 for c in calls)

    def test_every_model_empty(self, monkeypatch):
        settings = LLMSettings(_env_file=None, model_name="big", fallback_model_name=None)
        monkeypatch.setattr(chains, "get_llm_settings", lambda: settings)
        monkeypatch.setattr(chains, "create_oracle_llm", lambda *args, **kwargs: FakeListLLM(responses=[""]))
        prompt = ChatPromptTemplate.from_messages([("human", "Merge {n}")])

        with pytest.raises(LLMChainError, match="big"):
            _invoke_task("merge", prompt, {"n": 2})


class TestFormatElements:
    """Tests for prompt rendering."""

    def test_truncates_and_labels(self):
        text = format_elements([Element(id="r1", label="Login", content="abcdef"), Element(id="r2")], 3)
        assert "### Login\nID: r1\nabc" in text
        assert "abcd" not in text
        assert "(empty)" in text


class TestLocalOracles:
    """Local oracles with the chains replaced by stubs."""

    @pytest.mark.asyncio
    async def test_extraction_skips_invalid_items(self, monkeypatch):
        captured = {}

        def fake_chain(dataset_label, elements_text, element_count):
            captured.update(dataset_label=dataset_label, element_count=element_count)
            return {"concepts": [{"label": "Auth", "elementIds": ["r1"]}, {"label": ""}]}

        monkeypatch.setattr(local, "run_concept_extraction_chain", fake_chain)
        response = await LocalExtractionOracle().extract(
            ExtractionRequest(dataset_tag=DatasetTag.D1, elements=[Element(id="r1", content="login")])
        )

        assert response.success
        assert [c.label for c in response.concepts] == ["Auth"]
        assert captured == {"dataset_label": "D1 (requirements)", "element_count": 1}

    @pytest.mark.asyncio
    async def test_extraction_failure_is_unsuccessful_response(self, monkeypatch):
        def broken_chain(**kwargs):
            raise RuntimeError("ollama down")

        monkeypatch.setattr(local, "run_concept_extraction_chain", broken_chain)
        response = await LocalExtractionOracle().extract(ExtractionRequest(dataset_tag=DatasetTag.D2, elements=[]))

        assert not response.success
        assert "ollama down" in response.error

    @pytest.mark.asyncio
    async def test_merge_events(self, monkeypatch, settings):
        monkeypatch.setattr(
            local,
            "run_concept_merge_chain",
            lambda **kwargs: {"merges": [{"sourceIds": ["C1", "C2"], "mergedLabel": "Auth"}]},
        )
        request = MergeRequest(
            concepts=[MergeConceptRef(id="C1", label="Login"), MergeConceptRef(id="C2", label="auth.py")],
            round=1,
            total_rounds=3,
        )
        events = [event async for event in LocalMergeOracle(settings).propose_merges(request)]

        assert [e.event for e in events] == ["progress", "result"]
        assert "EXACT MATCHING" in events[0].message
        assert events[1].data["merges"][0]["mergedLabel"] == "Auth"

    @pytest.mark.asyncio
    async def test_merge_failure_yields_error_event(self, monkeypatch, settings):
        def broken_chain(**kwargs):
            raise RuntimeError("timeout")

        monkeypatch.setattr(local, "run_concept_merge_chain", broken_chain)
        request = MergeRequest(concepts=[], round=2, total_rounds=3)
        events = [event async for event in LocalMergeOracle(settings).propose_merges(request)]

        assert events[-1].event == "error"
        assert "timeout" in events[-1].message

    @pytest.mark.asyncio
    async def test_scoring(self, monkeypatch):
        monkeypatch.setattr(
            local, "run_alignment_scoring_chain", lambda **kwargs: {"polarity": 1.7, "rationale": "complete"}
        )
        request = ScoringRequest(
            concept=ScoringConcept(
                id="C1", label="Auth", d1_elements=[ScoringElement(id="r1", content="login")]
            )
        )
        response = await LocalScoringOracle().score(request)

        assert response.success
        assert response.cells[0].polarity == 1.0
        assert response.cells[0].rationale == "complete"

    @pytest.mark.asyncio
    async def test_scoring_bad_polarity(self, monkeypatch):
        monkeypatch.setattr(local, "run_alignment_scoring_chain", lambda **kwargs: {"polarity": "high"})
        response = await LocalScoringOracle().score(
            ScoringRequest(concept=ScoringConcept(id="C1", label="Auth"))
        )
        assert not response.success

    @pytest.mark.asyncio
    async def test_venn_mirrors_request(self):
        request = VennRequest(
            merged_concepts=[VennConceptRef(id="C1", label="Auth")],
            unmerged_d2=[VennConceptRef(id="C2", label="Metrics", description="export")],
        )
        events = [event async for event in LocalVennOracle().generate(request)]

        result = events[-1].data
        assert result["aligned"] == [{"label": "Auth", "description": ""}]
        assert result["unique_to_d2"] == [{"label": "Metrics", "description": "export"}]
        assert result["unique_to_d1"] == []
