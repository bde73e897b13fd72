"""Unit tests for Pydantic models."""

import pytest
from pydantic import ValidationError

from concept_alignment.config.settings import Settings
from concept_alignment.models import (
    Concept,
    DatasetTag,
    EdgeType,
    Element,
    ExtractionRequest,
    ExtractionResponse,
    MergeOraclePayload,
    MergeRequest,
    PipelineProgress,
    ScoredCell,
    TesseractCell,
)


class TestElement:
    """Tests for Element model."""

    def test_size_is_content_length(self):
        assert Element(id="r1", content="hello").size == 5

    def test_empty_id_rejected(self):
        with pytest.raises(ValidationError):
            Element(id="", content="x")

    def test_frozen(self):
        element = Element(id="r1", content="x")
        with pytest.raises(ValidationError):
            element.content = "y"


class TestDatasetTag:
    """Tests for DatasetTag helpers."""

    def test_source_dataset_and_edge_type(self):
        assert DatasetTag.D1.source_dataset == "dataset1"
        assert DatasetTag.D2.source_dataset == "dataset2"
        assert DatasetTag.D1.edge_type == EdgeType.DEFINES
        assert DatasetTag.D2.edge_type == EdgeType.IMPLEMENTS


class TestConcept:
    """Tests for Concept model."""

    def test_alignment_flags(self):
        concept = Concept(id="C1", label="Auth", d1_ids=["r1"], d2_ids=["f1"])
        assert concept.is_active
        assert concept.is_aligned
        assert concept.element_ids == ["r1", "f1"]

    def test_tombstoned_concept_is_inactive(self):
        concept = Concept(id="C1", label="Auth", d1_ids=["r1"], remapped_to="C4")
        assert not concept.is_active
        assert not concept.is_aligned


class TestWireFormat:
    """Tests for the camelCase oracle contracts."""

    def test_extraction_request_serializes_aliases(self):
        request = ExtractionRequest(dataset_tag=DatasetTag.D2, elements=[Element(id="f1", content="x")])
        wire = request.to_wire()
        assert wire["datasetTag"] == "d2"
        assert wire["elements"][0]["id"] == "f1"

    def test_extraction_response_accepts_aliases(self):
        response = ExtractionResponse.model_validate(
            {"success": True, "concepts": [{"label": "Auth", "elementIds": ["r1"]}], "extra": 1}
        )
        assert response.concepts[0].element_ids == ["r1"]

    def test_blank_concept_label_rejected(self):
        with pytest.raises(ValidationError):
            ExtractionResponse.model_validate({"success": True, "concepts": [{"label": "", "elementIds": []}]})

    def test_merge_request_wire(self):
        request = MergeRequest(concepts=[], round=2, total_rounds=3, target_count=15)
        wire = request.to_wire()
        assert wire["totalRounds"] == 3
        assert wire["targetCount"] == 15

    def test_merge_payload(self):
        payload = MergeOraclePayload.model_validate(
            {"merges": [{"sourceIds": ["C1", "C2"], "mergedLabel": "Auth", "mergedDescription": "d"}]}
        )
        assert payload.merges[0].source_ids == ["C1", "C2"]

    def test_scored_cell_polarity_is_clamped(self):
        assert ScoredCell(concept_label="x", polarity=3.5).polarity == 1.0
        assert ScoredCell(concept_label="x", polarity=-2).polarity == -1.0


class TestTesseractCell:
    """Tests for TesseractCell model."""

    def test_polarity_out_of_range(self):
        with pytest.raises(ValidationError):
            TesseractCell(concept_id="C1", concept_label="x", polarity=1.5)


class TestPipelineProgress:
    """Tests for PipelineProgress model."""

    def test_percent_bounds(self):
        with pytest.raises(ValidationError):
            PipelineProgress(percent=101)


class TestSettings:
    """Tests for merge round policies."""

    def test_rounds_past_table_reuse_last_policy(self):
        settings = Settings(_env_file=None)
        assert settings.round_policy(1).label == "EXACT MATCHING"
        assert settings.round_policy(3).target_count == 15
        assert settings.round_policy(7).label == settings.round_policy(3).label

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("BATCH_CHAR_BUDGET", "1234")
        monkeypatch.setenv("ORACLE_BACKEND", "local")
        settings = Settings(_env_file=None)
        assert settings.batch_char_budget == 1234
        assert settings.oracle_backend == "local"
