"""Unit tests for the command-line interface."""

import json

from typer.testing import CliRunner

from concept_alignment.cli import app, load_elements

runner = CliRunner()


def _write(path, payload):
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


class TestLoadElements:
    """Tests for element file loading."""

    def test_plain_list(self, tmp_path):
        path = _write(tmp_path / "d1.json", [{"id": "r1", "content": "login"}])
        assert [el.id for el in load_elements(path)] == ["r1"]

    def test_wrapped_object(self, tmp_path):
        path = _write(tmp_path / "d2.json", {"elements": [{"id": "f1"}, {"id": "f2"}]})
        assert [el.id for el in load_elements(path)] == ["f1", "f2"]


class TestBatchesCommand:
    def test_shows_batches(self, tmp_path):
        elements = [{"id": f"e{i}", "content": "x" * 30} for i in range(4)]
        path = _write(tmp_path / "d1.json", elements)

        result = runner.invoke(app, ["batches", str(path), "--budget", "60"])

        assert result.exit_code == 0
        assert "e0 / e1" in result.output
        assert "e2 / e3" in result.output


class TestRunCommand:
    def test_invalid_element_file(self, tmp_path):
        d1 = _write(tmp_path / "d1.json", [{"content": "missing id"}])
        d2 = _write(tmp_path / "d2.json", [])

        result = runner.invoke(app, ["run", str(d1), str(d2)])

        assert result.exit_code == 2
        assert "Invalid element file" in result.output

    def test_unknown_backend(self, tmp_path):
        d1 = _write(tmp_path / "d1.json", [])
        d2 = _write(tmp_path / "d2.json", [])

        result = runner.invoke(app, ["run", str(d1), str(d2), "--backend", "grpc"])

        assert result.exit_code == 2
