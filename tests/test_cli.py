"""Tests for the command line interface."""

import json

import pytest
from click.testing import CliRunner

from conduit.core import cli as cli_module
from conduit.core.cli import cli


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def wired(monkeypatch, store, action):
    """Point the CLI at the fixture store and action."""
    monkeypatch.setattr(cli_module, "create_store", lambda: store)
    monkeypatch.setattr(cli_module, "create_action", lambda _store, _secrets: action)
    monkeypatch.setattr(cli_module, "_secret_service", lambda: None)
    return store


def _write_json(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


class TestMapCommand:
    def test_prints_mapped_object(self, runner, tmp_path):
        input_file = _write_json(tmp_path / "input.json", {"first": "Ada", "age": "36"})
        mapping_file = _write_json(tmp_path / "mapping.json", {"name": "{{first}}", "age": "{{age | int}}"})

        result = runner.invoke(cli, ["--log-level", "ERROR", "map", "--input", input_file, "--mapping", mapping_file])

        assert result.exit_code == 0
        assert json.loads(result.output) == {"name": "Ada", "age": 36}

    def test_mapping_error_exits_non_zero(self, runner, tmp_path):
        input_file = _write_json(tmp_path / "input.json", {"first": "Ada"})
        mapping_file = _write_json(tmp_path / "mapping.json", {"name": "{{first"})

        result = runner.invoke(cli, ["--log-level", "ERROR", "map", "--input", input_file, "--mapping", mapping_file])

        assert result.exit_code == 1

    def test_schema_errors_exit_non_zero(self, runner, tmp_path):
        input_file = _write_json(tmp_path / "input.json", {"first": "Ada"})
        mapping_file = _write_json(tmp_path / "mapping.json", {"mapping": {"name": "{{first}}"}})
        schema_file = _write_json(tmp_path / "schema.json", {"fields": [{"name": "email", "required": True}]})

        result = runner.invoke(cli, [
            "map", "--input", input_file, "--mapping", mapping_file, "--schema", schema_file
        ])

        assert result.exit_code == 1

    def test_invalid_mapping_record_is_reported(self, runner, tmp_path):
        input_file = _write_json(tmp_path / "input.json", {"first": "Ada"})
        mapping_file = _write_json(tmp_path / "mapping.json", {"mapping": {"name": "{{first}}"}, "unset": "first"})

        result = runner.invoke(cli, ["map", "--input", input_file, "--mapping", mapping_file])

        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert "Mapping Error:" in result.output
        assert "Traceback" not in result.output

    def test_invalid_schema_file_is_reported(self, runner, tmp_path):
        input_file = _write_json(tmp_path / "input.json", {"first": "Ada"})
        mapping_file = _write_json(tmp_path / "mapping.json", {"name": "{{first}}"})
        schema_file = _write_json(tmp_path / "schema.json", {"fields": "email"})

        result = runner.invoke(cli, [
            "map", "--input", input_file, "--mapping", mapping_file, "--schema", schema_file
        ])

        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert "Schema Error:" in result.output


class TestRunCommand:
    def test_run_prints_json_trace(self, runner, wired, make_definition, seed_source, contacts):
        seed_source(*contacts)
        definition = make_definition()

        result = runner.invoke(cli, ["--log-level", "ERROR", "run", str(definition.id), "--output", "json"])

        assert result.exit_code == 0
        trace = json.loads(result.output)
        assert trace["level"] == "INFO"
        assert trace["objectsSynchronized"] == 3
        assert len(wired.list_job_logs()) == 1

    def test_dry_run_is_not_logged(self, runner, wired, make_definition, seed_source, contacts):
        seed_source(*contacts)
        definition = make_definition()

        result = runner.invoke(cli, ["run", str(definition.id), "--dry-run"])

        assert result.exit_code == 0
        assert "INFO: Synchronized 3 successfully" in result.output
        assert wired.list_job_logs() == []
        assert wired.list_contracts(definition.id) == []

    def test_missing_id_exits_non_zero(self, runner, wired):
        result = runner.invoke(cli, ["run", ""])

        assert result.exit_code == 1
        assert "No synchronization ID provided" in result.output


class TestListings:
    def test_contracts(self, runner, wired, make_definition, seed_source, contacts):
        seed_source(*contacts)
        definition = make_definition()
        runner.invoke(cli, ["run", str(definition.id)])

        result = runner.invoke(cli, ["contracts", str(definition.id)])

        assert result.exit_code == 0
        assert "Total contracts: 3" in result.output
        assert "c2" in result.output

    def test_no_contracts(self, runner, wired):
        result = runner.invoke(cli, ["contracts", "9"])

        assert "No contracts found for synchronization 9." in result.output

    def test_logs(self, runner, wired, make_definition, seed_source, contacts):
        seed_source(*contacts)
        definition = make_definition()
        runner.invoke(cli, ["run", str(definition.id)])

        result = runner.invoke(cli, ["logs", str(definition.id)])

        assert result.exit_code == 0
        assert "Synchronized 3 successfully" in result.output
