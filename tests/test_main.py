"""Tests for main.py - stepsync command line interface."""

import json

import pytest
import yaml
from click.testing import CliRunner

from config import reset_config
from main import cli
from registry.backends import reset_backend_registry

SCOPE = "PPDSDemo.Plugins"


@pytest.fixture(autouse=True)
def memory_backend(monkeypatch):
    """Point the CLI at a fresh in-memory registry that knows the scope."""
    monkeypatch.setenv("STEPSYNC_BACKEND", "memory")
    monkeypatch.setenv("REGISTRY_OPTIONS", json.dumps({"assemblies": [SCOPE]}))
    monkeypatch.delenv("STEPSYNC_SCOPE", raising=False)
    reset_config()
    reset_backend_registry()
    yield
    reset_config()
    reset_backend_registry()


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def declaration_file(tmp_path, sample_document):
    path = tmp_path / "registrations.yaml"
    path.write_text(yaml.safe_dump(sample_document))
    return str(path)


def json_output(result):
    return json.loads(result.stdout[result.stdout.index("{") :])


class TestPlanCommand:
    """Tests for `stepsync plan`."""

    def test_plan_lists_creates(self, runner, declaration_file):
        result = runner.invoke(cli, ["plan", declaration_file, "--scope", SCOPE])

        assert result.exit_code == 0, result.output
        assert f"Plan for {SCOPE}" in result.output
        assert "Dry run: no changes were made." in result.output
        assert "Foo.Bar: Create of account (PostOperation)" in result.output

    def test_scope_from_env(self, runner, declaration_file, monkeypatch):
        monkeypatch.setenv("STEPSYNC_SCOPE", SCOPE)
        reset_config()

        result = runner.invoke(cli, ["plan", declaration_file])

        assert result.exit_code == 0, result.output

    def test_missing_scope_is_usage_error(self, runner, declaration_file):
        result = runner.invoke(cli, ["plan", declaration_file])

        assert result.exit_code == 2
        assert "No scope given" in result.output

    def test_missing_file(self, runner):
        result = runner.invoke(cli, ["plan", "missing.yaml", "--scope", SCOPE])
        assert result.exit_code == 2


class TestApplyCommand:
    """Tests for `stepsync apply`."""

    def test_apply(self, runner, declaration_file):
        result = runner.invoke(cli, ["apply", declaration_file, "-s", SCOPE])

        assert result.exit_code == 0, result.output
        assert f"Apply report for {SCOPE}" in result.output
        assert "succeeded" in result.output

    def test_apply_json(self, runner, declaration_file):
        result = runner.invoke(
            cli, ["apply", declaration_file, "-s", SCOPE, "--output", "json"]
        )

        assert result.exit_code == 0, result.output
        data = json_output(result)
        assert data["success"] is True
        assert data["dry_run"] is False
        assert [r["status"] for r in data["results"]] == ["succeeded"] * 3

    def test_apply_dry_run(self, runner, declaration_file):
        result = runner.invoke(
            cli, ["apply", declaration_file, "-s", SCOPE, "--dry-run", "-o", "json"]
        )

        assert result.exit_code == 0, result.output
        data = json_output(result)
        assert data["dry_run"] is True
        assert [r["status"] for r in data["results"]] == ["planned"] * 3

    def test_scope_mismatch_is_fatal(self, runner, declaration_file):
        result = runner.invoke(cli, ["apply", declaration_file, "-s", "Other"])

        assert result.exit_code == 2
        assert "Error:" in result.output
        assert "not to scope 'Other'" in result.output

    def test_malformed_declaration_is_fatal(self, runner, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text(json.dumps({"pluginTypes": []}))

        result = runner.invoke(cli, ["apply", str(path), "-s", SCOPE])

        assert result.exit_code == 2
        assert "Invalid declaration document" in result.output

    def test_unknown_backend_is_fatal(self, runner, declaration_file):
        result = runner.invoke(
            cli, ["apply", declaration_file, "-s", SCOPE, "--backend", "soap"]
        )

        assert result.exit_code == 2
        assert "Unknown registry backend: soap" in result.output

    def test_unknown_scope_is_fatal(self, runner, tmp_path, sample_document):
        sample_document["pluginTypes"][0]["assemblyId"] = "Missing.Assembly"
        path = tmp_path / "registrations.json"
        path.write_text(json.dumps(sample_document))

        result = runner.invoke(cli, ["apply", str(path), "-s", "Missing.Assembly"])

        assert result.exit_code == 2
        assert "Cannot read remote state" in result.output


class TestShowCommand:
    """Tests for `stepsync show`."""

    def test_show_empty_scope(self, runner):
        result = runner.invoke(cli, ["show", "--scope", SCOPE])

        assert result.exit_code == 0, result.output
        assert "Plugin types (0):" in result.output
        assert "Steps (0):" in result.output

    def test_show_unknown_scope(self, runner):
        result = runner.invoke(cli, ["show", "--scope", "Missing.Assembly"])

        assert result.exit_code == 2
        assert "Error:" in result.output
