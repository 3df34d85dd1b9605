from __future__ import annotations

import json
from importlib.metadata import version
from pathlib import Path

import pytest
from typer.testing import CliRunner

from skillscope import cli
from skillscope.cli import app

SCENARIO_A = "Create a product list component using Angular signals and the new control flow syntax."

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep user and project config files out of the CLI's view."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)
    for var in (
        "CORPUS_ROOT",
        "DEFAULT_BUDGET_TOKENS",
        "MIN_CONFIDENCE",
        "RELATIVE_MARGIN",
        "SKILLSCOPE_LOG_LEVEL",
        "SKILLSCOPE_LOG_JSON",
    ):
        monkeypatch.delenv(var, raising=False)


class TestResolveCommand:
    def test_prints_entries_as_json(self, corpus_root: Path):
        result = runner.invoke(app, ["resolve", "-q", SCENARIO_A, "-c", str(corpus_root)])

        assert result.exit_code == 0, result.output
        entries = json.loads(result.stdout)
        assert entries[0]["sourceId"] == "angular-expert"
        assert entries[0]["kind"] == "agent"
        assert entries[0]["truncated"] is False

    def test_corpus_from_environment(self, corpus_root: Path):
        result = runner.invoke(
            app,
            ["resolve", "--query", "Angular state management"],
            env={"CORPUS_ROOT": str(corpus_root)},
        )
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)[0]["sourceId"] == "angular-state"

    def test_zero_budget_warns(self, corpus_root: Path):
        result = runner.invoke(
            app, ["resolve", "-q", SCENARIO_A, "-b", "0", "-c", str(corpus_root)]
        )
        assert result.exit_code == 0
        assert "budget_exceeded" in result.output

    def test_explicit_agent(self, corpus_root: Path):
        result = runner.invoke(
            app,
            ["resolve", "-q", SCENARIO_A, "-a", "react-expert", "-c", str(corpus_root)],
        )
        assert result.exit_code == 0
        assert json.loads(result.stdout)[0]["sourceId"] == "react-expert"

    def test_no_confident_match_exit_code(self, corpus_root: Path):
        result = runner.invoke(
            app, ["resolve", "-q", "quantum chromodynamics", "-c", str(corpus_root)]
        )
        assert result.exit_code == 2
        assert "noConfidentMatch" in result.output

    def test_bad_deadline(self, corpus_root: Path):
        result = runner.invoke(
            app, ["resolve", "-q", SCENARIO_A, "-d", "soon", "-c", str(corpus_root)]
        )
        assert result.exit_code != 0
        assert "Invalid duration" in result.output

    def test_negative_budget_rejected(self, corpus_root: Path):
        result = runner.invoke(
            app, ["resolve", "-q", SCENARIO_A, "-b", "-1", "-c", str(corpus_root)]
        )
        assert result.exit_code != 0

    def test_invalid_environment_config(self, corpus_root: Path):
        result = runner.invoke(
            app,
            ["resolve", "-q", SCENARIO_A, "-c", str(corpus_root)],
            env={"MIN_CONFIDENCE": "abc"},
        )
        assert result.exit_code == 1
        assert "MIN_CONFIDENCE" in result.output


class TestListCommand:
    def test_lists_manifests(self, corpus_root: Path):
        result = runner.invoke(app, ["list", "--corpus", str(corpus_root)])
        assert result.exit_code == 0, result.output
        assert "3 manifest(s), 0 diagnostic(s)." in result.output

    def test_empty_corpus(self, tmp_path: Path):
        empty = tmp_path / "empty"
        empty.mkdir()
        result = runner.invoke(app, ["list", "--corpus", str(empty)])
        assert result.exit_code == 0
        assert "No manifests found" in result.output


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert result.stdout.strip() == version("skillscope")


class TestMain:
    @pytest.fixture
    def calls(self, monkeypatch: pytest.MonkeyPatch) -> list[tuple[str, bool]]:
        recorded: list[tuple[str, bool]] = []
        monkeypatch.setattr(
            cli,
            "setup_logging",
            lambda level, json_output=False: recorded.append((level, json_output)),
        )
        monkeypatch.setattr(cli, "app", lambda: None)
        return recorded

    def test_logging_settings_from_environment(self, calls, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("SKILLSCOPE_LOG_LEVEL", "info")
        monkeypatch.setenv("SKILLSCOPE_LOG_JSON", "yes")
        cli.main()
        assert calls == [("info", True)]

    def test_broken_config_falls_back_to_defaults(self, calls, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("MIN_CONFIDENCE", "abc")
        cli.main()
        assert calls == [("WARNING", False)]
