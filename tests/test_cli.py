"""
Tests for the CLI interface.
"""
import json
import os
import sys
import tempfile
from datetime import datetime

import pytest
import yaml
from typer.testing import CliRunner

from tokentrim.cli.main import EXIT_CODE_PASS, NO_DATA_MESSAGE, app
from tokentrim.storage.models import InvocationRecord
from tokentrim.storage.repository import open_store

runner = CliRunner()


@pytest.fixture
def workspace(monkeypatch):
    """Isolated database and settings file for one test."""
    with tempfile.TemporaryDirectory() as temp_dir:
        db_path = os.path.join(temp_dir, "history.db")
        config_path = os.path.join(temp_dir, "config.yaml")
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump({"tee": {"directory": os.path.join(temp_dir, "tee")}}, f)
        monkeypatch.setenv("TOKENTRIM_DB_PATH", db_path)
        monkeypatch.setenv("TOKENTRIM_CONFIG", config_path)
        yield {"dir": temp_dir, "db": db_path, "config": config_path}


def _seed(db_path, entries):
    with open_store(db_path) as store:
        for ts, tool_id, raw, compacted in entries:
            store.append(InvocationRecord(
                timestamp=ts,
                tool_id=tool_id,
                raw_unit_count=raw,
                compacted_unit_count=compacted,
                success=True,
            ))


SAMPLE = [
    (datetime(2026, 1, 26, 9, 0), "git status", 1000, 100),
    (datetime(2026, 1, 27, 9, 0), "git diff", 4000, 400),
    (datetime(2026, 1, 27, 10, 0), "pytest", 5000, 500),
]


class TestGain:
    """Test the savings report."""

    def test_no_data(self, workspace):
        result = runner.invoke(app, ["gain"])

        assert result.exit_code == EXIT_CODE_PASS
        assert NO_DATA_MESSAGE in result.output

    def test_summary_text(self, workspace):
        _seed(workspace["db"], SAMPLE)

        result = runner.invoke(app, ["gain"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Token savings" in result.output
        assert "Commands:      3" in result.output
        assert "Saved:         9.0K (90.0%)" in result.output
        assert "By command" in result.output

    def test_json_all_granularities(self, workspace):
        _seed(workspace["db"], SAMPLE)

        result = runner.invoke(app, ["gain", "--all", "--format", "json"])

        assert result.exit_code == EXIT_CODE_PASS
        document = json.loads(result.stdout)
        assert document["summary"]["commands"] == 3
        assert document["summary"]["saved_units"] == 9000
        assert [row["period"] for row in document["day"]] == ["2026-01-26", "2026-01-27", "TOTAL"]
        assert [row["period"] for row in document["week"]] == ["2026-01-26", "TOTAL"]
        assert [row["period"] for row in document["month"]] == ["2026-01", "TOTAL"]

    def test_csv_defaults_to_daily(self, workspace):
        _seed(workspace["db"], SAMPLE)

        result = runner.invoke(app, ["gain", "--format", "csv"])

        lines = result.stdout.strip().splitlines()
        assert lines[0] == "period,commands,input_units,output_units,saved_units,savings_pct"
        assert lines[1] == "2026-01-26,1,1000,100,900,90.0"
        assert lines[-1].startswith("TOTAL,3,10000,1000,9000,")

    def test_csv_multiple_tables_are_labelled(self, workspace):
        _seed(workspace["db"], SAMPLE)

        result = runner.invoke(app, ["gain", "--weekly", "--monthly", "--format", "csv"])

        assert "# week\n" in result.stdout
        assert "# month\n" in result.stdout


class TestEconomics:
    """Test the spend comparison report."""

    @pytest.fixture
    def feed_path(self, workspace):
        path = os.path.join(workspace["dir"], "usage.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump({"monthly": [
                {"month": "2025-12", "totalCost": 120.0, "inputTokens": 40000,
                 "outputTokens": 20000, "totalTokens": 9000000},
            ]}, f)
        return path

    def test_feed_only_period_has_missing_local_fields(self, workspace, feed_path):
        _seed(workspace["db"], SAMPLE)

        result = runner.invoke(app, ["economics", "--feed", feed_path, "--format", "json"])

        assert result.exit_code == EXIT_CODE_PASS
        report = json.loads(result.stdout)["month"]
        december, january = report["periods"]
        assert december["period"] == "2025-12"
        assert december["spend"] == 120.0
        assert december["commands"] is None
        assert january["spend"] is None
        assert january["saved_units"] == 9000
        assert report["totals"]["spend"] == 120.0

    def test_without_feed(self, workspace):
        _seed(workspace["db"], SAMPLE)

        result = runner.invoke(app, ["economics", "--format", "csv"])

        lines = result.stdout.strip().splitlines()
        assert lines[0].startswith("period,spend,commands")
        assert lines[1] == "2026-01,,3,9000,90.0,,,,"

    def test_text_report(self, workspace, feed_path):
        _seed(workspace["db"], SAMPLE)

        result = runner.invoke(app, ["economics", "--feed", feed_path])

        assert result.exit_code == EXIT_CODE_PASS
        assert "economics" in result.output

    def test_no_data(self, workspace):
        result = runner.invoke(app, ["economics"])

        assert result.exit_code == EXIT_CODE_PASS
        assert NO_DATA_MESSAGE in result.output


class TestRun:
    """Test wrapping a command."""

    def test_exit_code_and_output_preserved(self, workspace):
        result = runner.invoke(app, ["run", "--", sys.executable, "-c", "print('hi'); raise SystemExit(3)"])

        assert result.exit_code == 3
        assert "hi" in result.output

        with open_store(workspace["db"]) as store:
            record, = store.iter_records()
        assert record.success is False
        assert record.tool_id.startswith(os.path.basename(sys.executable))

    def test_missing_command(self, workspace):
        result = runner.invoke(app, ["run"])
        assert result.exit_code == 2

    def test_unknown_program(self, workspace):
        result = runner.invoke(app, ["run", "--", "/nonexistent/tokentrim-tool"])
        assert result.exit_code == 127

    def test_bad_config_fails(self, workspace):
        with open(workspace["config"], "w", encoding="utf-8") as f:
            yaml.dump({"bogus": True}, f)

        result = runner.invoke(app, ["run", "--", sys.executable, "-c", "pass"])

        assert result.exit_code == 1
        assert "Configuration error" in result.output


class TestInit:
    """Test first-time setup."""

    def test_creates_config_and_database(self, workspace, monkeypatch):
        config_path = os.path.join(workspace["dir"], "fresh", "config.yaml")
        monkeypatch.setenv("TOKENTRIM_CONFIG", config_path)

        result = runner.invoke(app, ["init"])

        assert result.exit_code == EXIT_CODE_PASS
        assert os.path.exists(config_path)
        assert os.path.exists(workspace["db"])
        assert "Database initialized" in result.output

        again = runner.invoke(app, ["init"])
        assert again.exit_code == EXIT_CODE_PASS
        assert "already exists" in again.output


class TestAdapters:
    """Test the adapter listing."""

    def test_lists_builtin_adapters(self, workspace):
        result = runner.invoke(app, ["adapters"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "git status" in result.output
        assert "git.status" in result.output

    def test_disabled_adapters_marked(self, workspace):
        with open(workspace["config"], "w", encoding="utf-8") as f:
            yaml.dump({"adapters": {"disabled": ["docker"]}}, f)

        result = runner.invoke(app, ["adapters"])

        assert "disabled" in result.output
