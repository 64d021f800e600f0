"""Tests for the Parlance CLI.

Test Coverage:
- estimate: text argument and --file
- budget: JSON budget output
- inspect: assembled turn and trigger info from a JSON-Lines history
"""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from parlance.interfaces.cli.app import cli
from tests.conftest import make_exchanges, text_of


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def system_file(tmp_path):
    path = tmp_path / "system.txt"
    path.write_text(text_of(200))
    return path


@pytest.fixture
def history_file(tmp_path):
    path = tmp_path / "chat.jsonl"
    path.write_text("\n".join(m.model_dump_json() for m in make_exchanges(15)) + "\n")
    return path


class TestEstimateCommand:
    """Test the estimate command."""

    def test_estimate_text(self, runner):
        result = runner.invoke(cli, ["estimate", "hello world"])

        assert result.exit_code == 0
        assert result.output.strip() == "3"

    def test_estimate_file(self, runner, tmp_path):
        path = tmp_path / "payload.json"
        path.write_text('{"a": 1}')

        result = runner.invoke(cli, ["estimate", "--file", str(path)])

        assert result.exit_code == 0
        assert result.output.strip() == "4"

    def test_estimate_requires_input(self, runner):
        result = runner.invoke(cli, ["estimate"])

        assert result.exit_code != 0


class TestBudgetCommand:
    """Test the budget command."""

    def test_budget_json(self, runner, system_file, tmp_path):
        context_file = tmp_path / "context.txt"
        context_file.write_text(text_of(300))

        result = runner.invoke(
            cli,
            ["budget", "--max-tokens", "4000", "--system-file", str(system_file),
             "--context-file", str(context_file)],
        )

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["message_history_budget"] == 3000
        assert data["safety_margin"] == 500


class TestInspectCommand:
    """Test the inspect command."""

    def test_inspect_triggers_summary(self, runner, system_file, history_file):
        result = runner.invoke(
            cli,
            ["inspect", str(history_file), "--system-file", str(system_file),
             "--message", "Where now?"],
        )

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["needs_summarization"] is True
        assert data["summary_trigger"]["current_ai_count"] == 15
        assert data["messages"][-1] == {"role": "user", "content": "Where now?"}

    def test_inspect_with_checkpoint(self, runner, system_file, history_file):
        result = runner.invoke(
            cli,
            ["inspect", str(history_file), "-s", str(system_file), "-m", "Hi",
             "--last-summary-end", "30", "--max-tokens", "4000"],
        )

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["needs_summarization"] is False
        assert data["summary_trigger"]["next_summary_at"] == 45
        assert data["budget"]["total_budget"] == 4000

    def test_inspect_invalid_history(self, runner, system_file, tmp_path):
        bad = tmp_path / "bad.jsonl"
        bad.write_text("{oops\n")

        result = runner.invoke(
            cli, ["inspect", str(bad), "-s", str(system_file), "-m", "Hi"]
        )

        assert result.exit_code != 0
        assert "invalid message record" in result.output

    def test_inspect_duplicate_sequence_number(self, runner, system_file, tmp_path):
        records = [
            {"id": "a", "content": "Hello", "role": "user", "sequence_number": 1},
            {"id": "b", "content": "Hi there", "role": "assistant", "sequence_number": 1},
        ]
        dup = tmp_path / "dup.jsonl"
        dup.write_text("\n".join(json.dumps(r) for r in records) + "\n")

        result = runner.invoke(
            cli, ["inspect", str(dup), "-s", str(system_file), "-m", "Hi"]
        )

        assert result.exit_code != 0
        assert "dup.jsonl:2: duplicate sequence number 1" in result.output
