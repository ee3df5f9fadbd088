"""
Tests for the CLI interface.
"""
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from fleet_agent.cli.main import EXIT_CODE_FAIL, EXIT_CODE_PASS, _format_cost, _format_usage_line, app
from fleet_agent.core.heartbeat import HEARTBEAT_OK
from fleet_agent.storage.repository import UsageRepository
from tests.fakes import FakeAgent

runner = CliRunner()

CHECKLIST = "- [ ] rotate the logs\n"


@pytest.fixture
def env(tmp_path):
    """Environment for a CLI invocation against a temporary workspace."""
    return {
        "AGENT_MODEL": "claude-haiku-4-5",
        "AGENT_WORKSPACE": str(tmp_path),
        "MEMORY_DB_PATH": str(tmp_path / "agent.db"),
        "PRICES_FILE": None,
        "HEARTBEAT_INTERVAL": None,
    }


@pytest.fixture
def mock_logging():
    """Keep CLI runs from reconfiguring logging for the rest of the session."""
    with patch('fleet_agent.cli.main.configure_logging') as mock:
        yield mock


class TestCLI:
    """Test CLI commands."""

    def test_no_command(self):
        result = runner.invoke(app, [])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Use --help" in result.output

    def test_missing_config_exits(self, env):
        env["AGENT_MODEL"] = None
        result = runner.invoke(app, ["usage"], env=env)
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Configuration error" in result.output
        assert "AGENT_MODEL" in result.output

    def test_init_creates_database(self, env, tmp_path):
        env["MEMORY_DB_PATH"] = str(tmp_path / "nested" / "agent.db")
        result = runner.invoke(app, ["init"], env=env)
        assert result.exit_code == EXIT_CODE_PASS
        assert "Database initialized successfully" in result.output
        assert (tmp_path / "nested" / "agent.db").exists()

    def test_usage_empty(self, env):
        result = runner.invoke(app, ["usage"], env=env)
        assert result.exit_code == EXIT_CODE_PASS
        assert "Usage for main" in result.output
        assert "No usage recorded yet." in result.output

    def test_usage_summary(self, env):
        runner.invoke(app, ["init"], env=env)
        repository = UsageRepository(env["MEMORY_DB_PATH"])
        repository.record_usage("main", "t1", "claude-haiku-4-5", 1_000_000, 0, cache_read_tokens=250_000)
        repository.record_usage("main", "t2", "claude-haiku-4-5", 1_000_000, 0)

        result = runner.invoke(app, ["usage", "main", "--recent", "5"], env=env)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Requests: 2" in result.output
        assert "Input tokens: 2,000,000" in result.output
        assert "Cache hit rate: 12.5%" in result.output
        assert "Total cost: $2.0000" in result.output
        assert "Recent requests" in result.output

    def test_usage_for_thread(self, env):
        runner.invoke(app, ["init"], env=env)
        repository = UsageRepository(env["MEMORY_DB_PATH"])
        repository.record_usage("main", "t1", "claude-haiku-4-5", 100, 0)
        repository.record_usage("main", "t2", "claude-haiku-4-5", 100, 0)

        result = runner.invoke(app, ["usage", "main", "--thread", "t1"], env=env)

        assert "Usage for main / thread t1" in result.output
        assert "Requests: 1" in result.output
        assert "Cache hit rate: 0.0%" in result.output

    def test_unknown_cost_shown_as_na(self, env):
        runner.invoke(app, ["init"], env=env)
        UsageRepository(env["MEMORY_DB_PATH"]).record_usage("main", None, "mystery-model", 10, 10)

        result = runner.invoke(app, ["usage"], env=env)

        assert "Total cost: n/a" in result.output


class TestHeartbeatCommand:
    """Test the one-shot heartbeat command."""

    def test_notification_printed(self, env, tmp_path, mock_logging):
        (tmp_path / "HEARTBEAT.md").write_text(CHECKLIST, encoding="utf-8")
        agent = FakeAgent(text="Logs rotated, disk at 91%")

        with patch('fleet_agent.cli.main.build_agent', return_value=agent):
            result = runner.invoke(app, ["heartbeat"], env=env)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Heartbeat: notified" in result.output
        assert "Logs rotated, disk at 91%" in result.output
        assert UsageRepository(env["MEMORY_DB_PATH"]).summarize("main").requests == 1

    def test_acknowledged(self, env, tmp_path, mock_logging):
        (tmp_path / "HEARTBEAT.md").write_text(CHECKLIST, encoding="utf-8")

        with patch('fleet_agent.cli.main.build_agent', return_value=FakeAgent(text=HEARTBEAT_OK)):
            result = runner.invoke(app, ["heartbeat"], env=env)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Heartbeat: ok" in result.output

    def test_missing_document(self, env, mock_logging):
        agent = FakeAgent()
        with patch('fleet_agent.cli.main.build_agent', return_value=agent):
            result = runner.invoke(app, ["heartbeat"], env=env)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Heartbeat: skipped_missing" in result.output
        assert agent.calls == []

    def test_failure_exits_nonzero(self, env, tmp_path, mock_logging):
        (tmp_path / "HEARTBEAT.md").write_text(CHECKLIST, encoding="utf-8")

        with patch('fleet_agent.cli.main.build_agent', return_value=FakeAgent(error=RuntimeError("down"))):
            result = runner.invoke(app, ["heartbeat"], env=env)

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Heartbeat: failed" in result.output


class TestFormatting:
    """Test output helpers."""

    def test_format_cost(self):
        assert _format_cost(None) == "n/a"
        assert _format_cost(0.0) == "$0.0000"
        assert _format_cost(1234.5) == "$1,234.5000"

    def test_usage_line(self):
        line = _format_usage_line({"inputTokens": 10, "outputTokens": 4}, 0.0021, "claude-haiku-4-5")
        assert line == "[tokens: 10 input + 4 output | cost: $0.0021 | model: claude-haiku-4-5]"

    def test_usage_line_without_usage(self):
        assert "cost: n/a" in _format_usage_line(None, None, "m")
