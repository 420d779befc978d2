"""Tests for the typer command line."""

import pytest
from typer.testing import CliRunner

from holdfast.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_env(tmp_path, monkeypatch):
    monkeypatch.setattr("holdfast.config.CONFIG_FILE", tmp_path / "config.json")
    monkeypatch.setenv("HOLDFAST_DB_PATH", str(tmp_path / "cli.db"))
    monkeypatch.setenv("HOLDFAST_OWNER", "alice")


def invoke(*args):
    return runner.invoke(app, list(args))


class TestSessionCommands:
    """Tests for start/pause/resume/end."""

    def test_full_cycle(self):
        result = invoke("start", "--goal-hours", "1")
        assert result.exit_code == 0, result.output
        assert "Started session" in result.output
        assert "Goal: 1h" in result.output

        result = invoke("pause", "--reason", "Cleaning")
        assert result.exit_code == 0, result.output
        assert "Paused session" in result.output

        result = invoke("resume")
        assert result.exit_code == 0, result.output

        result = invoke("end")
        assert result.exit_code == 0, result.output
        assert "Ended session" in result.output

    def test_second_pause_hits_cooldown(self):
        invoke("start")
        invoke("pause")
        invoke("resume")

        result = invoke("pause")
        assert result.exit_code == 1
        assert "Cooldown active" in result.output
        assert "Remaining" in result.output

    def test_duplicate_start(self):
        invoke("start")
        result = invoke("start")
        assert result.exit_code == 1
        assert "already has an open session" in result.output

    def test_end_without_session(self):
        result = invoke("end")
        assert result.exit_code == 1
        assert "No open session" in result.output

    def test_resume_when_not_paused(self):
        invoke("start")
        result = invoke("resume")
        assert result.exit_code == 1
        assert "not paused" in result.output

    def test_owner_option(self):
        invoke("start")
        result = invoke("start", "--owner", "bob")
        assert result.exit_code == 0, result.output
        assert "for bob" in result.output


class TestUnlock:
    """Tests for the emergency unlock command."""

    def test_unlock_then_cooldown(self):
        invoke("start")
        result = invoke("unlock", "Medical Emergency", "--notes", "urgent")
        assert result.exit_code == 0, result.output
        assert "Emergency unlock successful" in result.output

        invoke("start")
        result = invoke("unlock", "Other")
        assert result.exit_code == 1
        assert "on cooldown" in result.output


class TestReadCommands:
    """Tests for status, history, goals, settings and logs."""

    def test_status_without_session(self):
        result = invoke("status")
        assert result.exit_code == 0
        assert "No active session" in result.output

    def test_status_with_session(self):
        invoke("start", "--goal-hours", "2", "--hardcore")
        result = invoke("status")
        assert result.exit_code == 0, result.output
        assert "ACTIVE" in result.output
        assert "Goal" in result.output
        assert "Hardcore" in result.output

    def test_history(self):
        invoke("start")
        invoke("end")
        result = invoke("history")
        assert result.exit_code == 0, result.output
        assert "manual" in result.output

    def test_goals(self):
        result = invoke("goal-add", "Marathon", "10")
        assert result.exit_code == 0, result.output
        assert "Added goal 'Marathon'" in result.output

        result = invoke("goals")
        assert result.exit_code == 0, result.output
        assert "Marathon" in result.output
        assert "0/1 completed" in result.output

    def test_goal_add_rejects_non_positive(self):
        result = invoke("goal-add", "Nothing", "0")
        assert result.exit_code == 1

    def test_settings(self):
        result = invoke("settings", "--emergency-cooldown-hours", "0")
        assert result.exit_code == 0, result.output
        assert "Settings saved" in result.output
        assert "disabled" in result.output

        result = invoke("settings")
        assert "Emergency cooldown: disabled" in result.output

    def test_logs(self):
        invoke("start")
        result = invoke("logs", "--type", "lifecycle")
        assert result.exit_code == 0, result.output
        assert "[start]" in result.output

    def test_logs_bad_type(self):
        result = invoke("logs", "--type", "bogus")
        assert result.exit_code == 1
