"""Tests for cli.py - click commands end to end against a temporary data dir."""

import json
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from site_blocker import __version__
from site_blocker.app import create_app
from site_blocker.cli import format_remaining, main
from site_blocker.common import utcnow

from conftest import FakeClock


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def invoke(tmp_path, data_dir):
    """Invoke the CLI with config and data isolated under tmp_path."""
    runner = CliRunner()
    env = {
        "SITE_BLOCKER_DATA_DIR": str(data_dir),
        "TIMEZONE": "UTC",
        "DEFAULT_GRANT_MINUTES": None,
        "POLL_INTERVAL": None,
        "DISCORD_WEBHOOK_URL": None,
    }

    def _invoke(*args, input=None):
        return runner.invoke(
            main, ["--config-dir", str(tmp_path), *args], env=env, input=input
        )

    return _invoke


class TestFormatRemaining:
    """Tests for format_remaining."""

    def test_minutes(self):
        now = utcnow()
        assert format_remaining(now + timedelta(minutes=12, seconds=5), now) == "12 min"

    def test_under_a_minute(self):
        now = utcnow()
        assert format_remaining(now + timedelta(seconds=30), now) == "< 1 min"

    def test_none(self):
        assert format_remaining(None) == ""


class TestMain:
    """Tests for the main group."""

    def test_version(self, invoke):
        result = invoke("--version")
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_without_command(self, invoke):
        result = invoke()
        assert result.exit_code == 0
        assert "unblock" in result.output

    def test_config_error(self, tmp_path):
        runner = CliRunner()
        result = runner.invoke(
            main, ["--config-dir", str(tmp_path), "list"], env={"TIMEZONE": "Not/AZone"}
        )
        assert result.exit_code == 1
        assert "Config error" in result.output


class TestSiteCommands:
    """Tests for add, remove, block, allow and duration."""

    def test_add_and_list(self, invoke):
        result = invoke("add", "https://www.example.com/page", "--minutes", "15")
        assert result.exit_code == 0
        assert "Blocked: example.com" in result.output

        result = invoke("list")
        assert "example.com" in result.output
        assert "blocked" in result.output
        assert "15 min" in result.output

    def test_add_duplicate(self, invoke):
        invoke("add", "example.com")
        result = invoke("add", "example.com")
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_add_invalid_minutes(self, invoke):
        assert invoke("add", "example.com", "--minutes", "0").exit_code == 2

    def test_remove(self, invoke):
        invoke("add", "example.com")
        assert invoke("remove", "example.com").exit_code == 0
        assert "example.com" not in invoke("list").output

    def test_remove_missing(self, invoke):
        result = invoke("remove", "missing.com")
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_allow_then_block(self, invoke):
        invoke("add", "example.com")
        assert invoke("allow", "example.com").exit_code == 0
        assert "allowed" in invoke("list").output
        assert invoke("block", "example.com").exit_code == 0
        assert "example.com" in invoke("list", "--blocked").output

    def test_duration(self, invoke):
        invoke("add", "example.com")
        assert invoke("duration", "example.com", "25").exit_code == 0
        assert "25 min" in invoke("list").output

    def test_state_written(self, invoke, data_dir):
        invoke("add", "example.com")
        state = json.loads((data_dir / "state.json").read_text())
        assert state["sites"]["example.com"]["is_blocked"] is True


class TestGrantCommands:
    """Tests for unblock and extend."""

    def test_unblock(self, invoke, data_dir):
        invoke("add", "example.com")
        result = invoke("unblock", "example.com", "--reason", "reading the docs")
        assert result.exit_code == 0
        assert "Unblocked: example.com for 10 min" in result.output

        alarms = json.loads((data_dir / "alarms.json").read_text())
        assert set(alarms) == {"warning:example.com", "expiry:example.com"}

    def test_unblock_prompts_for_reason(self, invoke):
        invoke("add", "example.com")
        result = invoke("unblock", "example.com", input="reading the docs\n")
        assert result.exit_code == 0
        assert "Why do you need this site?" in result.output
        assert "Unblocked: example.com" in result.output

    def test_unblock_short_reason(self, invoke):
        invoke("add", "example.com")
        result = invoke("unblock", "example.com", "--reason", "abc")
        assert result.exit_code == 1
        assert "at least 5" in result.output

    def test_extend(self, invoke):
        invoke("add", "example.com")
        invoke("unblock", "example.com", "--reason", "reading the docs")
        result = invoke("extend", "example.com")
        assert result.exit_code == 0
        assert "Extended: example.com" in result.output

    def test_extend_blocked(self, invoke):
        invoke("add", "example.com")
        result = invoke("extend", "example.com")
        assert result.exit_code == 1
        assert "No active grant" in result.output


class TestQueryCommands:
    """Tests for check, history, stats and status."""

    def test_check(self, invoke):
        invoke("add", "example.com")
        result = invoke("check", "https://www.example.com/feed")
        assert result.exit_code == 1
        assert "blocked" in result.output

        assert invoke("check", "https://example.org").exit_code == 0

    def test_history(self, invoke):
        invoke("add", "example.com")
        invoke("unblock", "example.com", "--reason", "reading the docs")
        invoke("block", "example.com")

        result = invoke("history")
        assert result.exit_code == 0
        assert "reading the docs" in result.output
        assert "manual" in result.output

    def test_history_empty(self, invoke):
        assert "No unblocks recorded" in invoke("history").output

    def test_stats(self, invoke):
        invoke("add", "example.com")
        invoke("unblock", "example.com", "--reason", "reading the docs")
        result = invoke("stats")
        assert result.exit_code == 0
        assert "Last 24 hours: 1" in result.output

    def test_status(self, invoke):
        invoke("add", "example.com")
        invoke("unblock", "example.com", "--reason", "reading the docs")
        with patch("site_blocker.cli.get_crontab", return_value=""):
            result = invoke("status")
        assert result.exit_code == 0
        assert "Running unblocks (1)" in result.output
        assert "expiry:example.com" in result.output
        assert "NOT FOUND" in result.output


class TestWorkerCommands:
    """Tests for tick and run."""

    def test_tick_reblocks_expired_grant(self, invoke):
        invoke("add", "example.com", "--minutes", "1")
        invoke("unblock", "example.com", "--reason", "reading the docs")

        later = FakeClock(utcnow() + timedelta(minutes=5))
        with patch(
            "site_blocker.cli.create_app",
            side_effect=lambda config: create_app(config, clock=later),
        ):
            assert invoke("tick").exit_code == 0

        assert "example.com" in invoke("list", "--blocked").output
        assert "timer" in invoke("history").output

    def test_run_stops(self, invoke):
        with patch("site_blocker.alarms.AlarmService.run", new_callable=AsyncMock) as run_loop:
            result = invoke("run")
        assert result.exit_code == 0
        assert run_loop.await_args[0][1] == 15
        assert "Stopped" in result.output


class TestNotificationCommand:
    """Tests for test-notifications."""

    def test_without_webhook(self, invoke):
        result = invoke("test-notifications")
        assert result.exit_code == 1
        assert "DISCORD_WEBHOOK_URL" in result.output

    def test_with_webhook(self, tmp_path, data_dir):
        env = {
            "SITE_BLOCKER_DATA_DIR": str(data_dir),
            "TIMEZONE": "UTC",
            "DISCORD_WEBHOOK_URL": "https://discord.com/api/webhooks/1/x",
        }
        with patch("site_blocker.cli.send_discord_notification", return_value=True) as send:
            result = CliRunner().invoke(
                main, ["--config-dir", str(tmp_path), "test-notifications"], env=env
            )
        assert result.exit_code == 0
        assert send.call_args[1]["webhook_url"] == "https://discord.com/api/webhooks/1/x"
