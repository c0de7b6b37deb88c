"""Tests for commands.py - the command surface used by the CLI."""

from datetime import timedelta
from unittest.mock import patch

import pytest

from site_blocker.alarms import ExpiryDue, WarningDue
from site_blocker.commands import validate_reason
from site_blocker.exceptions import ValidationError

from conftest import START, run


class TestValidateReason:
    """Tests for validate_reason."""

    @pytest.mark.parametrize("reason", ["", "   ", "abcd", "  ab  ", None])
    def test_too_short(self, reason):
        with pytest.raises(ValidationError):
            validate_reason(reason)

    def test_strips(self):
        assert validate_reason("  need docs  ") == "need docs"


class TestAddRemove:
    """Tests for add_site and remove_site."""

    def test_add(self, commands):
        result = run(commands.add_site("https://www.example.com/page", 15))
        assert result.success
        assert result.payload["domain"] == "example.com"
        assert result.payload["is_blocked"] is True
        assert result.payload["grant_duration_minutes"] == 15

    def test_add_duplicate(self, commands):
        run(commands.add_site("example.com"))
        result = run(commands.add_site("example.com"))
        assert not result.success
        assert "already exists" in result.error

    def test_add_invalid(self, commands):
        result = run(commands.add_site("bad domain!"))
        assert not result.success
        assert "Invalid domain" in result.error

    def test_add_writes_audit_log(self, commands, data_dir):
        run(commands.add_site("example.com"))
        audit = (data_dir / "logs" / "audit.log").read_text()
        assert "ADD | example.com" in audit

    def test_remove_clears_alarms(self, commands, alarms):
        run(commands.add_site("example.com"))
        run(commands.unblock_with_reason("example.com", "need the docs"))

        assert run(commands.remove_site("example.com")).success
        assert run(alarms.pending()) == []
        assert run(commands.get_site_info("example.com")).success is False

    def test_remove_missing(self, commands):
        result = run(commands.remove_site("missing.com"))
        assert not result.success
        assert "not found" in result.error


class TestUnblockWithReason:
    """Tests for unblock_with_reason."""

    def test_grant(self, commands, alarms):
        run(commands.add_site("example.com", 10))
        result = run(commands.unblock_with_reason("example.com", "  reading the docs "))

        assert result.success
        timer = result.payload["timer_info"]
        assert timer["domain"] == "example.com"
        assert timer["duration_minutes"] == 10
        assert timer["unblock_until"] == (START + timedelta(minutes=10)).isoformat()
        assert result.payload["outcome"] == "armed"
        assert run(alarms.get(ExpiryDue("example.com"))) == START + timedelta(minutes=10)

        history = run(commands.get_history()).payload
        assert history[0]["reason"] == "reading the docs"

    def test_short_reason_rejected(self, commands, store):
        """Test a short reason fails before touching the store."""
        run(commands.add_site("example.com"))
        result = run(commands.unblock_with_reason("example.com", "abc"))

        assert not result.success
        assert "at least 5" in result.error
        assert run(store.list_history()) == []
        assert run(store.get_site("example.com")).is_blocked is True

    def test_missing_domain(self, commands):
        result = run(commands.unblock_with_reason("missing.com", "good reason"))
        assert not result.success
        assert "not found" in result.error

    def test_storage_failure_reported(self, commands):
        run(commands.add_site("example.com"))
        with patch("site_blocker.store.write_secure_file", side_effect=OSError("disk full")):
            result = run(commands.unblock_with_reason("example.com", "good reason"))
        assert not result.success
        assert "Storage failure" in result.error


class TestExtendGrant:
    """Tests for extend_grant."""

    def test_extend(self, commands, alarms, clock):
        run(commands.add_site("example.com", 10))
        run(commands.unblock_with_reason("example.com", "reading the docs"))
        clock.advance(minutes=8)

        result = run(commands.extend_grant("example.com"))
        assert result.success
        new_until = clock.now + timedelta(minutes=10)
        assert result.payload["timer_info"]["unblock_until"] == new_until.isoformat()
        assert run(alarms.get(ExpiryDue("example.com"))) == new_until
        assert run(alarms.get(WarningDue("example.com"))) == new_until - timedelta(minutes=1)

    def test_extend_blocked(self, commands):
        """Test extending a BLOCKED site fails with no timer info."""
        run(commands.add_site("example.com"))
        result = run(commands.extend_grant("example.com"))
        assert not result.success
        assert result.payload == {"timer_info": None}


class TestToggleSite:
    """Tests for toggle_site."""

    def test_block_during_grant(self, commands, store, alarms):
        run(commands.add_site("example.com"))
        run(commands.unblock_with_reason("example.com", "reading the docs"))

        result = run(commands.toggle_site("example.com", True))
        assert result.success
        assert result.payload["is_blocked"] is True
        assert run(alarms.pending()) == []
        assert run(store.list_history())[0].was_auto_reblocked is False

    def test_allow_without_limit(self, commands, store, alarms):
        run(commands.add_site("example.com"))
        run(commands.unblock_with_reason("example.com", "reading the docs"))

        result = run(commands.toggle_site("example.com", False))
        assert result.success
        assert result.payload["is_blocked"] is False
        assert result.payload["unblock_until"] is None
        assert run(alarms.pending()) == []
        entry = run(store.list_history())[0]
        assert entry.reblocked_at is not None
        assert entry.was_auto_reblocked is False

    def test_missing(self, commands):
        assert not run(commands.toggle_site("missing.com", True)).success


class TestQueries:
    """Tests for query commands."""

    def test_update_duration(self, commands):
        run(commands.add_site("example.com"))
        assert run(commands.update_duration("example.com", 30)).success
        assert run(commands.get_site_info("example.com")).payload["grant_duration_minutes"] == 30

    def test_update_duration_invalid(self, commands):
        run(commands.add_site("example.com"))
        assert not run(commands.update_duration("example.com", 0)).success

    def test_blocked_listing(self, commands):
        run(commands.add_site("a.com"))
        run(commands.add_site("b.com"))
        run(commands.toggle_site("b.com", False))

        assert len(run(commands.get_all_sites()).payload) == 2
        assert [s["domain"] for s in run(commands.get_blocked_sites()).payload] == ["a.com"]

    def test_is_blocked(self, commands):
        run(commands.add_site("example.com"))
        assert run(commands.is_blocked("https://sub.example.com/x")).payload is True
        assert run(commands.is_blocked("https://example.org")).payload is False

    def test_stats(self, commands):
        run(commands.add_site("example.com"))
        run(commands.unblock_with_reason("example.com", "reading the docs"))
        stats = run(commands.get_stats()).payload
        assert stats["total_today"] == 1
        assert stats["most_unblocked"] == {"domain": "example.com", "count": 1}
