"""Tests for matcher.py - URL to blocked domain matching."""

import pytest

from site_blocker.matcher import (
    DomainMatcher,
    domain_matches,
    extract_hostname,
    get_domain_aliases,
    matches_any,
)

from conftest import run


class TestExtractHostname:
    """Tests for extract_hostname."""

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://www.example.com/path?q=1", "example.com"),
            ("http://Example.COM", "example.com"),
            ("example.com/page", "example.com"),
            ("www.example.com", "example.com"),
            ("https://user:pw@mail.example.com:8443/x", "mail.example.com"),
        ],
    )
    def test_extracts(self, url, expected):
        assert extract_hostname(url) == expected

    def test_unparsable_falls_back_to_raw(self):
        """Test a value urlsplit rejects is used as-is."""
        assert extract_hostname("http://[broken") == "http://[broken"


class TestAliases:
    """Tests for get_domain_aliases."""

    def test_direct_alias(self):
        assert get_domain_aliases("twitter.com") == ["x.com"]
        assert get_domain_aliases("x.com") == ["twitter.com"]

    def test_subdomain_alias(self):
        assert get_domain_aliases("mobile.twitter.com") == ["mobile.x.com"]

    def test_no_alias(self):
        assert get_domain_aliases("example.com") == []

    def test_custom_table(self):
        assert get_domain_aliases("a.com", {"a.com": ["b.com", "c.com"]}) == ["b.com", "c.com"]


class TestMatching:
    """Tests for domain_matches and matches_any."""

    def test_exact_and_subdomain(self):
        assert domain_matches("example.com", "example.com")
        assert domain_matches("mail.example.com", "example.com")

    def test_suffix_is_not_subdomain(self):
        """Test notexample.com does not match example.com."""
        assert not domain_matches("notexample.com", "example.com")

    @pytest.mark.parametrize(
        "url",
        [
            "https://www.example.com/path",
            "http://mail.example.com",
            "example.com",
        ],
    )
    def test_blocked_urls(self, url):
        assert matches_any(url, ["example.com"]) is True

    @pytest.mark.parametrize(
        "url", ["https://notexample.com", "https://example.org", "https://example.com.evil.org"]
    )
    def test_unblocked_urls(self, url):
        assert matches_any(url, ["example.com"]) is False

    def test_alias_match(self):
        """Test blocking twitter.com also blocks x.com."""
        assert matches_any("https://x.com/home", ["twitter.com"]) is True
        assert matches_any("https://mobile.twitter.com", ["x.com"]) is True

    def test_empty_blocklist(self):
        assert matches_any("https://example.com", []) is False


class TestDomainMatcher:
    """Tests for DomainMatcher against the store."""

    def test_only_blocked_sites_match(self, store):
        run(store.upsert_site("example.com"))
        run(store.upsert_site("news.com"))
        run(store.grant_unblock("news.com"))
        matcher = DomainMatcher(store)

        assert run(matcher.is_domain_blocked("https://www.example.com/a")) is True
        assert run(matcher.is_domain_blocked("https://news.com")) is False
        assert run(matcher.is_domain_blocked("https://other.com")) is False
