"""Tests for host filtering."""

import pytest

from komandan.exceptions import PatternError
from komandan.host_filter import compile_pattern, filter_hosts, format_filter_summary, match_host
from komandan.types import Host


@pytest.fixture
def hosts():
    return [
        Host(address="10.0.0.1", name="web01", tags={"web", "prod"}),
        Host(address="10.0.0.2", name="web02", tags={"web", "staging"}),
        Host(address="10.0.0.3", name="db01", tags={"db", "prod"}),
        Host(address="10.0.0.4", tags={"cache"}),
    ]


def names(hosts):
    return [h.name for h in hosts]


class TestCompilePattern:
    """Tests for single pattern compilation."""

    def test_literal(self):
        """Test exact matching."""
        matcher = compile_pattern("web01")

        assert matcher("web01")
        assert not matcher("web011")

    def test_regex_searches(self):
        """Test that ~regex matches anywhere in the value."""
        matcher = compile_pattern("~eb0")

        assert matcher("web01")
        assert not matcher("db01")

    def test_invalid_regex(self):
        """Test that a bad regex raises PatternError."""
        with pytest.raises(PatternError, match="Invalid host pattern"):
            compile_pattern("~web[")


class TestFilterHosts:
    """Tests for filtering host lists."""

    def test_by_name(self, hosts):
        """Test filtering by exact name."""
        assert names(filter_hosts(hosts, "db01")) == ["db01"]

    def test_by_tag(self, hosts):
        """Test filtering by tag."""
        assert names(filter_hosts(hosts, "prod")) == ["web01", "db01"]

    def test_by_regex(self, hosts):
        """Test filtering by regular expression."""
        assert names(filter_hosts(hosts, "~^web")) == ["web01", "web02"]

    def test_list_of_patterns(self, hosts):
        """Test that a host matching any pattern is kept, in input order."""
        assert names(filter_hosts(hosts, ["db01", "~^web0[2]"])) == ["web02", "db01"]

    def test_unnamed_host_matches_by_tag(self, hosts):
        """Test that hosts without a name can match through tags."""
        matched = filter_hosts(hosts, "cache")

        assert [h.address for h in matched] == ["10.0.0.4"]

    def test_no_match(self, hosts):
        """Test that no match gives an empty list."""
        assert filter_hosts(hosts, "mail") == []

    def test_non_string_pattern(self, hosts):
        """Test that non-string patterns are rejected."""
        with pytest.raises(PatternError):
            filter_hosts(hosts, ["web", 3])

    def test_match_host_without_tags(self):
        """Test matching objects that only carry a name."""
        host = Host(address="h", name="solo")

        assert match_host(host, [compile_pattern("solo")])
        assert not match_host(host, [compile_pattern("other")])


class TestFormatFilterSummary:
    """Tests for the filter summary."""

    def test_all_matched(self):
        """Test the summary when nothing is excluded."""
        assert format_filter_summary(3, 3, "~.") == "All 3 host(s) matched filter: ~."

    def test_some_excluded(self):
        """Test the summary with excluded hosts."""
        summary = format_filter_summary(4, 1, ["db01", "web"])

        assert summary == "Filter 'db01,web': 1/4 hosts (3 excluded)"
