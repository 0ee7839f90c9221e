"""IncidentSource query semantics against a real SQLite store."""

import pytest

from conftest import NOW, days_ago
from socpatterns.sources.incidents import IncidentSource, SourceError


class TestQuery:
    def test_half_open_interval(self, source, add_incident):
        add_incident("a", days_ago(10))
        add_incident("a", days_ago(5))
        add_incident("a", days_ago(1))
        got = source.query(start=days_ago(10), end=days_ago(1))
        assert [i.discovered_at for i in got] == [days_ago(10), days_ago(5)]

    def test_unattributed_incidents_excluded(self, source, add_incident):
        add_incident(None, days_ago(3))
        add_incident("a", days_ago(3))
        assert [i.actor_id for i in source.query()] == ["a"]
        assert source.count() == 1

    def test_actor_filter_and_ordering(self, source, add_incident):
        add_incident("a", days_ago(30))
        add_incident("b", days_ago(20))
        add_incident("a", days_ago(10))
        got = source.query(actor_id="a", latest_first=True)
        assert [i.discovered_at for i in got] == [days_ago(10), days_ago(30)]

    def test_returned_timestamps_are_utc(self, source, add_incident):
        add_incident("a", days_ago(1))
        (inc,) = source.query()
        assert inc.discovered_at == days_ago(1)
        assert inc.discovered_at.tzinfo is not None


class TestLatestAndExists:
    def test_latest_strictly_before(self, source, add_incident):
        add_incident("a", days_ago(100))
        add_incident("a", days_ago(90))
        assert source.latest("a", before=days_ago(90)).discovered_at == days_ago(100)
        assert source.latest("a").discovered_at == days_ago(90)

    def test_latest_none_without_history(self, source, add_incident):
        add_incident("a", days_ago(1))
        assert source.latest("a", before=days_ago(30)) is None

    def test_exists_between_is_exclusive_on_both_ends(self, source, add_incident):
        add_incident("a", days_ago(100))
        add_incident("a", days_ago(7))
        assert source.exists_between("a", days_ago(100), days_ago(7)) is False
        add_incident("a", days_ago(50))
        assert source.exists_between("a", days_ago(100), days_ago(7)) is True

    def test_exists_ignores_other_actors(self, source, add_incident):
        add_incident("b", days_ago(50))
        assert source.exists_between("a", days_ago(100), days_ago(7)) is False


class TestDistinctActors:
    def test_most_recent_first_and_unique(self, source, add_incident):
        add_incident("old", days_ago(40))
        add_incident("new", days_ago(2))
        add_incident("new", days_ago(3))
        assert source.distinct_actors(start=days_ago(60)) == ["new", "old"]

    def test_scan_limit_bounds_the_sample(self, source, add_incident):
        add_incident("oldest", days_ago(300))
        for i in range(5):
            add_incident("busy", days_ago(200 + i))
        assert source.distinct_actors(end=NOW, scan_limit=5) == ["busy"]
        assert source.distinct_actors(end=NOW, scan_limit=6) == ["busy", "oldest"]

    def test_actor_names(self, source, add_actor):
        add_actor("apt29", "Cozy Bear")
        assert source.actor_names(["apt29", "unknown"]) == {"apt29": "Cozy Bear"}
        assert source.actor_names([]) == {}


class TestFailures:
    def test_store_errors_surface_as_source_error(self, bare_engine):
        source = IncidentSource(bare_engine)
        with pytest.raises(SourceError):
            source.query()
        with pytest.raises(SourceError):
            source.count()
        with pytest.raises(SourceError):
            source.exists_between("a", days_ago(10), days_ago(1))
