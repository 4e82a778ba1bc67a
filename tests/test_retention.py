"""Tests for visitlog retention -- privacy clears and age-based expiry."""
import sqlite3

import pytest

from visitlog.errors import InvalidTimestamp, StorageError
from visitlog.models import SearchQuery, Visit

NOW = 1_700_000_000
DAY = 86400


@pytest.fixture
def seeded(history):
    """Ten visits at t=0..9 across two URLs."""
    for t in range(10):
        url = "https://even.example/" if t % 2 == 0 else "https://odd.example/"
        history.record_visit(Visit(url=url, title=f"Visit {t}", visit_time=t))
    return history


class TestClearOlderThan:
    def test_removes_strictly_older(self, seeded):
        assert seeded.clear_older_than(4) == 4
        assert seeded.search(SearchQuery(end_time=3)) == []
        remaining = sorted(v.visit_time for v in seeded.search(SearchQuery()))
        assert remaining == [4, 5, 6, 7, 8, 9]

    def test_zero_is_noop(self, seeded):
        assert seeded.clear_older_than(0) == 0
        assert seeded.count_visits() == 10

    def test_rejects_negative(self, seeded):
        with pytest.raises(InvalidTimestamp):
            seeded.clear_older_than(-1)

    def test_rejects_non_integer(self, seeded):
        with pytest.raises(InvalidTimestamp):
            seeded.clear_older_than("yesterday")

    def test_text_search_after_bulk_clear(self, seeded):
        seeded.clear_older_than(9)
        results = seeded.search(SearchQuery(text="visit"))
        assert [v.visit_time for v in results] == [9]


class TestClearSince:
    def test_removes_at_or_after(self, seeded):
        assert seeded.clear_since(7) == 3
        assert max(v.visit_time for v in seeded.search(SearchQuery())) == 6


class TestClearAll:
    def test_scenario_clear_all(self, seeded):
        seeded.clear_all()
        assert seeded.count_visits() == 0
        assert seeded.get_recent(10) == []

    def test_clear_all_on_empty_store(self, history):
        history.clear_all()
        assert history.count_visits() == 0

    def test_ranked_views_empty_after_clear(self, seeded):
        seeded.clear_all()
        assert seeded.get_most_visited(5) == []
        assert seeded.get_frecent(5) == []


class TestExpire:
    def test_expire_uses_clock(self, history):
        history.record_visit(Visit(url="https://old.example/", title="", visit_time=NOW - 40 * DAY))
        history.record_visit(Visit(url="https://new.example/", title="", visit_time=NOW - 10 * DAY))
        assert history.expire(30) == 1
        assert [v.url for v in history.get_recent(10)] == ["https://new.example/"]

    def test_expire_without_policy_keeps_everything(self, seeded):
        assert seeded.expire() == 0
        assert seeded.count_visits() == 10

    def test_expire_rejects_bad_days(self, history):
        with pytest.raises(ValueError):
            history.retention.expire(0)

    def test_expire_from_config(self, tmp_visitlog_dir, clock, monkeypatch):
        from visitlog.manager import HistoryManager

        monkeypatch.setenv("VISITLOG_RETENTION_DAYS", "7")
        with HistoryManager(tmp_visitlog_dir / "retention.db", clock=clock) as history:
            history.record_visit(Visit(url="https://a.example/", title="", visit_time=NOW - 8 * DAY))
            history.record_visit(Visit(url="https://a.example/", title="", visit_time=NOW - DAY))
            assert history.config.retention_days == 7
            assert history.expire() == 1


class TestAtomicity:
    def test_failure_reports_error_not_count(self, seeded, monkeypatch):
        from visitlog import index

        def boom(*args, **kwargs):
            raise sqlite3.OperationalError("database disk image is malformed")

        monkeypatch.setattr(index, "remove_where", boom)
        monkeypatch.setattr(index, "clear", boom)
        with pytest.raises(StorageError):
            seeded.clear_older_than(5)
        with pytest.raises(StorageError):
            seeded.clear_all()
        assert seeded.count_visits() == 10
