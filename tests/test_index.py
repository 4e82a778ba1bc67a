"""Tests for the index layer: text predicates and FTS maintenance."""
import sqlite3

from visitlog import index
from visitlog.models import SearchQuery, Visit
from visitlog.query import QueryEngine
from visitlog.sqlite_store import VisitStore

NOW = 1_700_000_000


class TestTextFilter:
    def test_empty_text_has_no_predicate(self):
        assert index.text_filter("", fts=True) == (None, [])

    def test_long_text_uses_fts_phrase(self):
        sql, params = index.text_filter('say "hi"', fts=True)
        assert "MATCH" in sql
        assert params == ['"say ""hi"""']

    def test_short_ascii_uses_like(self):
        sql, params = index.text_filter("a%", fts=True)
        assert "LIKE" in sql
        assert params == ["%a\\%%", "%a\\%%"]

    def test_short_non_ascii_uses_lowercase(self):
        sql, params = index.text_filter("ßA", fts=True)
        assert "visitlog_fold" in sql
        assert params == ["ßa", "ßa"]

    def test_without_fts_long_text_scans(self):
        sql, _ = index.text_filter("python", fts=False)
        assert "LIKE" in sql

    def test_fold_is_null_safe(self):
        assert index.fold(None) is None
        assert index.fold("Straße") == "straße"


class TestTitlePrefixFilter:
    def test_empty_prefix_has_no_predicate(self):
        assert index.title_prefix_filter("") == (None, [])

    def test_ascii_prefix_is_a_nocase_range(self):
        sql, params = index.title_prefix_filter("Py")
        assert "COLLATE NOCASE >= ?" in sql
        assert params == ["Py", "Py\U0010ffff"]

    def test_non_ascii_prefix_compares_lowercased(self):
        sql, params = index.title_prefix_filter("ÉC")
        assert "visitlog_fold" in sql
        assert params == [2, "éc"]

    def test_range_scan_uses_title_index(self, store):
        store.insert_many(
            Visit(url=f"https://example.com/{i}", title=f"Page {i}", visit_time=i) for i in range(200)
        )
        sql, params = QueryEngine(store)._title_prefix_sql("page 1", 10)
        with store.reader() as conn:
            plan = " ".join(str(row[-1]) for row in conn.execute("EXPLAIN QUERY PLAN " + sql, params))
        assert "idx_visits_title" in plan


class TestFtsMaintenance:
    def test_index_rebuilt_when_out_of_step(self, tmp_visitlog_dir):
        db_path = tmp_visitlog_dir / "drift.db"
        with VisitStore(db_path) as store:
            store.insert(Visit(url="https://example.com/", title="Drifted", visit_time=NOW))

        # Wipe the FTS index behind the store's back
        conn = sqlite3.connect(str(db_path))
        conn.execute("INSERT INTO visits_fts(visits_fts) VALUES ('delete-all')")
        conn.commit()
        conn.close()

        with VisitStore(db_path) as store:
            assert store.check_integrity() == []
            results = QueryEngine(store).search(SearchQuery(text="drifted"))
            assert len(results) == 1

    def test_delete_keeps_fts_in_step(self, store):
        vid = store.insert(Visit(url="https://example.com/", title="Searchable", visit_time=NOW))
        store.delete(vid)
        assert store.check_integrity() == []
