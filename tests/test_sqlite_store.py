"""Tests for visitlog VisitStore -- the durable visit log."""
import json
import os
import sqlite3
import stat

import pytest

from visitlog.errors import NotFound, StorageError
from visitlog.models import TransitionType, Visit
from visitlog.sqlite_store import EXPORT_FORMAT, VisitStore

NOW = 1_700_000_000


def _v(url="https://example.com/", title="Example", visit_time=NOW, **kwargs):
    return Visit(url=url, title=title, visit_time=visit_time, **kwargs)


class TestStoreBasics:
    """Core CRUD operations."""

    def test_insert_and_get(self, store):
        vid = store.insert(_v(transition_type=TransitionType.TYPED, from_url="https://ref.example/"))
        assert store.count() == 1

        visit = store.get(vid)
        assert visit is not None
        assert visit.id == vid
        assert visit.url == "https://example.com/"
        assert visit.transition_type is TransitionType.TYPED
        assert visit.from_url == "https://ref.example/"
        assert visit.visit_duration is None

    def test_insert_is_not_idempotent(self, store):
        a = store.insert(_v())
        b = store.insert(_v())
        assert a != b
        assert store.count() == 2

    def test_insert_rejects_preassigned_id(self, store):
        with pytest.raises(ValueError):
            store.insert(_v(id=7))

    def test_get_missing(self, store):
        assert store.get(12345) is None

    def test_delete(self, store):
        vid = store.insert(_v())
        assert store.delete(vid) is True
        assert store.get(vid) is None
        assert store.delete(vid) is False

    def test_ids_never_reused(self, store):
        first = store.insert(_v())
        store.delete(first)
        second = store.insert(_v())
        assert second > first

    def test_ids_never_reused_after_delete_all(self, store):
        ids = store.insert_many([_v(), _v()])
        store.delete_all()
        assert store.insert(_v()) > max(ids)

    def test_update_duration_overwrites(self, store):
        vid = store.insert(_v())
        store.update_duration(vid, 10)
        store.update_duration(vid, 25)
        assert store.get(vid).visit_duration == 25

    def test_update_duration_unknown_id(self, store):
        with pytest.raises(NotFound) as exc:
            store.update_duration(999, 10)
        assert exc.value.visit_id == 999

    def test_insert_many_single_transaction(self, store):
        ids = store.insert_many([_v(url=f"https://example.com/{i}") for i in range(10)])
        assert len(ids) == 10
        assert len(set(ids)) == 10
        assert store.count() == 10

    def test_insert_many_all_or_nothing(self, store):
        batch = [_v(), _v(id=5)]
        with pytest.raises(ValueError):
            store.insert_many(batch)
        assert store.count() == 0


class TestBulkDelete:
    def _seed(self, store, n=10):
        # visit_time 0..n-1
        return store.insert_many([_v(url=f"https://example.com/{i}", visit_time=i) for i in range(n)])

    def test_delete_before(self, store):
        self._seed(store)
        assert store.delete_where(before=4) == 4
        assert store.count() == 6

    def test_delete_since(self, store):
        self._seed(store)
        assert store.delete_where(since=7) == 3
        assert store.count() == 7

    def test_delete_window(self, store):
        self._seed(store)
        assert store.delete_where(since=2, before=5) == 3
        assert store.count() == 7

    def test_delete_needs_a_bound(self, store):
        with pytest.raises(ValueError):
            store.delete_where()

    def test_nothing_to_delete(self, store):
        self._seed(store)
        assert store.delete_where(before=0) == 0

    def test_fts_consistent_after_small_delete(self, store):
        self._seed(store)
        store.delete_where(before=2)
        assert store.check_integrity() == []

    def test_fts_consistent_after_bulk_delete(self, store):
        self._seed(store)
        store.delete_where(before=9)
        assert store.check_integrity() == []

    def test_delete_all(self, store):
        self._seed(store)
        assert store.delete_all() == 10
        assert store.count() == 0
        assert store.check_integrity() == []


class TestStats:
    def test_empty(self, store):
        stats = store.stats()
        assert stats.total_visits == 0
        assert stats.unique_urls == 0
        assert stats.oldest_visit is None
        assert stats.newest_visit is None

    def test_populated(self, store):
        store.insert_many([
            _v(url="https://a.example/", visit_time=100),
            _v(url="https://a.example/", visit_time=300),
            _v(url="https://b.example/", visit_time=200),
        ])
        stats = store.stats()
        assert stats.total_visits == 3
        assert stats.unique_urls == 2
        assert stats.oldest_visit == 100
        assert stats.newest_visit == 300
        assert stats.db_size_bytes is not None

    def test_count_for_url(self, store):
        store.insert_many([_v(url="https://a.example/"), _v(url="https://a.example/"), _v(url="https://b.example/")])
        assert store.count_for_url("https://a.example/") == 2
        assert store.count_for_url("https://missing.example/") == 0


class TestMaintenance:
    def test_rebuild_indices(self, store):
        store.insert_many([_v(url=f"https://example.com/{i}") for i in range(5)])
        store.rebuild_indices()
        assert store.check_integrity() == []
        assert store.count() == 5

    def test_backup(self, store, tmp_path):
        store.insert(_v())
        dest = store.backup(tmp_path / "copy" / "backup.db")
        conn = sqlite3.connect(str(dest))
        try:
            assert conn.execute("SELECT COUNT(*) FROM visits").fetchone()[0] == 1
        finally:
            conn.close()

    def test_export(self, store, tmp_path):
        store.insert_many([_v(visit_time=2), _v(visit_time=1)])
        out = tmp_path / "export.json"
        result = store.export_to_file(out)
        assert result["visit_count"] == 2

        data = json.loads(out.read_text())
        assert data["version"] == EXPORT_FORMAT
        assert [v["visit_time"] for v in data["visits"]] == [1, 2]
        assert stat.S_IMODE(os.stat(out).st_mode) == 0o600

    def test_replace_all(self, store):
        store.insert_many([_v(), _v()])
        ids = store.replace_all([_v(url="https://new.example/")])
        assert len(ids) == 1
        assert store.count() == 1
        assert store.get(ids[0]).url == "https://new.example/"


class TestPersistence:
    def test_data_survives_reopen(self, tmp_visitlog_dir):
        db_path = tmp_visitlog_dir / "reopen.db"
        s1 = VisitStore(db_path)
        vid = s1.insert(_v(title="Persistent"))
        s1.close()

        s2 = VisitStore(db_path)
        try:
            assert s2.get(vid).title == "Persistent"
            assert s2.insert(_v()) > vid
        finally:
            s2.close()

    def test_closed_store_raises(self, tmp_visitlog_dir):
        s = VisitStore(tmp_visitlog_dir / "closed.db")
        s.close()
        s.close()  # idempotent
        with pytest.raises(StorageError):
            s.insert(_v())
        with pytest.raises(StorageError):
            s.count()

    def test_newer_schema_refused(self, tmp_visitlog_dir):
        db_path = tmp_visitlog_dir / "future.db"
        VisitStore(db_path).close()
        conn = sqlite3.connect(str(db_path))
        conn.execute("UPDATE schema_version SET version = 99")
        conn.commit()
        conn.close()
        with pytest.raises(StorageError):
            VisitStore(db_path)

    def test_in_memory_store(self):
        with VisitStore(":memory:") as s:
            vid = s.insert(_v())
            assert s.get(vid).url == "https://example.com/"
            assert s.count() == 1


class TestStorageFailure:
    def test_sqlite_error_becomes_storage_error(self, store):
        store.insert(_v())
        # Drop the table behind the store's back to force a failing write
        store._conn.execute("DROP TABLE visits_fts")
        store._conn.execute("DROP TABLE visits")
        with pytest.raises(StorageError):
            store.insert(_v())

    def test_failed_bulk_delete_leaves_data(self, store, monkeypatch):
        from visitlog import index

        store.insert_many([_v(visit_time=i) for i in range(4)])

        def boom(*args, **kwargs):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(index, "remove_where", boom)
        monkeypatch.setattr(index, "clear", boom)
        with pytest.raises(StorageError):
            store.delete_where(before=3)
        assert store.count() == 4
