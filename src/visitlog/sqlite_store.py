"""
visitlog SQLite store -- the durable visit log and single source of truth.

All visits live in one ``visits`` table keyed by an AUTOINCREMENT id, so ids
are never reused even after deletion. Secondary orderings (see
``visitlog.index``) are updated inside the same transaction as every write.

Concurrency model:
    - one writer connection, serialized by ``self._lock``; every write is a
      single ``BEGIN IMMEDIATE ... COMMIT`` transaction
    - file-backed stores run in WAL mode and lend each read a pooled
      read-only connection, so reads see a committed snapshot and never wait
      for a bulk delete to finish; at most MAX_IDLE_READERS stay open between
      reads
    - ``:memory:`` stores have only the writer connection; reads take the lock

Usage:
    store = VisitStore("history.db")
    visit_id = store.insert(Visit(url="https://example.com", title="Example", visit_time=1700000000))
    store.get(visit_id)
"""

import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional

from visitlog import index
from visitlog.config import DEFAULT_BUSY_TIMEOUT_MS
from visitlog.errors import NotFound, StorageError
from visitlog.models import HistoryStats, TransitionType, Visit

logger = logging.getLogger("visitlog.sqlite_store")

SCHEMA_VERSION = 1
EXPORT_FORMAT = "visitlog-v1"

VISIT_COLUMNS = "id, url, title, visit_time, visit_duration, from_url, transition_type"

MEMORY_PATH = ":memory:"

# Idle read connections kept for reuse; extras are closed when returned
MAX_IDLE_READERS = 4


def row_to_visit(row) -> Visit:
    """Convert a ``VISIT_COLUMNS`` row to a Visit."""
    visit_id, url, title, visit_time, duration, from_url, transition = row
    try:
        transition_type = TransitionType(transition)
    except ValueError:
        logger.debug("visit %s has unknown transition %r, reading as link", visit_id, transition)
        transition_type = TransitionType.LINK
    return Visit(
        id=visit_id,
        url=url,
        title=title or "",
        visit_time=visit_time,
        visit_duration=duration,
        from_url=from_url,
        transition_type=transition_type,
    )


class VisitStore:
    """SQLite-backed visit log.

    One instance owns its database file for the life of the process; open
    it once, share the instance, and ``close()`` it on shutdown.
    """

    def __init__(self, db_path=MEMORY_PATH, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS):
        self._in_memory = str(db_path) == MEMORY_PATH
        self.db_path = MEMORY_PATH if self._in_memory else Path(db_path)
        self._busy_timeout_ms = busy_timeout_ms
        if not self._in_memory:
            self.db_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)

        self._lock = threading.Lock()
        self._readers: List[sqlite3.Connection] = []
        self._idle_readers: List[sqlite3.Connection] = []
        self._readers_lock = threading.Lock()
        self._closed = False

        try:
            self._conn = self._connect()
        except sqlite3.Error as e:
            raise StorageError(f"cannot open {self.db_path}: {e}") from e
        self._fts_available = False
        try:
            self._init_schema()
        except BaseException:
            self._conn.close()
            raise

    # ------------------------------------------------------------------
    # Connections and transactions
    # ------------------------------------------------------------------

    def _connect(self, read_only: bool = False) -> sqlite3.Connection:
        """Create a new SQLite connection with optimal settings."""
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self._busy_timeout_ms / 1000,
            check_same_thread=False,
            isolation_level=None,  # explicit BEGIN/COMMIT only
        )
        if not self._in_memory and not read_only:
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA cache_size=-16000")  # 16MB cache
        conn.execute(f"PRAGMA busy_timeout={int(self._busy_timeout_ms)}")
        if read_only:
            conn.execute("PRAGMA query_only=ON")
        conn.create_function("visitlog_fold", 1, index.fold, deterministic=True)
        return conn

    def _init_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self._write() as c:
            c.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER NOT NULL
                )
            """)
            row = c.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if row is None:
                c.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            elif row[0] > SCHEMA_VERSION:
                raise StorageError(
                    f"{self.db_path} has schema v{row[0]}, this build understands up to v{SCHEMA_VERSION}"
                )

            c.execute("""
                CREATE TABLE IF NOT EXISTS visits (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    url TEXT NOT NULL,
                    title TEXT NOT NULL DEFAULT '',
                    visit_time INTEGER NOT NULL,
                    visit_duration INTEGER,
                    from_url TEXT,
                    transition_type TEXT NOT NULL
                )
            """)
            self._fts_available = index.create(c)

    def _check_open(self) -> None:
        if self._closed:
            raise StorageError("store is closed")

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            try:
                conn.execute("ROLLBACK")
            except sqlite3.Error as e:
                logger.error("Rollback failed: %s", e)

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        """Serialized write transaction. Any failure rolls back the whole write."""
        with self._lock:
            self._check_open()
            conn = self._conn
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(conn)
                raise StorageError(str(e)) from e
            except BaseException:
                self._rollback(conn)
                raise

    def _checkout_reader(self) -> sqlite3.Connection:
        with self._readers_lock:
            if self._idle_readers:
                return self._idle_readers.pop()
        conn = self._connect(read_only=True)
        with self._readers_lock:
            self._readers.append(conn)
        return conn

    def _checkin_reader(self, conn: sqlite3.Connection) -> None:
        """Return a reader to the pool, or close it if the pool is full or shut."""
        with self._readers_lock:
            if not self._closed and len(self._idle_readers) < MAX_IDLE_READERS:
                self._idle_readers.append(conn)
                return
            if conn in self._readers:
                self._readers.remove(conn)
        try:
            conn.close()
        except sqlite3.Error as e:
            logger.debug("Reader close failed: %s", e)

    @property
    def open_readers(self) -> int:
        """Read connections currently open, idle or in use."""
        with self._readers_lock:
            return len(self._readers)

    @contextmanager
    def reader(self) -> Iterator[sqlite3.Connection]:
        """Read-only snapshot: every statement inside sees the same committed state."""
        if self._in_memory:
            with self._lock:
                self._check_open()
                try:
                    yield self._conn
                except sqlite3.Error as e:
                    raise StorageError(str(e)) from e
            return

        self._check_open()
        try:
            conn = self._checkout_reader()
        except sqlite3.Error as e:
            raise StorageError(f"cannot open reader for {self.db_path}: {e}") from e
        try:
            conn.execute("BEGIN")
            yield conn
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            self._rollback(conn)
            self._checkin_reader(conn)

    @property
    def fts_available(self) -> bool:
        return self._fts_available

    # ------------------------------------------------------------------
    # Core CRUD
    # ------------------------------------------------------------------

    @staticmethod
    def _insert_row(conn: sqlite3.Connection, visit: Visit, fts: bool) -> int:
        if visit.id is not None:
            raise ValueError(f"visit already carries id {visit.id}; the store assigns ids")
        cur = conn.execute(
            """INSERT INTO visits
               (url, title, visit_time, visit_duration, from_url, transition_type)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                visit.url,
                visit.title,
                visit.visit_time,
                visit.visit_duration,
                visit.from_url,
                TransitionType.parse(visit.transition_type).value,
            ),
        )
        visit_id = cur.lastrowid
        index.add(conn, visit_id, visit.url, visit.title, fts)
        return visit_id

    def insert(self, visit: Visit) -> int:
        """Append a validated visit and return its freshly assigned id."""
        with self._write() as conn:
            visit_id = self._insert_row(conn, visit, self._fts_available)
        logger.debug("Inserted visit %d (%s)", visit_id, visit.url)
        return visit_id

    def insert_many(self, visits: Iterable[Visit]) -> List[int]:
        """Append several validated visits in one transaction."""
        with self._write() as conn:
            ids = [self._insert_row(conn, v, self._fts_available) for v in visits]
        logger.debug("Inserted %d visits", len(ids))
        return ids

    def get(self, visit_id: int) -> Optional[Visit]:
        with self.reader() as conn:
            row = conn.execute(
                f"SELECT {VISIT_COLUMNS} FROM visits WHERE id = ?", (visit_id,)
            ).fetchone()
        return row_to_visit(row) if row else None

    def delete(self, visit_id: int) -> bool:
        """Remove one visit. Returns False when no such id exists."""
        with self._write() as conn:
            row = conn.execute("SELECT url, title FROM visits WHERE id = ?", (visit_id,)).fetchone()
            if not row:
                return False
            index.remove(conn, visit_id, row[0], row[1], self._fts_available)
            conn.execute("DELETE FROM visits WHERE id = ?", (visit_id,))
        logger.debug("Deleted visit %d", visit_id)
        return True

    def update_duration(self, visit_id: int, duration: int) -> None:
        """Set visit_duration; the only mutation allowed after insert."""
        with self._write() as conn:
            cur = conn.execute(
                "UPDATE visits SET visit_duration = ? WHERE id = ?", (duration, visit_id)
            )
            if cur.rowcount == 0:
                raise NotFound(visit_id)

    # ------------------------------------------------------------------
    # Bulk deletion
    # ------------------------------------------------------------------

    def delete_where(self, before: Optional[int] = None, since: Optional[int] = None) -> int:
        """Delete visits with ``visit_time < before`` and/or ``visit_time >= since``.

        Both bounds given means the half-open window ``[since, before)``.
        All-or-nothing: a failure rolls back and nothing is removed.
        """
        clauses, params = [], []
        if before is not None:
            clauses.append("visit_time < ?")
            params.append(before)
        if since is not None:
            clauses.append("visit_time >= ?")
            params.append(since)
        if not clauses:
            raise ValueError("delete_where needs at least one bound; use delete_all() to wipe")
        where = " AND ".join(clauses)

        with self._write() as conn:
            doomed = conn.execute(f"SELECT COUNT(*) FROM visits WHERE {where}", params).fetchone()[0]
            if doomed == 0:
                return 0
            total = conn.execute("SELECT COUNT(*) FROM visits").fetchone()[0]
            fts = self._fts_available
            # Dropping most of the table: rebuilding the text index from the
            # survivors is cheaper than deleting every row from it.
            bulk = doomed * 2 > total
            if bulk:
                index.clear(conn, fts)
            else:
                index.remove_where(conn, where, params, fts)
            deleted = conn.execute(f"DELETE FROM visits WHERE {where}", params).rowcount
            if bulk:
                index.rebuild(conn, fts, btree=False)
        logger.info("Deleted %d visits (%s)", deleted, where)
        return deleted

    def delete_all(self) -> int:
        """Delete every visit. Ids stay reserved; the AUTOINCREMENT counter is kept."""
        with self._write() as conn:
            count = conn.execute("SELECT COUNT(*) FROM visits").fetchone()[0]
            index.clear(conn, self._fts_available)
            conn.execute("DELETE FROM visits")
        logger.info("Deleted all %d visits", count)
        return count

    # ------------------------------------------------------------------
    # Counts and stats
    # ------------------------------------------------------------------

    def count(self) -> int:
        """Return total number of visits."""
        with self.reader() as conn:
            row = conn.execute("SELECT COUNT(*) FROM visits").fetchone()
        return row[0] if row else 0

    def count_for_url(self, url: str) -> int:
        with self.reader() as conn:
            row = conn.execute("SELECT COUNT(*) FROM visits WHERE url = ?", (url,)).fetchone()
        return row[0] if row else 0

    def stats(self) -> HistoryStats:
        with self.reader() as conn:
            total, oldest, newest = conn.execute(
                "SELECT COUNT(*), MIN(visit_time), MAX(visit_time) FROM visits"
            ).fetchone()
            unique = conn.execute("SELECT COUNT(DISTINCT url) FROM visits").fetchone()[0]
        size = None
        if not self._in_memory and self.db_path.exists():
            size = self.db_path.stat().st_size
        return HistoryStats(
            total_visits=total,
            unique_urls=unique,
            oldest_visit=oldest,
            newest_visit=newest,
            db_size_bytes=size,
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def rebuild_indices(self) -> None:
        """Recreate every derived ordering from the visits table."""
        with self._write() as conn:
            index.rebuild(conn, self._fts_available)
        logger.info("Rebuilt indices for %s", self.db_path)

    def check_integrity(self) -> List[str]:
        """Run SQLite and FTS5 integrity checks. Empty list means healthy."""
        with self._write() as conn:
            return index.check(conn, self._fts_available)

    def backup(self, dest) -> Path:
        """Online copy of the database to ``dest`` via the SQLite backup API."""
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        with self._lock:
            self._check_open()
            try:
                dst = sqlite3.connect(str(dest))
                try:
                    self._conn.backup(dst)
                finally:
                    dst.close()
            except sqlite3.Error as e:
                raise StorageError(f"backup to {dest} failed: {e}") from e
        return dest

    # ------------------------------------------------------------------
    # Export / Import
    # ------------------------------------------------------------------

    def export_to_file(self, filepath) -> Dict[str, Any]:
        """Export all visits, oldest first, to a JSON file."""
        with self.reader() as conn:
            rows = conn.execute(
                f"SELECT {VISIT_COLUMNS} FROM visits ORDER BY visit_time, id"
            ).fetchall()

        export_data = {
            "version": EXPORT_FORMAT,
            "exported_at": datetime.now(timezone.utc).isoformat(),
            "visit_count": len(rows),
            "visits": [row_to_visit(row).to_dict() for row in rows],
        }

        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        # Restricted permissions (0o600): the export is a plaintext browsing history
        export_bytes = json.dumps(export_data, indent=2).encode("utf-8")
        fd = os.open(str(filepath), os.O_CREAT | os.O_WRONLY | os.O_TRUNC | os.O_NOFOLLOW, 0o600)
        try:
            os.write(fd, export_bytes)
        finally:
            os.close(fd)

        return {
            "filepath": str(filepath),
            "visit_count": len(rows),
            "file_size_kb": filepath.stat().st_size / 1024,
            "exported_at": export_data["exported_at"],
        }

    def replace_all(self, visits: Iterable[Visit]) -> List[int]:
        """Atomically swap the whole history for ``visits`` (ids are reassigned)."""
        with self._write() as conn:
            index.clear(conn, self._fts_available)
            conn.execute("DELETE FROM visits")
            ids = [self._insert_row(conn, v, self._fts_available) for v in visits]
        logger.info("Replaced history with %d visits", len(ids))
        return ids

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the writer and every reader connection. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            with self._readers_lock:
                readers, self._readers = self._readers, []
                self._idle_readers = []
            for conn in readers:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.debug("Reader close failed: %s", e)
            if not self._in_memory:
                try:
                    # Flush WAL before closing
                    self._conn.execute("PRAGMA wal_checkpoint(PASSIVE)")
                except sqlite3.Error as e:
                    logger.debug("WAL checkpoint on close failed: %s", e)
            try:
                self._conn.close()
            except sqlite3.Error as e:
                logger.debug("Database close failed: %s", e)

    def __enter__(self) -> "VisitStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
