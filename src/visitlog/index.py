"""
visitlog index layer -- derived orderings over the ``visits`` table.

    by URL    idx_visits_url (url, visit_time DESC)   per-page visits, aggregates
    by time   idx_visits_time (visit_time DESC)       recent and range queries
    by title  idx_visits_title (title NOCASE)         title prefix lookups, range scan
              visits_fts (fts5, trigram)               substring search on url + title

Nothing here is a system of record. The FTS table is an external-content
index over ``visits`` and is kept in step explicitly inside the caller's
write transaction (no triggers, so bulk deletes can skip per-row work).
Everything can be rebuilt from ``visits`` with :func:`rebuild`.
"""

import logging
import sqlite3
from typing import List, Optional, Sequence, Tuple

logger = logging.getLogger("visitlog.index")

# Trigram tokens need at least three characters to match anything
FTS_MIN_QUERY_CHARS = 3

# Sorts after every character a title can continue with
_MAX_CHAR = "\U0010ffff"

_BTREE_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_visits_url ON visits(url, visit_time DESC)",
    "CREATE INDEX IF NOT EXISTS idx_visits_time ON visits(visit_time DESC)",
    "CREATE INDEX IF NOT EXISTS idx_visits_title ON visits(title COLLATE NOCASE)",
)

_FTS_TABLE = """
    CREATE VIRTUAL TABLE IF NOT EXISTS visits_fts
    USING fts5(url, title, content='visits', content_rowid='id', tokenize='trigram')
"""


def create(conn: sqlite3.Connection) -> bool:
    """Create all indexes. Returns whether the FTS5 trigram index is available."""
    for ddl in _BTREE_INDEXES:
        conn.execute(ddl)
    try:
        conn.execute(_FTS_TABLE)
    except sqlite3.OperationalError as e:
        logger.warning("FTS5 trigram index unavailable, text search falls back to scans: %s", e)
        return False

    fts_count = conn.execute("SELECT COUNT(*) FROM visits_fts_docsize").fetchone()[0]
    visit_count = conn.execute("SELECT COUNT(*) FROM visits").fetchone()[0]
    if fts_count != visit_count:
        conn.execute("INSERT INTO visits_fts(visits_fts) VALUES ('rebuild')")
        logger.info("Rebuilt FTS index over %d existing visits", visit_count)
    return True


def add(conn: sqlite3.Connection, visit_id: int, url: str, title: str, fts: bool) -> None:
    if fts:
        conn.execute(
            "INSERT INTO visits_fts(rowid, url, title) VALUES (?, ?, ?)",
            (visit_id, url, title),
        )


def remove(conn: sqlite3.Connection, visit_id: int, url: str, title: str, fts: bool) -> None:
    """Drop one visit from the FTS index. Must run before the row is deleted."""
    if fts:
        conn.execute(
            "INSERT INTO visits_fts(visits_fts, rowid, url, title) VALUES ('delete', ?, ?, ?)",
            (visit_id, url, title),
        )


def remove_where(conn: sqlite3.Connection, where: str, params: Sequence, fts: bool) -> None:
    """Drop every visit matching ``where`` from the FTS index, before the rows go."""
    if fts:
        conn.execute(
            "INSERT INTO visits_fts(visits_fts, rowid, url, title) "
            f"SELECT 'delete', id, url, title FROM visits WHERE {where}",
            tuple(params),
        )


def clear(conn: sqlite3.Connection, fts: bool) -> None:
    if fts:
        conn.execute("INSERT INTO visits_fts(visits_fts) VALUES ('delete-all')")


def rebuild(conn: sqlite3.Connection, fts: bool, btree: bool = True) -> None:
    """Recreate derived structures from the visits table."""
    if btree:
        conn.execute("REINDEX visits")
    if fts:
        conn.execute("INSERT INTO visits_fts(visits_fts) VALUES ('rebuild')")


def check(conn: sqlite3.Connection, fts: bool) -> List[str]:
    """Return a list of problems; empty when every index is consistent."""
    problems = []
    rows = conn.execute("PRAGMA integrity_check").fetchall()
    if [r[0] for r in rows] != ["ok"]:
        problems.extend(str(r[0]) for r in rows)
    if fts:
        try:
            conn.execute("INSERT INTO visits_fts(visits_fts) VALUES ('integrity-check')")
        except sqlite3.DatabaseError as e:
            problems.append(f"visits_fts: {e}")
    return problems


# ---------------------------------------------------------------------------
# Text matching
# ---------------------------------------------------------------------------


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def text_filter(text: str, fts: bool, alias: str = "v") -> Tuple[Optional[str], list]:
    """SQL predicate for a case-insensitive substring match on url or title.

    Uses the trigram index when it can answer the query; otherwise a LIKE
    scan (ASCII text) or a lowercase scan through ``visitlog_fold`` (non-ASCII).
    Lowercase, not casefold: "ß" must not expand to "ss" and match "Strasse".
    """
    if not text:
        return None, []
    if fts and len(text) >= FTS_MIN_QUERY_CHARS:
        phrase = '"' + text.replace('"', '""') + '"'
        return f"{alias}.id IN (SELECT rowid FROM visits_fts WHERE visits_fts MATCH ?)", [phrase]
    if text.isascii():
        pattern = f"%{_escape_like(text)}%"
        return (
            f"({alias}.url LIKE ? ESCAPE '\\' OR {alias}.title LIKE ? ESCAPE '\\')",
            [pattern, pattern],
        )
    folded = text.lower()
    return (
        f"(instr(visitlog_fold({alias}.url), ?) > 0 OR instr(visitlog_fold({alias}.title), ?) > 0)",
        [folded, folded],
    )


def title_prefix_filter(prefix: str, alias: str = "v") -> Tuple[Optional[str], list]:
    """SQL predicate for titles starting with ``prefix``, case-insensitively.

    ASCII prefixes become a range scan on ``idx_visits_title``. NOCASE folds
    ASCII only, so other prefixes compare through ``visitlog_fold``.
    """
    if not prefix:
        return None, []
    if prefix.isascii():
        return (
            f"({alias}.title COLLATE NOCASE >= ? AND {alias}.title COLLATE NOCASE < ?)",
            [prefix, prefix + _MAX_CHAR],
        )
    folded = prefix.lower()
    return f"substr(visitlog_fold({alias}.title), 1, ?) = ?", [len(folded), folded]


def fold(value):
    """SQLite scalar function: Unicode lowercase, NULL-safe."""
    return value.lower() if isinstance(value, str) else value
