"""
visitlog query engine -- read-side views over the visit store.

Every call runs inside a single read snapshot (``VisitStore.reader``), so a
result never mixes pre- and post-write state. Aggregates are computed fresh
on each call; nothing is cached between calls.
"""

import logging
import time
from typing import Callable, Dict, List, Optional

from visitlog import frecency, index
from visitlog.errors import InvalidQuery
from visitlog.models import DEFAULT_SEARCH_LIMIT, PageAggregate, SearchQuery, Visit
from visitlog.sqlite_store import VISIT_COLUMNS, VisitStore, row_to_visit

logger = logging.getLogger("visitlog.query")

_ALIASED_COLUMNS = ", ".join(f"v.{c.strip()}" for c in VISIT_COLUMNS.split(","))

# Stay well under SQLite's bound-parameter limit
_IN_CHUNK = 500


def _check_limit(limit) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise InvalidQuery(f"limit must be a positive integer, got {limit!r}")
    return limit


def _to_aggregate(page: frecency.PageScore) -> PageAggregate:
    return PageAggregate(
        url=page.url,
        title=page.title,
        visit_count=page.visit_count,
        last_visit=page.last_visit,
        frecency_score=page.score,
    )


class QueryEngine:
    """Search, recent, per-URL and ranked views over a VisitStore."""

    def __init__(self, store: VisitStore, clock: Callable[[], float] = time.time):
        self._store = store
        self._clock = clock

    def _now(self, now: Optional[int]) -> int:
        return int(self._clock()) if now is None else now

    def search(self, query: SearchQuery) -> List[Visit]:
        """Visits matching the query, newest first, at most ``query.limit``.

        ``text`` is a case-insensitive substring match against url or title;
        time bounds are inclusive. No criteria means every visit.
        """
        clauses, params = [], []
        text_sql, text_params = index.text_filter(query.text or "", self._store.fts_available)
        if text_sql:
            clauses.append(text_sql)
            params.extend(text_params)
        if query.start_time is not None:
            clauses.append("v.visit_time >= ?")
            params.append(query.start_time)
        if query.end_time is not None:
            clauses.append("v.visit_time <= ?")
            params.append(query.end_time)

        sql = f"SELECT {_ALIASED_COLUMNS} FROM visits v"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY v.visit_time DESC, v.id DESC LIMIT ?"
        params.append(query.limit)

        with self._store.reader() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [row_to_visit(r) for r in rows]

    def get_recent(self, limit: int) -> List[Visit]:
        return self.search(SearchQuery(limit=_check_limit(limit)))

    def _title_prefix_sql(self, prefix: str, limit: int):
        if not isinstance(prefix, str) or not prefix:
            raise InvalidQuery(f"title prefix must be a non-empty string, got {prefix!r}")
        where, params = index.title_prefix_filter(prefix)
        sql = (
            f"SELECT {_ALIASED_COLUMNS} FROM visits v WHERE {where}"
            " ORDER BY v.title COLLATE NOCASE, v.visit_time DESC, v.id DESC LIMIT ?"
        )
        return sql, params + [_check_limit(limit)]

    def search_titles(self, prefix: str, limit: int = DEFAULT_SEARCH_LIMIT) -> List[Visit]:
        """Visits whose title starts with ``prefix`` (any case), in title order."""
        sql, params = self._title_prefix_sql(prefix, limit)
        with self._store.reader() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [row_to_visit(r) for r in rows]

    def get_visits_for_url(self, url: str) -> List[Visit]:
        """Every visit to exactly ``url``, newest first."""
        with self._store.reader() as conn:
            rows = conn.execute(
                f"SELECT {VISIT_COLUMNS} FROM visits WHERE url = ? ORDER BY visit_time DESC, id DESC",
                (url,),
            ).fetchall()
        return [row_to_visit(r) for r in rows]

    def get_most_visited(self, limit: int, now: Optional[int] = None) -> List[PageAggregate]:
        """Pages by visit count desc, then last visit desc, then url asc."""
        _check_limit(limit)
        now = self._now(now)
        with self._store.reader() as conn:
            top = conn.execute(
                """SELECT url FROM visits
                   GROUP BY url
                   ORDER BY COUNT(*) DESC, MAX(visit_time) DESC, url ASC
                   LIMIT ?""",
                (limit,),
            ).fetchall()
            urls = [r[0] for r in top]

            # Titles and scores for just the winners, from the same snapshot
            pages: Dict[str, frecency.PageScore] = {}
            for start in range(0, len(urls), _IN_CHUNK):
                chunk = urls[start:start + _IN_CHUNK]
                placeholders = ",".join("?" * len(chunk))
                rows = conn.execute(
                    f"""SELECT url, title, visit_time FROM visits
                        WHERE url IN ({placeholders})
                        ORDER BY url, visit_time DESC, id DESC""",
                    chunk,
                )
                for page in frecency.score_pages(rows, now):
                    pages[page.url] = page

        return [_to_aggregate(pages[url]) for url in urls]

    def get_frecent(self, limit: int, now: Optional[int] = None) -> List[PageAggregate]:
        """Pages by frecency score desc, ties broken like get_most_visited.

        Scores every URL in one pass over the by-URL index, O(total visits).
        """
        _check_limit(limit)
        now = self._now(now)
        with self._store.reader() as conn:
            rows = conn.execute(
                "SELECT url, title, visit_time FROM visits ORDER BY url, visit_time DESC, id DESC"
            )
            ranked = frecency.top_by_score(frecency.score_pages(rows, now), limit)
        return [_to_aggregate(p) for p in ranked]

    def count_visits(self) -> int:
        return self._store.count()

    def count_visits_for_url(self, url: str) -> int:
        return self._store.count_for_url(url)
