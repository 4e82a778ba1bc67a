"""
Frecency -- frequency + recency score for a URL.

Each visit contributes a weight picked by its age relative to the moment the
score is requested:

    age <= 1 day     100
    age <= 7 days     70
    age <= 30 days    50
    age <= 90 days    30
    older             10

Thresholds are inclusive upper bounds of the more-recent bucket: a visit
exactly 86400s old still weighs 100, one second more drops it to 70. Visits
slightly in the future (clock skew) weigh 100. The score is the plain sum, so
a URL with at least one visit never scores zero.
"""

import heapq
from itertools import groupby
from typing import Iterable, Iterator, List, Optional, Tuple

DAY = 86400
WEEK = 7 * DAY
MONTH = 30 * DAY
THREE_MONTHS = 90 * DAY

# (inclusive max age in seconds, weight), most recent first
BUCKETS: Tuple[Tuple[int, int], ...] = (
    (DAY, 100),
    (WEEK, 70),
    (MONTH, 50),
    (THREE_MONTHS, 30),
)
MIN_WEIGHT = 10


def visit_weight(visit_time: int, now: int) -> int:
    """Weight of a single visit at time ``now``."""
    age = now - visit_time
    for threshold, weight in BUCKETS:
        if age <= threshold:
            return weight
    return MIN_WEIGHT


def frecency_score(visit_times: Iterable[int], now: int) -> int:
    """Sum of per-visit weights. O(len(visit_times))."""
    return sum(visit_weight(t, now) for t in visit_times)


class PageScore:
    """Accumulator for one URL while streaming its visits newest-first."""

    __slots__ = ("url", "title", "visit_count", "last_visit", "score")

    def __init__(self, url: str):
        self.url = url
        self.title = ""
        self.visit_count = 0
        self.last_visit: Optional[int] = None
        self.score = 0

    def add(self, title: str, visit_time: int, now: int) -> None:
        self.visit_count += 1
        self.score += visit_weight(visit_time, now)
        if self.last_visit is None or visit_time > self.last_visit:
            self.last_visit = visit_time
        # Rows arrive newest-first, so the first non-empty title is the latest
        if not self.title and title:
            self.title = title


def score_pages(rows: Iterable[Tuple[str, str, int]], now: int) -> Iterator[PageScore]:
    """Batch-score a stream of ``(url, title, visit_time)`` rows.

    Rows must be clustered by URL and time-descending within each URL (the
    by-URL index yields exactly that). Single pass, O(total visits).
    """
    for url, group in groupby(rows, key=lambda r: r[0]):
        page = PageScore(url)
        for _, title, visit_time in group:
            page.add(title, visit_time, now)
        yield page


def rank_key(page) -> tuple:
    """Tie-break after the ranking metric: last visit desc, then url asc."""
    return (-page.last_visit, page.url)


def top_by_score(pages: Iterable[PageScore], limit: int) -> List[PageScore]:
    return heapq.nsmallest(limit, pages, key=lambda p: (-p.score,) + rank_key(p))
