"""visitlog -- browsing-history storage and frecency ranking.

Direct Python API::

    from visitlog import HistoryManager, SearchQuery, Visit

    with HistoryManager("history.db") as history:
        history.record_visit(Visit(url="https://example.com", title="Example",
                                   visit_time=1700000000))
        history.search(SearchQuery(text="example", limit=20))
        history.get_frecent(10)

For the HTTP surface, install with: ``pip install visitlog[server]``
"""

__version__ = "0.1.0"

from visitlog.errors import (
    HistoryError,
    InvalidDuration,
    InvalidQuery,
    InvalidTimestamp,
    InvalidTitle,
    InvalidTransition,
    InvalidUrl,
    NotFound,
    StorageError,
    ValidationError,
)
from visitlog.frecency import frecency_score, visit_weight
from visitlog.manager import HistoryManager
from visitlog.models import HistoryStats, PageAggregate, SearchQuery, TransitionType, Visit
from visitlog.query import QueryEngine
from visitlog.retention import RetentionController
from visitlog.sqlite_store import VisitStore
from visitlog.validation import validate

__all__ = [
    "HistoryManager",
    "VisitStore",
    "QueryEngine",
    "RetentionController",
    # Models
    "Visit",
    "TransitionType",
    "PageAggregate",
    "SearchQuery",
    "HistoryStats",
    # Pure functions
    "validate",
    "visit_weight",
    "frecency_score",
    # Errors
    "HistoryError",
    "ValidationError",
    "InvalidUrl",
    "InvalidTitle",
    "InvalidTimestamp",
    "InvalidDuration",
    "InvalidTransition",
    "InvalidQuery",
    "NotFound",
    "StorageError",
    # Meta
    "__version__",
]
