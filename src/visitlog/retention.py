"""
visitlog retention -- bulk deletion for privacy clears and age-based expiry.

Each operation is one store transaction: either every qualifying visit is
removed or a StorageError is raised and the history is left untouched.
"""

import logging
import time
from typing import Callable, Optional

from visitlog.errors import InvalidTimestamp
from visitlog.frecency import DAY
from visitlog.sqlite_store import VisitStore

logger = logging.getLogger("visitlog.retention")


def _check_timestamp(timestamp) -> int:
    if isinstance(timestamp, bool) or not isinstance(timestamp, int) or timestamp < 0:
        raise InvalidTimestamp(f"timestamp must be a non-negative integer, got {timestamp!r}")
    return timestamp


class RetentionController:
    def __init__(self, store: VisitStore, clock: Callable[[], float] = time.time):
        self._store = store
        self._clock = clock

    def clear_older_than(self, timestamp: int) -> int:
        """Delete visits with ``visit_time < timestamp``. Returns count removed."""
        deleted = self._store.delete_where(before=_check_timestamp(timestamp))
        logger.info("clear_older_than(%d): removed %d visits", timestamp, deleted)
        return deleted

    def clear_since(self, timestamp: int) -> int:
        """Delete visits with ``visit_time >= timestamp`` ("clear the last hour")."""
        deleted = self._store.delete_where(since=_check_timestamp(timestamp))
        logger.info("clear_since(%d): removed %d visits", timestamp, deleted)
        return deleted

    def clear_all(self) -> None:
        deleted = self._store.delete_all()
        logger.info("clear_all: removed %d visits", deleted)

    def expire(self, max_age_days: int, now: Optional[int] = None) -> int:
        """Delete visits older than ``max_age_days`` relative to ``now``."""
        if isinstance(max_age_days, bool) or not isinstance(max_age_days, int) or max_age_days < 1:
            raise ValueError(f"max_age_days must be a positive integer, got {max_age_days!r}")
        now = int(self._clock()) if now is None else now
        return self.clear_older_than(max(0, now - max_age_days * DAY))
