"""
visitlog history manager -- the engine's external interface.

The manager is an explicitly owned resource: construct one per database per
process, pass it to whatever needs history, and ``close()`` it on shutdown
(or use it as a context manager).

    with HistoryManager("history.db") as history:
        visit_id = history.record_visit(Visit(url="https://example.com",
                                              title="Example",
                                              visit_time=int(time.time())))
        history.update_visit_duration(visit_id, 42)
        history.get_frecent(10)
"""

import json
import logging
import time
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from visitlog.config import HistoryConfig, load_config, visitlog_home
from visitlog.errors import NotFound, ValidationError
from visitlog.models import DEFAULT_SEARCH_LIMIT, HistoryStats, PageAggregate, SearchQuery, Visit
from visitlog.query import QueryEngine
from visitlog.retention import RetentionController
from visitlog.sqlite_store import EXPORT_FORMAT, VisitStore
from visitlog.validation import validate, validate_duration

logger = logging.getLogger("visitlog.manager")

MAX_BACKUPS = 5

VisitInput = Union[Visit, Mapping[str, Any]]


class HistoryManager:
    """Record, query and retain browsing history backed by one VisitStore."""

    def __init__(
        self,
        db_path=None,
        *,
        config: Optional[HistoryConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or load_config(db_path)
        self._clock = clock
        self.store = VisitStore(self.config.db_path, busy_timeout_ms=self.config.busy_timeout_ms)
        self.queries = QueryEngine(self.store, clock=clock)
        self.retention = RetentionController(self.store, clock=clock)
        logger.debug("History opened at %s (fts=%s)", self.config.db_path, self.store.fts_available)

    def _validate(self, visit: VisitInput) -> Visit:
        if isinstance(visit, Mapping):
            visit = Visit.from_dict(visit)
        return validate(
            visit,
            int(self._clock()),
            max_title_length=self.config.max_title_length,
            max_url_length=self.config.max_url_length,
            clock_skew=self.config.clock_skew,
        )

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def record_visit(self, visit: VisitInput) -> int:
        """Validate and store a new visit. Returns the assigned id.

        Not idempotent: recording the same visit twice yields two ids.
        """
        visit = self._validate(visit)
        if visit.id is not None:
            raise ValidationError("record_visit takes a visit without an id; ids are assigned by the store")
        return self.store.insert(visit)

    def update_visit_duration(self, visit_id: int, seconds: int) -> None:
        """Set how long a visit lasted. Raises NotFound for an unknown id."""
        if seconds is None:
            raise ValidationError("duration is required")
        self.store.update_duration(visit_id, validate_duration(seconds))

    def delete_visit(self, visit_id: int) -> None:
        if not self.store.delete(visit_id):
            raise NotFound(visit_id)

    def get_visit(self, visit_id: int) -> Optional[Visit]:
        return self.store.get(visit_id)

    # ------------------------------------------------------------------
    # Outbound (read-only)
    # ------------------------------------------------------------------

    def search(self, query: SearchQuery) -> List[Visit]:
        return self.queries.search(query)

    def get_recent(self, limit: int) -> List[Visit]:
        return self.queries.get_recent(limit)

    def search_titles(self, prefix: str, limit: int = DEFAULT_SEARCH_LIMIT) -> List[Visit]:
        return self.queries.search_titles(prefix, limit)

    def get_visits_for_url(self, url: str) -> List[Visit]:
        return self.queries.get_visits_for_url(url)

    def get_most_visited(self, limit: int) -> List[PageAggregate]:
        return self.queries.get_most_visited(limit)

    def get_frecent(self, limit: int) -> List[PageAggregate]:
        return self.queries.get_frecent(limit)

    def count_visits(self) -> int:
        return self.queries.count_visits()

    def count_visits_for_url(self, url: str) -> int:
        return self.queries.count_visits_for_url(url)

    def stats(self) -> HistoryStats:
        return self.store.stats()

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def clear_older_than(self, timestamp: int) -> int:
        return self.retention.clear_older_than(timestamp)

    def clear_since(self, timestamp: int) -> int:
        return self.retention.clear_since(timestamp)

    def clear_all(self) -> None:
        self.retention.clear_all()

    def expire(self, max_age_days: Optional[int] = None) -> int:
        """Apply age-based retention. Falls back to VISITLOG_RETENTION_DAYS; 0 when unset."""
        days = max_age_days if max_age_days is not None else self.config.retention_days
        if days is None:
            return 0
        return self.retention.expire(days)

    # ------------------------------------------------------------------
    # Export / Import / Maintenance
    # ------------------------------------------------------------------

    def export_history(self, filepath) -> Dict[str, Any]:
        return self.store.export_to_file(filepath)

    def import_history(self, filepath, clear_existing: bool = False) -> Dict[str, Any]:
        """Import visits from an export file. Invalid records are skipped and counted.

        Imported visits receive new ids. With ``clear_existing`` the current
        history is replaced atomically.
        """
        filepath = Path(filepath)
        if filepath.is_symlink():
            raise ValueError("Import file must not be a symlink")
        data = json.loads(filepath.read_text(encoding="utf-8"))
        if isinstance(data, dict):
            version = data.get("version")
            if version != EXPORT_FORMAT:
                raise ValueError(f"Unsupported export format: {version!r}")
            records = data.get("visits", [])
        else:
            records = data

        visits, skipped = [], 0
        for record in records:
            try:
                visits.append(replace(self._validate(record), id=None))
            except (ValidationError, TypeError, AttributeError) as e:
                skipped += 1
                logger.warning("Skipping invalid visit in %s: %s", filepath.name, e)

        if clear_existing:
            ids = self.store.replace_all(visits)
        else:
            ids = self.store.insert_many(visits)
        logger.info("Imported %d visits from %s (%d skipped)", len(ids), filepath, skipped)
        return {"filepath": str(filepath), "imported": len(ids), "skipped": skipped}

    def rebuild_indices(self) -> None:
        self.store.rebuild_indices()

    def check_integrity(self) -> List[str]:
        return self.store.check_integrity()

    def backup(self, dest=None) -> Path:
        """Copy the database. Default destination rotates under $VISITLOG_HOME/backups."""
        if dest is not None:
            return self.store.backup(dest)

        backups_dir = visitlog_home() / "backups"
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        path = self.store.backup(backups_dir / f"history-{timestamp}.db")

        # Rotate -- keep only the most recent backups
        backups = sorted(backups_dir.glob("history-*.db"), key=lambda p: p.stat().st_mtime, reverse=True)
        for old in backups[MAX_BACKUPS:]:
            old.unlink()
            logger.info("Rotated old backup: %s", old.name)
        return path

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> "HistoryManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
