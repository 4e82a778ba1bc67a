"""visitlog configuration -- environment-driven settings.

All values are resolved lazily on each call so tests (and long-running
processes) can override them via environment variables.

    VISITLOG_HOME              data directory (default ~/.visitlog)
    VISITLOG_DB                database file (default $VISITLOG_HOME/history.db)
    VISITLOG_CLOCK_SKEW        seconds a visit may lie in the future (default 60)
    VISITLOG_MAX_TITLE_LENGTH  title truncation ceiling in code points (default 1024)
    VISITLOG_MAX_URL_LENGTH    longest accepted URL (default 8192)
    VISITLOG_BUSY_TIMEOUT_MS   SQLite busy timeout (default 5000)
    VISITLOG_RETENTION_DAYS    age-based expiry horizon (unset = keep forever)
    VISITLOG_API_KEY           API key for the HTTP server (unset = no auth)
    VISITLOG_LOG_LEVEL         log level for CLI and server (default WARNING)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger("visitlog.config")

DEFAULT_CLOCK_SKEW = 60
DEFAULT_MAX_TITLE_LENGTH = 1024
DEFAULT_MAX_URL_LENGTH = 8192
DEFAULT_BUSY_TIMEOUT_MS = 5000


def visitlog_home() -> Path:
    """Resolve VISITLOG_HOME lazily so tests can override via env var."""
    return Path(os.environ.get("VISITLOG_HOME", str(Path.home() / ".visitlog")))


def default_db_path() -> Path:
    override = os.environ.get("VISITLOG_DB")
    if override:
        return Path(override)
    return visitlog_home() / "history.db"


def _env_int(name: str, default: int, lo: int, hi: int) -> int:
    """Read an integer env var clamped to [lo, hi]; malformed values fall back to default."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("%s=%r is not an integer, using %d", name, raw, default)
        return default
    return max(lo, min(value, hi))


@dataclass(frozen=True)
class HistoryConfig:
    db_path: Path
    clock_skew: int = DEFAULT_CLOCK_SKEW
    max_title_length: int = DEFAULT_MAX_TITLE_LENGTH
    max_url_length: int = DEFAULT_MAX_URL_LENGTH
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS
    retention_days: Optional[int] = None


def load_config(db_path=None) -> HistoryConfig:
    """Build a HistoryConfig from the environment. An explicit db_path wins."""
    retention_raw = os.environ.get("VISITLOG_RETENTION_DAYS", "").strip()
    retention_days = None
    if retention_raw:
        retention_days = _env_int("VISITLOG_RETENTION_DAYS", 0, 1, 36500) or None

    return HistoryConfig(
        db_path=Path(db_path) if db_path is not None else default_db_path(),
        clock_skew=_env_int("VISITLOG_CLOCK_SKEW", DEFAULT_CLOCK_SKEW, 0, 86400),
        max_title_length=_env_int("VISITLOG_MAX_TITLE_LENGTH", DEFAULT_MAX_TITLE_LENGTH, 1, 65536),
        max_url_length=_env_int("VISITLOG_MAX_URL_LENGTH", DEFAULT_MAX_URL_LENGTH, 16, 1_000_000),
        busy_timeout_ms=_env_int("VISITLOG_BUSY_TIMEOUT_MS", DEFAULT_BUSY_TIMEOUT_MS, 0, 600_000),
        retention_days=retention_days,
    )


def api_key() -> Optional[str]:
    key = os.environ.get("VISITLOG_API_KEY", "").strip()
    return key or None


def log_level() -> int:
    name = os.environ.get("VISITLOG_LOG_LEVEL", "WARNING").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.WARNING
