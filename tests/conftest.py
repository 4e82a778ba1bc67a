"""visitlog test configuration."""
import sys
import pytest
from pathlib import Path

# Ensure visitlog package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

# Fixed "now" for deterministic validation and frecency
NOW = 1_700_000_000
DAY = 86400

_ENV_VARS = (
    "VISITLOG_DB",
    "VISITLOG_CLOCK_SKEW",
    "VISITLOG_MAX_TITLE_LENGTH",
    "VISITLOG_MAX_URL_LENGTH",
    "VISITLOG_BUSY_TIMEOUT_MS",
    "VISITLOG_RETENTION_DAYS",
    "VISITLOG_API_KEY",
    "VISITLOG_LOG_LEVEL",
)


@pytest.fixture
def tmp_visitlog_dir(tmp_path, monkeypatch):
    """Create a temporary VISITLOG_HOME and clear every other override."""
    home = tmp_path / ".visitlog"
    home.mkdir()
    monkeypatch.setenv("VISITLOG_HOME", str(home))
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return home


@pytest.fixture
def clock():
    """A settable clock; call it for the time, assign .now to move it."""

    class FixedClock:
        def __init__(self):
            self.now = NOW

        def __call__(self):
            return self.now

    return FixedClock()


@pytest.fixture
def store(tmp_visitlog_dir):
    """Create a fresh file-backed VisitStore for testing."""
    from visitlog.sqlite_store import VisitStore
    s = VisitStore(tmp_visitlog_dir / "test.db")
    yield s
    s.close()


@pytest.fixture
def history(tmp_visitlog_dir, clock):
    """Create a fresh HistoryManager on a temp DB with a fixed clock."""
    from visitlog.manager import HistoryManager
    h = HistoryManager(tmp_visitlog_dir / "history.db", clock=clock)
    yield h
    h.close()


@pytest.fixture
def make_visit():
    """Factory for Visit objects with sensible defaults."""
    from visitlog.models import Visit

    def _make(url="https://example.com/", title="Example", visit_time=NOW, **kwargs):
        return Visit(url=url, title=title, visit_time=visit_time, **kwargs)

    return _make
