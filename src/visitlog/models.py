"""Data models for visitlog."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional

from visitlog.errors import InvalidQuery, InvalidTransition

DEFAULT_SEARCH_LIMIT = 100


class TransitionType(str, Enum):
    """How the navigation happened."""

    LINK = "link"
    TYPED = "typed"
    RELOAD = "reload"
    BOOKMARK = "bookmark"
    REDIRECT = "redirect"
    FORM_SUBMIT = "form_submit"

    @classmethod
    def parse(cls, value) -> "TransitionType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidTransition(f"unknown transition type: {value!r}") from None


@dataclass(frozen=True)
class Visit:
    """One browsing event. ``id`` is None until the store assigns it."""

    url: str
    title: str
    visit_time: int
    transition_type: TransitionType = TransitionType.LINK
    visit_duration: Optional[int] = None
    from_url: Optional[str] = None
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["transition_type"] = self.transition_type.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Visit":
        """Build a visit from a decoded JSON mapping. Unknown keys are ignored."""
        return cls(
            url=data.get("url"),
            title=data.get("title"),
            visit_time=data.get("visit_time"),
            transition_type=TransitionType.parse(data.get("transition_type") or TransitionType.LINK),
            visit_duration=data.get("visit_duration"),
            from_url=data.get("from_url"),
            id=data.get("id"),
        )


@dataclass(frozen=True)
class PageAggregate:
    """Per-URL rollup computed at query time, never persisted."""

    url: str
    title: str
    visit_count: int
    last_visit: int
    frecency_score: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SearchQuery:
    """Search request. Bounds are inclusive; ``limit`` must be at least 1."""

    text: Optional[str] = None
    start_time: Optional[int] = None
    end_time: Optional[int] = None
    limit: int = DEFAULT_SEARCH_LIMIT

    def __post_init__(self):
        if self.text is not None and not isinstance(self.text, str):
            raise InvalidQuery(f"text must be a string, got {type(self.text).__name__}")
        if isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit < 1:
            raise InvalidQuery(f"limit must be a positive integer, got {self.limit!r}")
        for name in ("start_time", "end_time"):
            bound = getattr(self, name)
            if bound is not None and (isinstance(bound, bool) or not isinstance(bound, int)):
                raise InvalidQuery(f"{name} must be an integer timestamp, got {bound!r}")


@dataclass
class HistoryStats:
    """Store-wide summary."""

    total_visits: int = 0
    unique_urls: int = 0
    oldest_visit: Optional[int] = None
    newest_visit: Optional[int] = None
    db_size_bytes: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
