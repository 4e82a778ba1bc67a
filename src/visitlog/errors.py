"""Exception hierarchy for visitlog.

Three kinds matter to callers:

- ``ValidationError``: malformed input, always caller-fixable.
- ``NotFound``: an operation referenced an id the store does not hold.
- ``StorageError``: the SQLite layer failed. Fatal to the operation in
  progress; the engine never retries it.
"""


class HistoryError(Exception):
    """Base exception for all visitlog errors."""


# Validation
class ValidationError(HistoryError):
    """Input rejected before it reached storage."""


class InvalidUrl(ValidationError):
    """URL is empty, relative, host-less or oversized."""


class InvalidTitle(ValidationError):
    """Title is missing or not a string."""


class InvalidTimestamp(ValidationError):
    """Timestamp is negative, non-integral or too far in the future."""


class InvalidDuration(ValidationError):
    """Visit duration is negative or non-integral."""


class InvalidTransition(ValidationError):
    """Transition type outside the supported set."""


class InvalidQuery(ValidationError):
    """Search or ranking request with an unusable limit or bounds."""


# Lookup
class NotFound(HistoryError):
    """No visit with the requested id."""

    def __init__(self, visit_id):
        super().__init__(f"visit {visit_id} not found")
        self.visit_id = visit_id


# Persistence
class StorageError(HistoryError):
    """Underlying SQLite failure (I/O fault, corruption, exhaustion)."""
