"""Error taxonomy for scoring, feedback and persistence."""
from __future__ import annotations

from typing import Optional


class ScoringError(Exception):
    """Base class for all errors raised by the scoring services."""


class InvalidInput(ScoringError):
    """Caller supplied data that cannot be scored (zero totals, bad task context)."""


class ProviderUnavailable(ScoringError):
    """The feedback provider could not be reached or answered with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedProviderResponse(ScoringError):
    """The feedback provider answered, but not with the requested JSON shape."""

    def __init__(self, message: str, raw_text: Optional[str] = None):
        super().__init__(message)
        self.raw_text = raw_text


class PersistenceFailure(ScoringError):
    """A submission record could not be written or updated."""


class RecordNotFound(ScoringError):
    """No stored record matches the requested id."""
