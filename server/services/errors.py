"""
Focus Engine Errors

Failure taxonomy for a focus block run. An empty suggestion list is a
successful result and is never reported through these exceptions.
"""

from typing import Optional


class FocusEngineError(Exception):
    """Base class for failures that abort a focus block run."""

    retryable: bool = False


class DataUnavailable(FocusEngineError):
    """
    A backing store read or write failed.

    The run is aborted with no suggestions persisted; the caller may retry.
    """

    retryable = True

    def __init__(self, source: str, detail: Optional[str] = None):
        self.source = source
        self.detail = detail
        message = f"Data unavailable from {source}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class InvalidRange(FocusEngineError):
    """The requested date range is malformed or reversed."""
