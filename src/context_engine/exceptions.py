"""Custom exceptions for the context assembly engine."""

from typing import Any


class ContextEngineError(Exception):
    """Base class for context engine errors."""

    pass


class InvalidRequestError(ContextEngineError, ValueError):
    """Raised when a build request is malformed."""

    pass


class SourceUnavailableError(ContextEngineError):
    """Raised when a single source adapter fails or times out."""

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"Source '{source}' unavailable: {reason}")


class AllSourcesFailedError(ContextEngineError):
    """Raised when retrieval produced no usable candidates."""

    def __init__(self, failures: dict[str, str], message: str | None = None) -> None:
        self.failures = dict(failures)
        super().__init__(message or f"No candidates retrieved (failed sources: {sorted(failures)})")


class CompressionFailureError(ContextEngineError):
    """Raised when one compression method fails on one candidate."""

    def __init__(self, method: str, candidate_id: str, cause: Any = None) -> None:
        self.method = method
        self.candidate_id = candidate_id
        self.cause = cause
        super().__init__(f"{method} compression failed for candidate '{candidate_id}': {cause}")
