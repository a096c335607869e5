"""
Exception hierarchy for scholar_search.

    ScholarSearchError (base)
    ├── InvalidSearchOptions     malformed query / options, raised before any I/O
    └── SourceError              one provider failed; isolated by the orchestrator
        ├── SourceTimeout
        ├── SourceRateLimited
        └── SourceResponseError

Only InvalidSearchOptions is allowed to escape SearchOrchestrator.search().
Everything under SourceError is caught per source and turned into an entry
in SearchResult.metadata.errors.
"""

from typing import Optional


class ScholarSearchError(Exception):
    """Base exception for all scholar_search errors."""


class InvalidSearchOptions(ScholarSearchError, ValueError):
    """The caller passed a malformed query or option set."""

    def __init__(self, message: str, *, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class SourceError(ScholarSearchError):
    """A single source adapter failed."""

    def __init__(self, source_id: str, message: str):
        super().__init__(f"{source_id}: {message}")
        self.source_id = source_id
        self.reason = message


class SourceTimeout(SourceError):
    """The source did not answer within its time slice."""

    def __init__(self, source_id: str, timeout_ms: float):
        super().__init__(source_id, f"timed out after {timeout_ms:.0f}ms")
        self.timeout_ms = timeout_ms


class SourceRateLimited(SourceError):
    """The provider kept answering 429 after all retries."""

    def __init__(self, source_id: str, retry_after: Optional[float] = None):
        message = "rate limited"
        if retry_after:
            message += f" (retry after {retry_after:.0f}s)"
        super().__init__(source_id, message)
        self.retry_after = retry_after


class SourceResponseError(SourceError):
    """HTTP error status or a payload the adapter could not parse."""

    def __init__(self, source_id: str, message: str, status_code: Optional[int] = None):
        super().__init__(source_id, message)
        self.status_code = status_code
