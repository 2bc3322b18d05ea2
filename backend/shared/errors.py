"""
Error taxonomy for match resolution.

Only MatchNotFound ever reaches a client as a hard failure. SourceError
subclasses are raised by adapters and recovered at the resolver/builder
fallback seams.
"""
from __future__ import annotations

from typing import Optional


class MatchcenterError(Exception):
    """Base class for all Matchcenter errors."""


class MatchNotFound(MatchcenterError):
    """Neither the CMS nor the external provider knows the requested match."""

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        super().__init__(f"match not found: {identifier}")


class SourceError(MatchcenterError):
    """An upstream source could not produce a usable record."""

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"{source}: {reason}")


class UpstreamUnavailable(SourceError):
    """Network failure, timeout, rate limit or 5xx from an upstream source."""

    def __init__(self, source: str, reason: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(source, reason)


class MalformedRecord(SourceError):
    """A source record lacks a field required to represent it."""

    def __init__(self, source: str, reason: str, field: Optional[str] = None) -> None:
        self.field = field
        super().__init__(source, reason)


class PartialData(MatchcenterError):
    """
    A secondary field (lineup, live stats, live report) is unavailable.

    Never raised across the API; carried as log context when a branch
    degrades to None.
    """

    def __init__(self, field: str, cause: Optional[BaseException] = None) -> None:
        self.field = field
        self.cause = cause
        super().__init__(f"{field} unavailable" + (f": {cause}" if cause else ""))
