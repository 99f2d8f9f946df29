"""Typed failures raised by the sync adapters.

The sync pipeline dispatches on ``SourceError.kind``; it never inspects message text.
"""
from enum import Enum
from typing import Optional


class SourceErrorKind(str, Enum):
    UNAUTHORIZED = "unauthorized"  # credentials rejected, missing scope or membership
    UNREACHABLE = "unreachable"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"


class SourceError(Exception):
    """An upstream source failed for one sync scope."""

    kind = SourceErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        source: str,
        scope: Optional[str] = None,
        kind: Optional[SourceErrorKind] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.message = message
        self.source = source
        self.scope = scope
        self.retry_after = retry_after
        if kind is not None:
            self.kind = kind

    def for_scope(self, scope: str) -> "SourceError":
        """Attach the sync scope if the adapter did not know it."""
        if self.scope is None:
            self.scope = scope
        return self

    def __str__(self) -> str:
        return self.message


class SourceUnavailable(SourceError):
    """Source cannot be reached, timed out, or refuses access to the resource."""

    kind = SourceErrorKind.UNREACHABLE


class RateLimited(SourceError):
    """Source asked us to slow down."""

    kind = SourceErrorKind.RATE_LIMITED


def unauthorized(message: str, source: str, scope: Optional[str] = None) -> SourceUnavailable:
    return SourceUnavailable(message, source, scope, kind=SourceErrorKind.UNAUTHORIZED)


def timed_out(source: str, scope: str, seconds: float) -> SourceUnavailable:
    return SourceUnavailable(
        f"{source} did not respond within {seconds:.0f}s while syncing {scope}",
        source,
        scope,
        kind=SourceErrorKind.TIMEOUT,
    )
