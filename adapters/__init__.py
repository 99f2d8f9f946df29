"""Sync adapters: turn upstream payloads into typed records.

Import the concrete adapters from their modules (``adapters.slack``,
``adapters.hibob``, ``adapters.webinar_csv``).
"""
from .errors import RateLimited, SourceError, SourceErrorKind, SourceUnavailable

__all__ = [
    "RateLimited",
    "SourceError",
    "SourceErrorKind",
    "SourceUnavailable",
]
