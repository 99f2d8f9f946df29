"""Utilities package for Engagement Hub.

Contains core utilities for logging, rate limiting, and retry logic.
"""
from .logger import get_logger, setup_logging
from .rate_limiter import RateLimiter, get_rate_limiter
from .backoff import exponential_backoff, async_retrying

__all__ = [
    "get_logger",
    "setup_logging",
    "RateLimiter",
    "get_rate_limiter",
    "exponential_backoff",
    "async_retrying",
]
