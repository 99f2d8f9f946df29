"""Exponential backoff utilities."""
import logging

from tenacity import (
    AsyncRetrying,
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)

from .logger import get_logger

logger = get_logger(__name__)


def exponential_backoff(
    max_attempts: int = 5,
    min_wait: float = 1,
    max_wait: float = 60,
    exceptions: tuple = (ConnectionError, TimeoutError)
):
    """Decorator for exponential backoff retry."""
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(exceptions),
        before_sleep=before_sleep_log(logger, logging.WARN),
        reraise=True
    )


def async_retrying(
    max_attempts: int = 5,
    min_wait: float = 1,
    max_wait: float = 60,
    exceptions: tuple = (ConnectionError, TimeoutError)
) -> AsyncRetrying:
    """Async retry controller with the same policy as ``exponential_backoff``.

    Usage::

        async for attempt in async_retrying(exceptions=(RateLimited,)):
            with attempt:
                response = await call()
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(exceptions),
        before_sleep=before_sleep_log(logger, logging.WARN),
        reraise=True
    )
