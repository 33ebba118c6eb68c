"""Retry policy for read-only network calls.

Lookups, intent extraction and disambiguation are idempotent and may be
retried once on a transient failure.  Mutations never go through here.
"""
import logging
from typing import Callable

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from core.config import READ_ATTEMPTS

logger = logging.getLogger(__name__)


def read_retrying(
    is_transient: Callable[[BaseException], bool],
    attempts: int = READ_ATTEMPTS,
    wait_min: float = 0.2,
) -> AsyncRetrying:
    """Build an ``AsyncRetrying`` that retries only transient errors.

    Usage::

        async for attempt in read_retrying(_is_transient):
            with attempt:
                resp = await client.get(...)
    """
    return AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=wait_min, min=wait_min, max=2),
        retry=retry_if_exception(is_transient),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
