"""
Retry combinator with linear backoff, shared by service calls and
response parsing. Attempt ``n`` failing waits ``n * base_delay`` seconds.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, TypeVar

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from .exceptions import ExtractionServiceError, ResponseParseError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS = (ExtractionServiceError, ResponseParseError)


def linear_backoff(base_delay: float):
    """Wait strategy producing ``attempt * base_delay``."""
    return wait_incrementing(start=base_delay, increment=base_delay)


def call_with_retry(
    fn: Callable[[], T],
    max_retries: int = 1,
    base_delay: float = 1.0,
    retry_on: tuple[type[BaseException], ...] = RETRYABLE_ERRORS,
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """
    Call ``fn`` until it succeeds or ``max_retries`` extra attempts are used.

    The last exception is re-raised once retries are exhausted. Exceptions
    outside ``retry_on`` propagate immediately.
    """
    retrying = Retrying(
        stop=stop_after_attempt(max(0, max_retries) + 1),
        wait=linear_backoff(base_delay),
        retry=retry_if_exception_type(retry_on),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=sleep or time.sleep,
        reraise=True,
    )
    return retrying(fn)
