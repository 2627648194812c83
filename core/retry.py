"""Retry utilities for idempotent async storage reads.

Only reads go through these decorators. Conditional writes and engine calls
are never retried automatically: a repeated write could double count an
attempt, and engine retries are bounded by the trip's attempt budget.
"""

from __future__ import annotations

import logging

from pymongo.errors import AutoReconnect, NetworkTimeout
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)


def retry_async(
    max_retries: int = 2,
    retry_delay: float = 0.2,
    backoff_factor: float = 2.0,
    retry_exceptions: tuple = (AutoReconnect, NetworkTimeout),
):
    """Factory that returns a tenacity retry decorator configured with provided parameters.

    Args:
        max_retries: Maximum number of retry attempts (in addition to the first attempt).
        retry_delay: Initial delay between retries in seconds (used as multiplier).
        backoff_factor: Exponential backoff base for increasing delay between retries.
        retry_exceptions: Tuple of exception types that should trigger a retry.

    Returns:
        A tenacity retry decorator configured with the specified parameters.

    Example:
        @retry_async(max_retries=3)
        async def load_points(trip_id):
            return await TripGpsPoint.find(TripGpsPoint.trip_id == trip_id).to_list()
    """
    return retry(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=retry_delay, exp_base=backoff_factor),
        retry=retry_if_exception_type(retry_exceptions),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
