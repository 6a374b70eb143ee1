"""
Retry with exponential backoff for transient transport errors.

Only the Google API transport uses this. Rate limiting (HTTP 429), server
errors (5xx) and dropped connections usually clear up after a short wait;
anything else (404, 403, bad requests) is raised immediately so the calling
pipeline can log it against the document or client it belongs to.

Delays double on every attempt, are capped at ``max_delay`` and get a random
jitter factor in [0.5, 1.5) so that parallel callers do not retry in lockstep.

Usage:
    from utils.retry import retry_on_transient_error

    @retry_on_transient_error(is_retryable=lambda e: isinstance(e, ConnectionError))
    def call_api():
        return request.execute()
"""

import logging
import random
import time
from functools import wraps
from typing import Callable, Optional

logger = logging.getLogger(__name__)

# Status codes that mean "try again later"
TRANSIENT_HTTP_STATUS_CODES = {429, 500, 502, 503, 504}

TRANSIENT_NETWORK_EXCEPTIONS = (
    ConnectionError,
    TimeoutError,
)


def is_transient_network_error(exc: Exception) -> bool:
    """True for connection resets, refused connections and timeouts."""
    return isinstance(exc, TRANSIENT_NETWORK_EXCEPTIONS)


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number ``attempt`` (0-based), jitter included."""
    delay = min(base_delay * (2 ** attempt), max_delay)
    return delay * (0.5 + random.random())


def retry_on_transient_error(
    is_retryable: Callable[[Exception], bool],
    max_retries: int = 5,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    on_retry: Optional[Callable[[Exception, int, float], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """Decorator retrying a function while ``is_retryable(exc)`` holds.

    Args:
        is_retryable: Predicate deciding whether an exception is transient
        max_retries: Retries after the first attempt (total = max_retries + 1)
        base_delay: Delay before the first retry, in seconds
        max_delay: Upper bound for a single delay, before jitter
        on_retry: Called with (exception, failed attempt number, delay)
        sleep: Sleep function, replaceable in tests

    Raises:
        The original exception when it is not retryable, or the last one
        once retries are exhausted.
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except Exception as exc:
                    if not is_retryable(exc) or attempt >= max_retries:
                        raise
                    delay = backoff_delay(attempt, base_delay, max_delay)
                    if on_retry:
                        on_retry(exc, attempt + 1, delay)
                    else:
                        logger.warning("%s on attempt %d, retrying in %.1fs",
                                       type(exc).__name__, attempt + 1, delay)
                    sleep(delay)
                    attempt += 1

        return wrapper
    return decorator
