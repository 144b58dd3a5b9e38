"""
Declarative retry policy shared by every remote call.

A ``RetryPolicy`` bundles the attempt cap, the backoff function and the
retryable predicate, so call sites never carry their own counters or
inline sleeps.
"""

import time
from typing import Callable, Optional

from .errors import RateLimitedError, TransientRemoteError


def default_backoff(
    base_delay: float = 1.0,
    max_delay: float = 8.0,
    fixed_delay: float = 1.0,
) -> Callable[[int, BaseException], float]:
    """
    Build the standard delay function.

    Rate-limit errors honour an explicit ``retry_after`` hint, otherwise
    back off exponentially (``base_delay * 2**attempt``). Everything else
    waits ``fixed_delay``. All delays are capped at ``max_delay``.
    """
    def backoff(attempt: int, error: BaseException) -> float:
        if isinstance(error, RateLimitedError):
            if error.retry_after is not None and error.retry_after >= 0:
                return min(float(error.retry_after), max_delay)
            return min(base_delay * (2 ** attempt), max_delay)
        return min(fixed_delay, max_delay)

    return backoff


def default_retryable(error: BaseException, attempt: int) -> bool:
    """
    Rate limits are retried until the policy's attempt cap; other
    transient failures get exactly one retry. Authentication failures and
    anything unclassified are never retried.
    """
    if isinstance(error, RateLimitedError):
        return True
    if isinstance(error, TransientRemoteError):
        return attempt < 1
    return False


class RetryPolicy:
    """
    Retry configuration applied through ``call``.

    Args:
        max_attempts: Maximum number of retries after the first try
        backoff: Function(attempt, error) -> seconds to wait
        retryable: Function(error, attempt) -> whether to retry
        sleep: Sleep function (injectable for tests)
        on_retry: Optional callback(attempt, error, delay)
    """

    def __init__(
        self,
        max_attempts: int = 2,
        backoff: Optional[Callable[[int, BaseException], float]] = None,
        retryable: Optional[Callable[[BaseException, int], bool]] = None,
        sleep: Callable[[float], None] = time.sleep,
        on_retry: Optional[Callable] = None,
    ):
        self.max_attempts = max_attempts
        self.backoff = backoff or default_backoff()
        self.retryable = retryable or default_retryable
        self.sleep = sleep
        self.on_retry = on_retry

    def call(self, func: Callable, *args, **kwargs):
        """
        Run ``func`` under the policy.

        Non-retryable errors propagate unchanged. When retries run out the
        last error is re-raised, so callers see the real failure kind.
        """
        attempt = 0
        while True:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if attempt >= self.max_attempts or not self.retryable(e, attempt):
                    raise
                delay = self.backoff(attempt, e)
                if self.on_retry:
                    self.on_retry(attempt + 1, e, delay)
                self.sleep(delay)
                attempt += 1

