"""Fault-tolerant wrapper for remote-touching git calls."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

from .failures import check_for_platform_failure
from .observability import log_debug

T = TypeVar("T")

# Additional attempts after the first one
RETRY_COUNT = 5
DEFAULT_BASE_DELAY = 3.0
DEFAULT_BACKOFF_FACTOR = 2.0


def backoff_delay(round_: int, base_delay: float, backoff_factor: float) -> float:
    """Seconds to wait after the failed attempt numbered ``round_`` (1-based)."""
    return base_delay * backoff_factor ** (round_ - 1)


@dataclass(frozen=True)
class RetryExecutor:
    """Run a zero-argument git operation, retrying transient host failures.

    Only failures classified as transient host failures are retried; any
    other error is re-raised on the spot. After RETRY_COUNT retries the last
    observed error is re-raised. The executor holds no mutable state, so a
    single instance can be shared and re-entered freely.
    """

    base_delay: float = DEFAULT_BASE_DELAY
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __call__(self, operation: Callable[[], T]) -> T:
        last_error: Optional[BaseException] = None

        for round_ in range(RETRY_COUNT + 1):
            if round_ > 0:
                log_debug(f"git_retry round {round_}")
            try:
                result = operation()
                if round_ > 0:
                    log_debug("Successful retry of git function", round=round_)
                return result
            except Exception as err:
                last_error = err
                host_error = check_for_platform_failure(err)
                if host_error is None:
                    raise
                log_debug(
                    f"ExternalHostError thrown in round {round_ + 1} of {RETRY_COUNT + 1}",
                    error=str(host_error.err),
                )

            if round_ < RETRY_COUNT:
                delay = backoff_delay(round_ + 1, self.base_delay, self.backoff_factor)
                log_debug("Delay next round", delay=delay)
                self.sleep(delay)

        assert last_error is not None
        raise last_error


def git_retry(operation: Callable[[], T], **kwargs) -> T:
    """Convenience wrapper: ``git_retry(fn)`` == ``RetryExecutor()(fn)``."""
    return RetryExecutor(**kwargs)(operation)
