import time
from collections.abc import Callable
from typing import TypeVar


T = TypeVar("T")


class RetryExhaustedError(RuntimeError):
    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


def run_with_retries(
    fn: Callable[[int], T],
    *,
    max_retries: int,
    delay_seconds: float,
    on_attempt_failure: Callable[[int, Exception], None] | None = None,
    should_retry: Callable[[Exception], bool] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn(attempt)`` until it succeeds, waiting a fixed delay between attempts.

    Non-retryable errors propagate unchanged on the attempt that raised them;
    a retryable error on the last attempt is wrapped in RetryExhaustedError.
    """
    last_error: Exception | None = None

    for attempt in range(1, max_retries + 2):
        try:
            return fn(attempt)
        except Exception as exc:
            last_error = exc
            if on_attempt_failure:
                on_attempt_failure(attempt, exc)

            retry_allowed = True if should_retry is None else should_retry(exc)
            if not retry_allowed:
                raise
            if attempt > max_retries:
                break
            sleep(delay_seconds)

    raise RetryExhaustedError(str(last_error), attempts=max_retries + 1) from last_error
