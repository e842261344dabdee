# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/utils/retry.py

import functools
import time
from typing import Callable, Optional


class RetryError(RuntimeError):
    """All attempts failed; ``last_error`` is the final failure."""

    def __init__(self, name: str, attempts: int, last_error: Optional[BaseException]):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{name} failed after {attempts} attempts: {last_error}")


def retry(
    *,
    retries: int,
    delay: float,
    backoff: float = 1.0,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[[int, Exception], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Retry decorator for idempotent checks.

    retries: total number of attempts
    delay: seconds before the second attempt
    backoff: multiplier applied to the delay after every failed attempt
    retry_on: exception types that trigger another attempt, others propagate
    on_retry: callback(attempt, exception) after each failed attempt
    sleep: injectable for tests
    """
    if retries < 1:
        raise ValueError("retries must be at least 1")

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            wait = delay
            last_exc = None
            for attempt in range(1, retries + 1):
                try:
                    return fn(*args, **kwargs)
                except retry_on as exc:
                    last_exc = exc
                    if on_retry:
                        on_retry(attempt, exc)
                if attempt < retries:
                    sleep(wait)
                    wait *= backoff
            raise RetryError(fn.__name__, retries, last_exc) from last_exc
        return wrapper
    return decorator
