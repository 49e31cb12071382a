"""Bounded retry with exponential backoff for external side effects."""

from __future__ import annotations

import logging
import time
from typing import Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhausted(Exception):
    """Raised when every attempt failed; ``last_error`` holds the final cause."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"gave up after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


def retry_with_backoff(
    func: Callable[[], T],
    *,
    max_attempts: int,
    base_delay: float,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
    description: str = "operation",
) -> T:
    """Call ``func`` until it succeeds or ``max_attempts`` is reached.

    The delay before attempt ``n + 1`` is ``base_delay * 2 ** (n - 1)``.

    Raises
    ------
    RetryExhausted
        Wrapping the last exception raised by ``func``.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 0
    while True:
        attempt += 1
        try:
            return func()
        except retry_on as exc:
            if attempt >= max_attempts:
                logger.error(f"{description} failed after {attempt} attempt(s): {exc}")
                raise RetryExhausted(attempt, exc) from exc
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(
                f"{description} attempt {attempt}/{max_attempts} failed: {exc}; "
                f"retrying in {delay:.2f}s"
            )
            sleep(delay)


__all__ = ["RetryExhausted", "retry_with_backoff"]
