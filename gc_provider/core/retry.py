"""
Retry wrapper shared by every resource handler.

An operation is a zero-argument callable. It signals "not yet" by raising
:class:`RetryableError`; any other exception is terminal and propagates as-is.
The loop polls with exponential backoff until the operation returns, fails
terminally, or the window closes (:class:`RetryTimeoutError`).

The window is ``timeout`` seconds, cut short by the engine deadline when one is
given (a ``time.monotonic()`` value). If that window closes before any attempt
produced an outcome the state never stabilised; the wrapper then restarts once
with a fresh window that ignores the engine deadline.
"""
from __future__ import annotations

import time
from typing import Callable, Optional, TypeVar

from .errors import RetryableError, RetryTimeoutError, is_not_found
from .logging_utils import get_logger

log = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MIN_DELAY = 0.1
DEFAULT_MAX_DELAY = 10.0
DEFAULT_READ_TIMEOUT = 300.0


def retry_until(
    timeout: float,
    method: Callable[[], T],
    *,
    deadline: Optional[float] = None,
    min_delay: float = DEFAULT_MIN_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
) -> T:
    """Invoke *method* until it returns, fails terminally, or time runs out.

    Returns:
        Whatever *method* returned on its successful attempt.

    Raises:
        RetryTimeoutError: When the window closes; ``last_error`` holds the
            last retryable failure (None if no attempt ran).
        Exception: Any non-retryable error raised by *method*.
    """
    end = time.monotonic() + float(timeout)
    if deadline is not None:
        end = min(end, deadline)

    delay = max(0.0, float(min_delay))
    attempts = 0
    last: Optional[BaseException] = None

    while True:
        if time.monotonic() >= end:
            raise RetryTimeoutError(timeout, attempts, last)

        attempts += 1
        try:
            return method()
        except RetryableError as exc:
            last = exc.error
            log.debug("retry: attempt %d not done yet: %s", attempts, exc.error)

        remaining = end - time.monotonic()
        if remaining <= 0:
            raise RetryTimeoutError(timeout, attempts, last)
        time.sleep(min(delay, remaining))
        delay = min(delay * 2, max_delay)


def with_retries(
    timeout: float,
    method: Callable[[], T],
    *,
    deadline: Optional[float] = None,
    restarts: int = 1,
    min_delay: float = DEFAULT_MIN_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
) -> T:
    """:func:`retry_until` plus the fresh-deadline restart on a stalled window."""
    try:
        return retry_until(timeout, method, deadline=deadline, min_delay=min_delay, max_delay=max_delay)
    except RetryTimeoutError as exc:
        # TODO: drop the restart once callers stop handing in already-expired deadlines.
        if not exc.stalled or restarts <= 0:
            raise
        log.warning("retry: %s; restarting with a fresh %gs deadline", exc, timeout)
        return with_retries(
            timeout, method, deadline=None, restarts=restarts - 1, min_delay=min_delay, max_delay=max_delay
        )


def with_retries_for_read(
    data,
    method: Callable[[], T],
    *,
    timeout: float = DEFAULT_READ_TIMEOUT,
    deadline: Optional[float] = None,
    min_delay: float = DEFAULT_MIN_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
) -> Optional[T]:
    """Run a read loop; a final not-found outcome marks the resource gone.

    Args:
        data: Object exposing ``set_id`` (a :class:`~gc_provider.core.state.ResourceData`).

    Returns:
        The read result, or None when the resource no longer exists (the ID on
        *data* has been cleared).
    """
    try:
        return with_retries(timeout, method, deadline=deadline, min_delay=min_delay, max_delay=max_delay)
    except RetryTimeoutError as exc:
        if is_not_found(exc.last_error):
            log.info("read: %s not found after %gs, removing from state", data.id, timeout)
            data.set_id("")
            return None
        raise
    except Exception as exc:
        if is_not_found(exc):
            log.info("read: %s not found, removing from state", data.id)
            data.set_id("")
            return None
        raise
