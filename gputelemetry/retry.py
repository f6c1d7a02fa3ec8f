"""Retry a startup dependency check with capped exponential backoff."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, TypeVar

__all__ = ["Cancelled", "DeadlineExceeded", "retry_with_backoff"]

logger = logging.getLogger(__name__)

T = TypeVar("T")

INITIAL_BACKOFF = 0.2
MAX_BACKOFF = 10.0


class Cancelled(Exception):
    """Raised when the stop event is set while waiting to retry."""


class DeadlineExceeded(TimeoutError):
    """Raised when the overall timeout elapses while waiting to retry."""


def _wait(delay: float, stop: Optional[threading.Event], deadline: Optional[float]) -> None:
    """Sleep for ``delay`` seconds unless stopped or the deadline passes first."""
    wait_for = delay
    cut_short = False
    if deadline is not None:
        remaining = max(0.0, deadline - time.monotonic())
        if remaining <= delay:
            wait_for = remaining
            cut_short = True

    if stop is not None:
        if stop.wait(wait_for):
            raise Cancelled("operation cancelled")
    elif wait_for > 0:
        time.sleep(wait_for)

    if cut_short:
        raise DeadlineExceeded("deadline exceeded")


def retry_with_backoff(
    fn: Callable[[], T],
    label: str = "dependency",
    stop: Optional[threading.Event] = None,
    timeout: Optional[float] = None,
) -> T:
    """Call ``fn`` until it returns without raising, and return its result.

    Waits 0.2 s after the first failure, doubling after each further failure
    up to 10 s. Raises :class:`Cancelled` if ``stop`` is set during a wait and
    :class:`DeadlineExceeded` if ``timeout`` seconds elapse; the last failure
    is attached as the cause.
    """
    deadline = None if timeout is None else time.monotonic() + timeout
    delay = INITIAL_BACKOFF
    attempt = 0

    while True:
        attempt += 1
        try:
            result = fn()
        except Exception as exc:  # any failure means "not reachable yet"
            logger.warning(
                "waiting for dependency op=%s attempt=%d next_retry_in=%.3fs error=%s",
                label, attempt, delay, exc,
            )
            try:
                _wait(delay, stop, deadline)
            except (Cancelled, DeadlineExceeded) as abort:
                raise abort from exc
        else:
            if attempt > 1:
                logger.info("dependency reachable op=%s attempts=%d", label, attempt)
            return result

        if delay < MAX_BACKOFF:
            delay = min(delay * 2, MAX_BACKOFF)