# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Bounded retry for checks against eventually consistent state.

:func:`retry` calls an async check up to *times* times and returns its
first result.  Between attempts it yields to the event loop instead of
sleeping, so the routing hub and the device client get to make progress
without an artificial latency bound.

Each call site chooses its own budget; there is no global retry policy.

Logger: ``hub_e2e.retry``; failed attempts are logged at WARNING level.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import AsyncRetrying, RetryCallState, RetryError, retry_if_exception_type, stop_after_attempt, wait_none

from hub_e2e.errors import ExhaustedRetries

__all__ = ["retry"]

_logger = logging.getLogger("hub_e2e.retry")

T = TypeVar("T")


async def _yield_now(_seconds: float) -> None:
    """Give other tasks a turn; the wait strategy always asks for zero seconds."""
    await asyncio.sleep(0)


async def retry(times: int, check: Callable[[], Awaitable[T]], *, what: str = "check") -> T:
    """Run *check* until it succeeds, at most *times* times.

    Args:
        times: Maximum number of attempts (>= 1).
        check: Zero-argument coroutine function; any ``Exception`` it raises
            counts as a failed attempt.
        what: Description used in logs and in the final error.

    Returns:
        The result of the first successful attempt.

    Raises:
        ValueError: If *times* < 1.
        ExhaustedRetries: If every attempt failed; ``last_error`` holds the
            error of the final attempt.

    """
    if times < 1:
        raise ValueError(f"times must be >= 1, got {times}")

    def _log_failure(state: RetryCallState) -> None:
        if state.outcome is None:
            return
        _logger.warning(
            "Failed retry %d/%d for %s: %s",
            state.attempt_number,
            times,
            what,
            state.outcome.exception(),
            extra={"attempt": state.attempt_number, "max_attempts": times, "check": what},
        )

    retryer = AsyncRetrying(
        stop=stop_after_attempt(times),
        wait=wait_none(),
        retry=retry_if_exception_type(Exception),
        sleep=_yield_now,
        after=_log_failure,
    )
    try:
        return await retryer(check)
    except RetryError as e:
        last = e.last_attempt
        last_error = last.exception() if last.failed else None
        raise ExhaustedRetries(last.attempt_number, last_error, what=what) from last_error
