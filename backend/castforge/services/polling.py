"""
Polling loops for asynchronous engine jobs.

The wait between polls comes from an explicit interval schedule
(a function of the number of non-terminal polls so far), so loops
never scatter ad hoc sleeps and schedules are testable on their own.

Example:
    episode = await poll_until(
        lambda: client.get_episode(episode_id),
        is_terminal=lambda e: e.is_terminal,
        schedule=narration_schedule,
        operation=f"narration episode {episode_id}",
        initial_delay=10,
        max_wait=30 * 60,
    )
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, TypeVar

from castforge.services.errors import PollingTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")

IntervalSchedule = Callable[[int], float]
SleepFunc = Callable[[float], Awaitable[None]]


def narration_schedule(pending_polls: int) -> float:
    """
    Adaptive interval for narration episodes: frequent early, sparser later.

    Args:
        pending_polls: Number of non-terminal polls so far (1-based)

    Returns:
        Seconds to wait before the next poll:
        3s for polls 1-5, 5s for polls 6-15, 10s afterwards
    """
    if pending_polls <= 5:
        return 3.0
    if pending_polls <= 15:
        return 5.0
    return 10.0


def fixed_schedule(interval: float) -> IntervalSchedule:
    """Constant interval schedule (avatar video jobs poll every 10s)."""

    def schedule(pending_polls: int) -> float:
        return interval

    return schedule


async def poll_until(
    fetch: Callable[[], Awaitable[T]],
    is_terminal: Callable[[T], bool],
    schedule: IntervalSchedule,
    operation: str,
    max_attempts: int | None = None,
    max_wait: float | None = None,
    initial_delay: float = 0.0,
    tolerate: tuple[type[BaseException], ...] = (),
    sleep: SleepFunc | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """
    Poll fetch() until is_terminal(result) or the budget runs out.

    Args:
        fetch: Async status query
        is_terminal: Predicate for a finished job (success or failure)
        schedule: Interval schedule (seconds after the n-th pending poll)
        operation: Description used in logs and the timeout error
        max_attempts: Maximum number of status queries (None = unbounded)
        max_wait: Maximum seconds spent polling, including initial_delay
        initial_delay: Wait before the first query
        tolerate: Exception types logged and treated as a pending poll
        sleep: Async sleep function (injectable for tests)
        clock: Monotonic clock (injectable for tests)

    Returns:
        The first terminal result

    Raises:
        PollingTimeout: Budget exhausted without a terminal result
        ValueError: If neither max_attempts nor max_wait is given
    """
    if max_attempts is None and max_wait is None:
        raise ValueError("poll_until needs max_attempts or max_wait")

    sleep = sleep or asyncio.sleep
    started = clock()
    attempts = 0
    pending_polls = 0

    if initial_delay > 0:
        await sleep(initial_delay)

    while True:
        if max_wait is not None and clock() - started >= max_wait:
            break

        attempts += 1
        try:
            result = await fetch()
        except tolerate as e:
            logger.warning(f"{operation}: status check {attempts} failed: {type(e).__name__}: {e}")
        else:
            if is_terminal(result):
                logger.debug(f"{operation}: terminal after {attempts} checks")
                return result

        pending_polls += 1
        if max_attempts is not None and attempts >= max_attempts:
            break

        interval = schedule(pending_polls)
        if pending_polls == 1 or pending_polls % 10 == 0:
            logger.info(
                f"{operation}: still processing "
                f"({clock() - started:.0f}s elapsed, next check in {interval:g}s)"
            )
        await sleep(interval)

    elapsed = clock() - started
    logger.warning(f"{operation}: gave up after {attempts} checks ({elapsed:.0f}s)")
    raise PollingTimeout(operation, attempts, elapsed)
