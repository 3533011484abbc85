import pytest

from castforge.services.ai_clients.base import AIClientConnectionError
from castforge.services.errors import PollingTimeout
from castforge.services.polling import fixed_schedule, narration_schedule, poll_until


class AdvancingSleep:
    """Sleep that advances a fake clock instead of waiting."""

    def __init__(self):
        self.now = 0.0
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        self.now += delay

    def clock(self) -> float:
        return self.now


class StatusSequence:
    def __init__(self, statuses):
        self.statuses = list(statuses)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(status, Exception):
            raise status
        return status


def test_narration_schedule_steps():
    assert [narration_schedule(n) for n in (1, 5, 6, 15, 16, 40)] == [3, 3, 5, 5, 10, 10]


def test_fixed_schedule():
    schedule = fixed_schedule(10)
    assert schedule(1) == schedule(59) == 10


async def test_returns_first_terminal_result():
    sleep = AdvancingSleep()
    fetch = StatusSequence(["pending", "pending", "success"])

    result = await poll_until(
        fetch, lambda s: s != "pending", narration_schedule, "episode",
        max_wait=100, initial_delay=10, sleep=sleep, clock=sleep.clock,
    )

    assert result == "success"
    assert fetch.calls == 3
    assert sleep.delays == [10, 3, 3]


async def test_attempt_budget_raises_timeout():
    sleep = AdvancingSleep()
    fetch = StatusSequence(["processing"])

    with pytest.raises(PollingTimeout) as exc_info:
        await poll_until(
            fetch, lambda s: s != "processing", fixed_schedule(10), "avatar video",
            max_attempts=60, sleep=sleep, clock=sleep.clock,
        )

    assert fetch.calls == 60
    assert exc_info.value.attempts == 60
    assert len(sleep.delays) == 59


async def test_time_budget_raises_timeout():
    sleep = AdvancingSleep()
    fetch = StatusSequence(["pending"])

    with pytest.raises(PollingTimeout):
        await poll_until(
            fetch, lambda s: s != "pending", narration_schedule, "episode",
            max_wait=60, initial_delay=10, sleep=sleep, clock=sleep.clock,
        )

    assert sleep.now >= 60


async def test_tolerated_errors_count_as_pending():
    sleep = AdvancingSleep()
    fetch = StatusSequence([AIClientConnectionError("blip"), "success"])

    result = await poll_until(
        fetch, lambda s: s == "success", fixed_schedule(1), "episode",
        max_attempts=5, tolerate=(AIClientConnectionError,), sleep=sleep, clock=sleep.clock,
    )

    assert result == "success"
    assert fetch.calls == 2


async def test_untolerated_errors_propagate():
    sleep = AdvancingSleep()
    fetch = StatusSequence([RuntimeError("boom")])

    with pytest.raises(RuntimeError):
        await poll_until(
            fetch, lambda s: True, fixed_schedule(1), "episode",
            max_attempts=5, sleep=sleep, clock=sleep.clock,
        )


async def test_requires_a_budget():
    with pytest.raises(ValueError):
        await poll_until(lambda: None, lambda s: True, fixed_schedule(1), "x")
