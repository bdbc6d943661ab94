# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for the bounded retry driver and the two-party rendezvous."""

from __future__ import annotations

import asyncio
import logging

import pytest

from hub_e2e.barrier import Rendezvous
from hub_e2e.errors import AssertionFailure, ExhaustedRetries
from hub_e2e.retry import retry


class _Flaky:
    """Check that fails a fixed number of times before succeeding."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise AssertionFailure("not yet", endpoint="/integer_endpoint")
        return "ok"


class TestRetry:
    """Attempt counting and exhaustion."""

    def test_first_success_returned(self) -> None:
        """A passing check runs once."""
        check = _Flaky(0)
        assert asyncio.run(retry(10, check)) == "ok"
        assert check.calls == 1

    def test_converges_within_budget(self) -> None:
        """Failures before the budget runs out are absorbed."""
        check = _Flaky(9)
        assert asyncio.run(retry(10, check)) == "ok"
        assert check.calls == 10

    def test_exhausted(self) -> None:
        """The last failure is kept as cause and its endpoint is surfaced."""
        check = _Flaky(100)
        with pytest.raises(ExhaustedRetries) as exc_info:
            asyncio.run(retry(3, check, what="integer check"))
        err = exc_info.value
        assert check.calls == 3
        assert err.attempts == 3
        assert isinstance(err.last_error, AssertionFailure)
        assert err.__cause__ is err.last_error
        assert err.endpoint == "/integer_endpoint"
        assert "integer check did not converge" in str(err)

    def test_single_attempt(self) -> None:
        """A budget of one means no retry at all."""
        check = _Flaky(1)
        with pytest.raises(ExhaustedRetries):
            asyncio.run(retry(1, check))
        assert check.calls == 1

    def test_invalid_budget(self) -> None:
        """A budget below one is a programming error."""
        with pytest.raises(ValueError, match="times must be >= 1"):
            asyncio.run(retry(0, _Flaky(0)))

    def test_failed_attempts_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        """Every failed attempt is logged at WARNING with its attempt number."""
        with caplog.at_level(logging.WARNING, logger="hub_e2e.retry"):
            asyncio.run(retry(5, _Flaky(2), what="discovery"))
        records = [r for r in caplog.records if r.name == "hub_e2e.retry"]
        assert [r.attempt for r in records] == [1, 2]  # type: ignore[attr-defined]
        assert all(r.max_attempts == 5 and r.check == "discovery" for r in records)  # type: ignore[attr-defined]

    def test_yields_between_attempts(self) -> None:
        """Other tasks make progress while a check is being retried."""

        async def scenario() -> int:
            state = {"ticks": 0}

            async def ticker() -> None:
                for _ in range(5):
                    state["ticks"] += 1
                    await asyncio.sleep(0)

            async def converged() -> int:
                if state["ticks"] < 5:
                    raise AssertionFailure("ticker not done")
                return state["ticks"]

            async with asyncio.TaskGroup() as tg:
                tg.create_task(ticker())
                result = tg.create_task(retry(20, converged))
            return result.result()

        assert asyncio.run(scenario()) == 5


class TestRendezvous:
    """Two-party pacing."""

    def test_both_parties_see_same_generation(self) -> None:
        """Each completed rendezvous has one generation number shared by both sides."""

        async def scenario() -> tuple[list[int], list[int], int]:
            barrier = Rendezvous()

            async def party(name: str) -> list[int]:
                return [await barrier.wait(name) for _ in range(3)]

            async with asyncio.TaskGroup() as tg:
                a = tg.create_task(party("a"))
                b = tg.create_task(party("b"))
            return a.result(), b.result(), barrier.generation

        a, b, generation = asyncio.run(scenario())
        assert a == b == [1, 2, 3]
        assert generation == 3

    def test_neither_side_runs_ahead(self) -> None:
        """A sender pacing on the barrier is never more than one step ahead of the applier."""

        async def scenario() -> list[str]:
            barrier = Rendezvous()
            events: list[str] = []

            async def sender() -> None:
                for i in range(4):
                    events.append(f"send {i}")
                    await barrier.wait("sender")

            async def applier() -> None:
                for i in range(4):
                    await asyncio.sleep(0)
                    events.append(f"apply {i}")
                    await barrier.wait("applier")

            async with asyncio.TaskGroup() as tg:
                tg.create_task(sender())
                tg.create_task(applier())
            return events

        events = asyncio.run(scenario())
        for i in range(4):
            assert events.index(f"send {i}") < events.index(f"apply {i}")
            if i + 1 < 4:
                assert events.index(f"apply {i}") < events.index(f"send {i + 1}")

    def test_abort_breaks_waiters(self) -> None:
        """Aborting wakes a lone waiter with ``BrokenBarrierError``."""

        async def scenario() -> bool:
            barrier = Rendezvous("test")
            waiter = asyncio.create_task(barrier.wait("lonely"))
            await asyncio.sleep(0)
            await barrier.abort()
            with pytest.raises(asyncio.BrokenBarrierError):
                await waiter
            return barrier.broken

        assert asyncio.run(scenario()) is True
