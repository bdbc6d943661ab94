# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Run-to-completion entry point.

:func:`run_e2e` starts the routing hub and the device client run loops and
the sequencer as three sibling tasks of one ``asyncio.TaskGroup``.  When any
of them fails the others are cancelled and the failures are collapsed into
a single error on the returned :class:`E2EReport`; the function itself does
not raise for a failed run.

Usage::

    from hub_e2e import E2EConfig, Rendezvous, loopback_collaborators, run_e2e

    barrier = Rendezvous()
    report = asyncio.run(run_e2e(loopback_collaborators(E2EConfig(), barrier), barrier))
    report.raise_for_error()

Logger: ``hub_e2e.runner``.
"""

from __future__ import annotations

import asyncio
import importlib
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from hub_e2e.api import InspectionApi
from hub_e2e.barrier import Rendezvous
from hub_e2e.config import E2EConfig
from hub_e2e.device import DeviceClient, RoutingHub
from hub_e2e.errors import ConfigurationError, E2EError, TaskFailure, TeardownError
from hub_e2e.interfaces import INTERFACES, Interface
from hub_e2e.otel import PhaseInstrumentation
from hub_e2e.sequencer import PHASES, PhaseResult, Sequencer

__all__ = [
    "DEFAULT_FACTORY",
    "CollaboratorFactory",
    "Collaborators",
    "E2EReport",
    "load_factory",
    "run_e2e",
]

_logger = logging.getLogger("hub_e2e.runner")

DEFAULT_FACTORY = "hub_e2e.loopback:loopback_collaborators"


@dataclass(frozen=True)
class Collaborators:
    """The external parties a run drives."""

    hub: RoutingHub
    device: DeviceClient
    api: InspectionApi


CollaboratorFactory = Callable[[E2EConfig, Rendezvous], Collaborators]


@dataclass(frozen=True)
class E2EReport:
    """Outcome of one run.

    Attributes:
        phases: Results of the phases that ran, in order.
        error: The run failure, ``None`` when every phase passed.
        teardown_error: Failure while closing the collaborators after the phases.
        duration_ms: Wall time of the whole run.

    """

    phases: list[PhaseResult]
    error: E2EError | None
    teardown_error: TeardownError | None
    duration_ms: float

    @property
    def total(self) -> int:
        """Number of phases in a complete run."""
        return len(PHASES)

    @property
    def passed(self) -> int:
        """Number of phases that passed."""
        return sum(1 for r in self.phases if r.passed)

    @property
    def failed(self) -> int:
        """Number of phases that failed."""
        return sum(1 for r in self.phases if not r.passed)

    @property
    def skipped(self) -> int:
        """Number of phases never reached."""
        return self.total - len(self.phases)

    @property
    def success(self) -> bool:
        """Whether every phase passed and teardown was clean."""
        return self.error is None and self.teardown_error is None

    def raise_for_error(self) -> None:
        """Raise the run error, else the teardown error, if any."""
        if self.error is not None:
            raise self.error
        if self.teardown_error is not None:
            raise self.teardown_error


def load_factory(path: str) -> CollaboratorFactory:
    """Resolve a ``module:attribute`` path to a collaborator factory.

    Raises:
        ConfigurationError: If the path is malformed or does not name a callable.

    """
    module_name, sep, attribute = path.partition(":")
    if not sep or not module_name or not attribute:
        raise ConfigurationError(f"collaborator factory must look like 'module:attribute', got {path!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"cannot import {module_name!r}: {e}") from e
    factory = getattr(module, attribute, None)
    if not callable(factory):
        raise ConfigurationError(f"{path!r} is not a callable collaborator factory")
    return factory  # type: ignore[no-any-return]


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


async def _supervise(task: str, run: Awaitable[None]) -> None:
    """Await a collaborator run loop, naming it in any failure."""
    try:
        await run
    except Exception as e:
        _logger.error("Task %s failed: %s", task, e, extra={"task": task})
        raise TaskFailure(task, [e]) from e


async def _teardown(collaborators: Collaborators) -> None:
    """Close the device, then shut the hub down.

    Raises:
        TeardownError: If either step failed; the hub is shut down regardless.

    """
    failures: list[str] = []
    for name, close in (("device", collaborators.device.close), ("hub", collaborators.hub.close)):
        try:
            await close()
        except Exception as e:
            failures.append(f"closing {name}: {type(e).__name__}: {e}")
    if failures:
        raise TeardownError("; ".join(failures))


async def _drive(sequencer: Sequencer, collaborators: Collaborators) -> None:
    try:
        await collaborators.hub.wait_ready()
        await collaborators.device.wait_ready()
    except Exception as e:
        raise TaskFailure("sequencer", [e], phase="startup") from e
    await sequencer.run()
    await _teardown(collaborators)


async def _run_tasks(
    sequencer: Sequencer, collaborators: Collaborators
) -> tuple[E2EError | None, TeardownError | None]:
    error: E2EError | None = None
    teardown_error: TeardownError | None = None
    try:
        async with asyncio.TaskGroup() as tg:
            tg.create_task(_supervise("hub", collaborators.hub.run()), name="hub")
            tg.create_task(_supervise("device", collaborators.device.run()), name="device")
            tg.create_task(_drive(sequencer, collaborators), name="sequencer")
    except* TeardownError as group:
        teardown_error = group.exceptions[0]  # type: ignore[assignment]
    except* E2EError as group:
        error = TaskFailure.collapse(group.exceptions)
        if sequencer.current_phase is not None:
            error.in_phase(sequencer.current_phase)
    return error, teardown_error


async def _close_quietly(collaborators: Collaborators) -> None:
    """Best-effort close after a failed run; problems are logged only."""
    for name, close in (("device", collaborators.device.close), ("hub", collaborators.hub.close)):
        try:
            await close()
        except Exception as e:
            _logger.warning("Closing %s after failure raised %s", name, e, extra={"task": name})


async def run_e2e(
    collaborators: Collaborators,
    barrier: Rendezvous,
    config: E2EConfig | None = None,
    *,
    interfaces: Sequence[Interface] = INTERFACES,
    instrumentation: PhaseInstrumentation | None = None,
    on_progress: Callable[[PhaseResult], None] | None = None,
    timeout: float | None = None,
) -> E2EReport:
    """Run the full sequence against *collaborators*.

    Args:
        collaborators: Hub, device and inspection API to drive.
        barrier: Rendezvous shared between the sequencer and the hub.
        config: Retry budgets; defaults to :class:`E2EConfig`.
        interfaces: Interface catalog expected by the discovery phase.
        instrumentation: Span factory for phases.
        on_progress: Optional callback invoked after each phase completes.
        timeout: Overall deadline in seconds; ``None`` for no deadline.

    Returns:
        The report; failures are recorded on it, never raised.

    """
    sequencer = Sequencer(
        collaborators.device,
        collaborators.api,
        barrier,
        config,
        interfaces=interfaces,
        instrumentation=instrumentation,
        on_progress=on_progress,
    )
    start = time.monotonic()
    error: E2EError | None = None
    teardown_error: TeardownError | None = None
    try:
        async with asyncio.timeout(timeout):
            error, teardown_error = await _run_tasks(sequencer, collaborators)
    except TimeoutError as e:
        error = TaskFailure("run", [TimeoutError(f"run exceeded its {timeout}s deadline")])
        error.__cause__ = e
        if sequencer.current_phase is not None:
            error.in_phase(sequencer.current_phase)
    finally:
        if error is not None:
            # Release a hub still parked at the rendezvous.
            await barrier.abort()
            await _close_quietly(collaborators)
        try:
            await collaborators.api.aclose()
        except Exception as e:
            _logger.warning("Closing the inspection API raised %s", e)
    elapsed_ms = (time.monotonic() - start) * 1000

    report = E2EReport(
        phases=list(sequencer.results),
        error=error,
        teardown_error=teardown_error,
        duration_ms=elapsed_ms,
    )
    if report.success:
        _logger.info("Run passed", extra={"duration_ms": elapsed_ms})
    else:
        _logger.error(
            "Run failed: %s",
            report.error or report.teardown_error,
            extra={"duration_ms": elapsed_ms, "passed": report.passed, "skipped": report.skipped},
        )
    return report
