# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""The end-to-end test sequence.

:class:`Sequencer` walks a strictly linear state machine::

    INIT -> DISCOVERY_VERIFIED
         -> DEVICE_AGGREGATE_SENT -> DEVICE_DATASTREAM_SENT
         -> DEVICE_PROPERTY_SENT -> DEVICE_PROPERTY_UNSET
         -> SERVER_AGGREGATE_VERIFIED -> SERVER_DATASTREAM_VERIFIED
         -> SERVER_PROPERTY_VERIFIED -> SERVER_PROPERTY_UNSET_VERIFIED
         -> DONE

Each transition is one phase.  Device phases publish through the device
client, pace every send with the rendezvous barrier and then poll the
inspection API with :func:`~hub_e2e.retry.retry` until the server view
matches :meth:`Data.default() <hub_e2e.interfaces.Data.default>`.  Server
phases inject through the inspection API and consume exactly one device
event per injection, asserting interface, path and payload in order.

The first failing phase aborts the sequence; its error carries the phase
name (see :meth:`~hub_e2e.errors.E2EError.in_phase`).

Logger: ``hub_e2e.sequencer``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum, StrEnum
from typing import Final

from hub_e2e.api import InspectionApi
from hub_e2e.barrier import Rendezvous
from hub_e2e.config import E2EConfig
from hub_e2e.device import DeviceClient, ObservedEvent, trace_event
from hub_e2e.errors import AssertionFailure, E2EError, TaskFailure
from hub_e2e.interfaces import (
    DEVICE_AGGREGATE,
    DEVICE_DATASTREAM,
    DEVICE_PROPERTY,
    ENDPOINTS,
    INTERFACES,
    SERVER_AGGREGATE,
    SERVER_DATASTREAM,
    SERVER_PROPERTY,
    Data,
    Interface,
    endpoint_path,
)
from hub_e2e.otel import PhaseInstrumentation
from hub_e2e.retry import retry
from hub_e2e.values import UNSET, Aggregate, Value

__all__ = ["PHASES", "Phase", "PhaseResult", "Sequencer", "State"]

_logger = logging.getLogger("hub_e2e.sequencer")


class State(Enum):
    """Sequencer states, in the only order they can be reached."""

    INIT = "init"
    DISCOVERY_VERIFIED = "discovery_verified"
    DEVICE_AGGREGATE_SENT = "device_aggregate_sent"
    DEVICE_DATASTREAM_SENT = "device_datastream_sent"
    DEVICE_PROPERTY_SENT = "device_property_sent"
    DEVICE_PROPERTY_UNSET = "device_property_unset"
    SERVER_AGGREGATE_VERIFIED = "server_aggregate_verified"
    SERVER_DATASTREAM_VERIFIED = "server_datastream_verified"
    SERVER_PROPERTY_VERIFIED = "server_property_verified"
    SERVER_PROPERTY_UNSET_VERIFIED = "server_property_unset_verified"
    DONE = "done"


class Phase(StrEnum):
    """Name of each verification phase."""

    DISCOVERY = "discovery"
    DEVICE_AGGREGATE = "device_aggregate"
    DEVICE_DATASTREAM = "device_datastream"
    DEVICE_PROPERTY = "device_property"
    DEVICE_PROPERTY_UNSET = "device_property_unset"
    SERVER_AGGREGATE = "server_aggregate"
    SERVER_DATASTREAM = "server_datastream"
    SERVER_PROPERTY = "server_property"
    SERVER_PROPERTY_UNSET = "server_property_unset"


# Phase -> state reached once it passes.
_TRANSITIONS: Final[tuple[tuple[Phase, State], ...]] = (
    (Phase.DISCOVERY, State.DISCOVERY_VERIFIED),
    (Phase.DEVICE_AGGREGATE, State.DEVICE_AGGREGATE_SENT),
    (Phase.DEVICE_DATASTREAM, State.DEVICE_DATASTREAM_SENT),
    (Phase.DEVICE_PROPERTY, State.DEVICE_PROPERTY_SENT),
    (Phase.DEVICE_PROPERTY_UNSET, State.DEVICE_PROPERTY_UNSET),
    (Phase.SERVER_AGGREGATE, State.SERVER_AGGREGATE_VERIFIED),
    (Phase.SERVER_DATASTREAM, State.SERVER_DATASTREAM_VERIFIED),
    (Phase.SERVER_PROPERTY, State.SERVER_PROPERTY_VERIFIED),
    (Phase.SERVER_PROPERTY_UNSET, State.SERVER_PROPERTY_UNSET_VERIFIED),
)

PHASES: Final[tuple[Phase, ...]] = tuple(phase for phase, _ in _TRANSITIONS)

_STATE_ORDER: Final[tuple[State, ...]] = tuple(State)


@dataclass(frozen=True)
class PhaseResult:
    """Outcome of one phase."""

    phase: str
    passed: bool
    duration_ms: float
    error: str | None = None


# ---------------------------------------------------------------------------
# Comparison helpers
# ---------------------------------------------------------------------------


def _path_values(aggregate: Aggregate) -> dict[str, Value]:
    """Key an aggregate by individual endpoint path."""
    return {endpoint_path(endpoint): value for endpoint, value in aggregate.items()}


def _assert_values(expected: Mapping[str, Value], actual: Mapping[str, Value], *, prefix: str = "") -> None:
    """Compare two path-keyed value maps field by field.

    Raises:
        AssertionFailure: At the first missing, unexpected or differing path.

    """
    for path, value in expected.items():
        if path not in actual:
            raise AssertionFailure("value missing", endpoint=f"{prefix}{path}", expected=value)
        if actual[path] != value:
            raise AssertionFailure("value mismatch", endpoint=f"{prefix}{path}", expected=value, actual=actual[path])
    extra = sorted(set(actual) - set(expected))
    if extra:
        raise AssertionFailure("unexpected values", endpoint=f"{prefix}{extra[0]}", actual=actual[extra[0]])


def _assert_event(event: ObservedEvent, interface: Interface, path: str) -> None:
    if event.interface != interface.name:
        raise AssertionFailure(
            "event on wrong interface", endpoint=path, expected=interface.name, actual=event.interface
        )
    if event.path != path:
        raise AssertionFailure("event out of order", endpoint=path, expected=path, actual=event.path)


# ---------------------------------------------------------------------------
# Sequencer
# ---------------------------------------------------------------------------


class Sequencer:
    """Drives the device client and the inspection API through every phase.

    Attributes:
        state: Current state of the sequence.
        current_phase: Phase in progress or failed, ``None`` between phases.
        results: One result per phase entered, including a cancelled one.

    """

    def __init__(
        self,
        device: DeviceClient,
        api: InspectionApi,
        barrier: Rendezvous,
        config: E2EConfig | None = None,
        *,
        interfaces: Sequence[Interface] = INTERFACES,
        instrumentation: PhaseInstrumentation | None = None,
        on_progress: Callable[[PhaseResult], None] | None = None,
    ) -> None:
        """Initialize the sequencer.

        Args:
            device: Device client collaborator.
            api: Inspection API collaborator.
            barrier: Rendezvous shared with the routing hub.
            config: Retry budgets; defaults to :class:`E2EConfig`.
            interfaces: Catalog the discovery phase expects to see, exactly.
            instrumentation: Span factory; the global providers are used by default.
            on_progress: Optional callback invoked after each phase completes.

        """
        self._device = device
        self._api = api
        self._barrier = barrier
        self._config = config or E2EConfig()
        self._expected_names = sorted(i.name for i in interfaces)
        self._instrumentation = instrumentation or PhaseInstrumentation()
        self._on_progress = on_progress
        self._fixture = Data.default()
        self._events_seen = 0
        self.state = State.INIT
        self.current_phase: str | None = None
        self.results: list[PhaseResult] = []

    def _advance(self, target: State) -> None:
        current = _STATE_ORDER.index(self.state)
        if _STATE_ORDER.index(target) != current + 1:
            raise RuntimeError(f"illegal transition {self.state.value} -> {target.value}")
        _logger.debug("State %s -> %s", self.state.value, target.value)
        self.state = target

    async def run(self) -> None:
        """Run every phase in order, stopping at the first failure.

        Raises:
            E2EError: The first phase failure, with the phase attached.

        """
        for phase, target in _TRANSITIONS:
            await self._run_phase(phase, self._steps[phase])
            self._advance(target)
        self._advance(State.DONE)

    @property
    def _steps(self) -> dict[Phase, Callable[[], Awaitable[None]]]:
        return {
            Phase.DISCOVERY: self._discovery,
            Phase.DEVICE_AGGREGATE: self._device_aggregate,
            Phase.DEVICE_DATASTREAM: self._device_datastream,
            Phase.DEVICE_PROPERTY: self._device_property,
            Phase.DEVICE_PROPERTY_UNSET: self._device_property_unset,
            Phase.SERVER_AGGREGATE: self._server_aggregate,
            Phase.SERVER_DATASTREAM: self._server_datastream,
            Phase.SERVER_PROPERTY: self._server_property,
            Phase.SERVER_PROPERTY_UNSET: self._server_property_unset,
        }

    async def _run_phase(self, phase: Phase, step: Callable[[], Awaitable[None]]) -> None:
        _logger.info("Phase %s started", phase, extra={"phase": phase.value})
        self.current_phase = phase.value
        start = time.monotonic()
        error: E2EError | None = None
        try:
            with self._instrumentation.phase(phase.value):
                await step()
        except asyncio.CancelledError:
            # Cut off by a sibling task failure or the run deadline.
            self._record(phase, start, "phase cancelled")
            _logger.warning("Phase %s cancelled", phase, extra={"phase": phase.value})
            raise
        except E2EError as e:
            error = e.in_phase(phase.value)
        except Exception as e:
            error = TaskFailure("sequencer", [e], phase=phase.value)
            error.__cause__ = e
        result = self._record(phase, start, str(error) if error is not None else None)
        if error is not None:
            _logger.error("Phase %s failed: %s", phase, error, extra={"phase": phase.value})
            raise error
        self.current_phase = None
        _logger.info("Phase %s passed", phase, extra={"phase": phase.value, "duration_ms": result.duration_ms})

    def _record(self, phase: Phase, start: float, error: str | None) -> PhaseResult:
        result = PhaseResult(
            phase=phase.value,
            passed=error is None,
            duration_ms=(time.monotonic() - start) * 1000,
            error=error,
        )
        self.results.append(result)
        if self._on_progress:
            self._on_progress(result)
        return result

    async def _check(self, what: str, check: Callable[[], Awaitable[None]]) -> None:
        await retry(self._config.check_attempts, check, what=what)

    # -- discovery ---------------------------------------------------------

    async def _discovery(self) -> None:
        async def check() -> None:
            names = sorted(await self._api.list_interfaces())
            if names != self._expected_names:
                raise AssertionFailure("interface catalog mismatch", expected=self._expected_names, actual=names)

        await retry(self._config.discovery_attempts, check, what="interface discovery")

    # -- device -> server --------------------------------------------------

    async def _device_aggregate(self) -> None:
        interface = DEVICE_AGGREGATE
        path = interface.path or ""
        await self._device.send_object(interface.name, path, self._fixture.to_aggregate())
        await self._barrier.wait("sequencer")

        async def check() -> None:
            received = await self._api.get_aggregate(interface.name, path)
            _assert_values(
                _path_values(self._fixture.to_aggregate()),
                _path_values(received.to_aggregate()),
                prefix=path,
            )

        await self._check("device aggregate", check)

    async def _publish_individuals(self, interface: Interface) -> None:
        for path, value in _path_values(self._fixture.to_aggregate()).items():
            await self._device.send_individual(interface.name, path, value)
            await self._barrier.wait("sequencer")

    async def _device_datastream(self) -> None:
        interface = DEVICE_DATASTREAM
        await self._publish_individuals(interface)

        async def check() -> None:
            actual = await self._api.get_individual_values(interface.name)
            _assert_values(_path_values(self._fixture.to_aggregate()), actual)

        await self._check("device datastream", check)

    async def _device_property(self) -> None:
        interface = DEVICE_PROPERTY
        await self._publish_individuals(interface)

        async def check() -> None:
            actual = await self._api.get_property_set(interface.name)
            _assert_values(_path_values(self._fixture.to_aggregate()), actual)

        await self._check("device property", check)

    async def _device_property_unset(self) -> None:
        interface = DEVICE_PROPERTY
        for endpoint in ENDPOINTS:
            await self._device.unset(interface.name, endpoint_path(endpoint))
            await self._barrier.wait("sequencer")

        async def check() -> None:
            remaining = await self._api.get_property_set(interface.name)
            if remaining:
                first = next(iter(remaining))
                raise AssertionFailure(
                    "property still set after unset", endpoint=first, expected=UNSET, actual=remaining[first]
                )

        await self._check("device property unset", check)

    # -- server -> device --------------------------------------------------

    async def _next_event(self) -> ObservedEvent:
        event = await self._device.receive()
        self._events_seen += 1
        trace_event(event, index=self._events_seen)
        return event

    async def _server_aggregate(self) -> None:
        interface = SERVER_AGGREGATE
        path = interface.path or ""
        await self._api.inject_object(interface.name, path, self._fixture.to_aggregate())
        event = await self._next_event()
        _assert_event(event, interface, path)
        received = Data.from_aggregate(event.as_object())
        _assert_values(
            _path_values(self._fixture.to_aggregate()),
            _path_values(received.to_aggregate()),
            prefix=path,
        )

    async def _push_individuals(self, interface: Interface) -> None:
        for path, value in _path_values(self._fixture.to_aggregate()).items():
            await self._api.inject_individual(interface.name, path, value)
            event = await self._next_event()
            _assert_event(event, interface, path)
            received = event.as_individual()
            if received != value:
                raise AssertionFailure("value mismatch", endpoint=path, expected=value, actual=received)

    async def _server_datastream(self) -> None:
        await self._push_individuals(SERVER_DATASTREAM)

    async def _server_property(self) -> None:
        await self._push_individuals(SERVER_PROPERTY)

    async def _server_property_unset(self) -> None:
        interface = SERVER_PROPERTY
        for endpoint in ENDPOINTS:
            path = endpoint_path(endpoint)
            await self._api.inject_unset(interface.name, path)
            event = await self._next_event()
            _assert_event(event, interface, path)
            if not event.is_unset:
                raise AssertionFailure("expected an unset marker", endpoint=path, expected=UNSET, actual=event.data)
