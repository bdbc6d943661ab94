# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Device-side collaborators and the events they deliver.

Defines the ``DeviceClient`` and ``RoutingHub`` protocols the sequencer
drives, and :class:`ObservedEvent`, the one-at-a-time notification the
device receives while the server pushes data.

Set ``HUB_E2E_TRACE=1`` to trace every consumed event on stderr through
``structlog``.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from typing import Protocol

import structlog

from hub_e2e.errors import AssertionFailure
from hub_e2e.values import UNSET, Aggregate, Unset, Value

__all__ = [
    "DeviceClient",
    "ObservedEvent",
    "RoutingHub",
    "get_trace_log",
    "trace_event",
]

_TRACE = os.environ.get("HUB_E2E_TRACE", "").lower() in ("1", "true", "yes")
_trace_log: structlog.stdlib.BoundLogger | None = None


@dataclass(frozen=True)
class ObservedEvent:
    """One inbound notification received by the device.

    Attributes:
        interface: Interface name the data arrived on.
        path: Object path for aggregates, ``/<endpoint>`` for individual values.
        data: An aggregate object, a single value, or :data:`~hub_e2e.values.UNSET`.

    """

    interface: str
    path: str
    data: Aggregate | Value | Unset

    @property
    def is_unset(self) -> bool:
        """Whether the event retracts a property."""
        return self.data is UNSET

    def as_object(self) -> Aggregate:
        """Return the aggregate payload.

        Raises:
            AssertionFailure: If the event does not carry an object.

        """
        if not isinstance(self.data, dict):
            raise AssertionFailure("event is not an object", endpoint=self.path, actual=self.data)
        return self.data

    def as_individual(self) -> Value:
        """Return the individual value payload.

        Raises:
            AssertionFailure: If the event does not carry an individual value.

        """
        if not isinstance(self.data, Value):
            raise AssertionFailure("event is not an individual value", endpoint=self.path, actual=self.data)
        return self.data


class DeviceClient(Protocol):
    """Device-side client connected to the routing hub."""

    async def run(self) -> None:
        """Drive the connection until :meth:`close` is called."""
        ...

    async def wait_ready(self) -> None:
        """Return once the device is connected and its interfaces are announced."""
        ...

    async def send_object(self, interface: str, path: str, data: Aggregate) -> None:
        """Publish an aggregate object at *path*."""
        ...

    async def send_individual(self, interface: str, path: str, value: Value) -> None:
        """Publish one individual value at *path*."""
        ...

    async def unset(self, interface: str, path: str) -> None:
        """Retract the property at *path*."""
        ...

    async def receive(self) -> ObservedEvent:
        """Wait for the next inbound event."""
        ...

    async def close(self) -> None:
        """Disconnect from the hub."""
        ...


class RoutingHub(Protocol):
    """The intermediary routing device traffic to and from the server."""

    async def run(self) -> None:
        """Serve until :meth:`close` is called."""
        ...

    async def wait_ready(self) -> None:
        """Return once the hub accepts connections."""
        ...

    async def close(self) -> None:
        """Signal shutdown."""
        ...


# ---------------------------------------------------------------------------
# Event tracing
# ---------------------------------------------------------------------------


def get_trace_log() -> structlog.stdlib.BoundLogger:
    """Get or create the trace logger, configured to write to stderr."""
    global _trace_log
    if _trace_log is None:
        structlog.configure(
            processors=[
                structlog.processors.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.dev.ConsoleRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(0),
            logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        )
        _trace_log = structlog.get_logger().bind(component="events")
    return _trace_log


def trace_event(event: ObservedEvent, *, index: int) -> None:
    """Trace a consumed event when ``HUB_E2E_TRACE`` is enabled."""
    if not _TRACE:
        return
    if isinstance(event.data, dict):
        shape = "object"
    elif event.data is UNSET:
        shape = "unset"
    else:
        shape = "individual"
    get_trace_log().debug("event", index=index, interface=event.interface, path=event.path, shape=shape)
