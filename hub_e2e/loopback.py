# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""In-process collaborators: routing hub, device client and inspection API.

The loopback collaborators let a full end-to-end run execute inside one
event loop, without a broker or an HTTP server.  The device and the hub
exchange complete Arrow IPC messages (see :mod:`hub_e2e.wire`) over two
``asyncio.Queue`` objects, so every payload crosses a real serialization
boundary; server injections additionally pass through the JSON text codec
the HTTP API uses.

Pacing: the hub waits on the shared :class:`~hub_e2e.barrier.Rendezvous`
once after applying every device publish or unset, pairing with the single
wait the sequencer makes after each send.

Usage::

    barrier = Rendezvous()
    collaborators = loopback_collaborators(E2EConfig(), barrier)
    report = await run_e2e(collaborators, barrier)

Logger: ``hub_e2e.loopback``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from hub_e2e.barrier import Rendezvous
from hub_e2e.codec import value_from_json, value_to_json
from hub_e2e.config import DEFAULT_HUB_PORT, DEFAULT_NODE_ID, E2EConfig
from hub_e2e.device import ObservedEvent
from hub_e2e.errors import AssertionFailure, ConfigurationError, EncodingError
from hub_e2e.interfaces import INTERFACES, Data, Interface, Ownership, interface_by_name
from hub_e2e.values import UNSET, Aggregate, Value
from hub_e2e.wire import Envelope, MessageKind

if TYPE_CHECKING:
    from hub_e2e.runner import Collaborators

__all__ = [
    "LoopbackApi",
    "LoopbackDevice",
    "LoopbackHub",
    "loopback_collaborators",
]

_logger = logging.getLogger("hub_e2e.loopback")


@dataclass(frozen=True)
class _Link:
    """The two directions of a device connection."""

    uplink: asyncio.Queue[bytes | None]
    downlink: asyncio.Queue[bytes]


def _require_owner(interface: Interface, owner: Ownership) -> None:
    if interface.ownership is not owner:
        raise ConfigurationError(
            f"{interface.name} is {interface.ownership.value}-owned, cannot publish from the {owner.value} side"
        )


def _require_property(interface: Interface) -> None:
    if not interface.is_property:
        raise ConfigurationError(f"{interface.name} is not a properties interface, cannot unset")


def _through_json(value: Value) -> Value:
    """Pass *value* through the text form the HTTP API uses."""
    return value_from_json(value.kind, value_to_json(value))


# ---------------------------------------------------------------------------
# Hub
# ---------------------------------------------------------------------------


class LoopbackHub:
    """Routing hub keeping the server-visible state of one device."""

    def __init__(self, barrier: Rendezvous, *, node_id: str = DEFAULT_NODE_ID, port: int = DEFAULT_HUB_PORT) -> None:
        """Create a hub pacing device traffic with *barrier*."""
        self.node_id = node_id
        self.port = port
        self._barrier = barrier
        self._link = _Link(asyncio.Queue(), asyncio.Queue())
        self._ready = asyncio.Event()
        self._connected: str | None = None
        self._introspection: tuple[str, ...] = ()
        self._objects: dict[tuple[str, str], list[Aggregate]] = {}
        self._individuals: dict[str, dict[str, Value]] = {}
        self._properties: dict[str, dict[str, Value]] = {}

    # -- lifecycle ---------------------------------------------------------

    async def run(self) -> None:
        """Apply device messages until :meth:`close` is called."""
        self._ready.set()
        _logger.info("Hub listening", extra={"port": self.port, "node_id": self.node_id})
        while True:
            data = await self._link.uplink.get()
            if data is None:
                break
            await self._handle(Envelope.from_bytes(data))
        _logger.info("Hub stopped", extra={"port": self.port})

    async def wait_ready(self) -> None:
        """Return once the hub accepts connections."""
        await self._ready.wait()

    async def close(self) -> None:
        """Stop the run loop after the messages already queued."""
        self._link.uplink.put_nowait(None)

    def connect(self, node_id: str) -> _Link:
        """Attach the device identified by *node_id*.

        Raises:
            ConfigurationError: If the hub is not running or another device is attached.

        """
        if not self._ready.is_set():
            raise ConfigurationError("hub is not running")
        if self._connected is not None and self._connected != node_id:
            raise ConfigurationError(f"hub already serves device {self._connected!r}")
        self._connected = node_id
        _logger.debug("Device connected", extra={"node_id": node_id})
        return self._link

    # -- device -> server --------------------------------------------------

    async def _handle(self, envelope: Envelope) -> None:
        if envelope.kind is MessageKind.INTROSPECTION:
            self._introspection = tuple(envelope.payload or ())
            _logger.debug("Introspection updated", extra={"interfaces": list(self._introspection)})
            return
        if envelope.kind is MessageKind.DISCONNECT:
            _logger.debug("Device disconnected", extra={"node_id": self._connected})
            self._connected = None
            self._link.downlink.put_nowait(Envelope.disconnect().to_bytes())
            return
        self._apply(envelope)
        await self._barrier.wait("hub")

    def _apply(self, envelope: Envelope) -> None:
        """Update the server-visible state with one device publish or unset."""
        interface = interface_by_name(envelope.interface)
        _require_owner(interface, Ownership.DEVICE)
        if envelope.interface not in self._introspection:
            raise AssertionFailure("publish on an interface missing from introspection", actual=envelope.interface)
        payload = envelope.payload
        if envelope.kind is MessageKind.OBJECT and isinstance(payload, dict):
            self._objects.setdefault((interface.name, envelope.path), []).append(payload)
        elif envelope.kind is MessageKind.INDIVIDUAL and isinstance(payload, Value):
            store = self._properties if interface.is_property else self._individuals
            store.setdefault(interface.name, {})[envelope.path] = payload
        elif envelope.kind is MessageKind.UNSET:
            _require_property(interface)
            self._properties.get(interface.name, {}).pop(envelope.path, None)
        else:
            raise EncodingError(f"unexpected {envelope.kind.value} message from device")
        _logger.debug(
            "Applied %s",
            envelope.kind.value,
            extra={"interface": envelope.interface, "path": envelope.path},
        )

    # -- server view -------------------------------------------------------

    @property
    def introspection(self) -> tuple[str, ...]:
        """Interface names announced by the device."""
        return self._introspection

    def latest_object(self, interface: str, path: str) -> Aggregate | None:
        """Return the most recent object published at *path*, if any."""
        history = self._objects.get((interface, path))
        return history[-1] if history else None

    def individual_values(self, interface: str) -> dict[str, Value]:
        """Return the latest value per path of a datastream."""
        return dict(self._individuals.get(interface, {}))

    def property_set(self, interface: str) -> dict[str, Value]:
        """Return the properties currently set on *interface*."""
        return dict(self._properties.get(interface, {}))

    # -- server -> device --------------------------------------------------

    def push(self, envelope: Envelope) -> None:
        """Forward a server injection to the device, preserving injection order.

        Raises:
            ConfigurationError: If no device is attached or the interface is not server-owned.

        """
        interface = interface_by_name(envelope.interface)
        _require_owner(interface, Ownership.SERVER)
        if envelope.kind is MessageKind.UNSET:
            _require_property(interface)
        if self._connected is None:
            raise ConfigurationError("no device connected")
        self._link.downlink.put_nowait(envelope.to_bytes())


# ---------------------------------------------------------------------------
# Device
# ---------------------------------------------------------------------------


class LoopbackDevice:
    """Device client attached to a :class:`LoopbackHub`."""

    def __init__(
        self,
        hub: LoopbackHub,
        interfaces: Iterable[Interface] = INTERFACES,
        *,
        node_id: str = DEFAULT_NODE_ID,
    ) -> None:
        """Create a device announcing *interfaces* once connected."""
        self.node_id = node_id
        self._hub = hub
        self._interfaces: dict[str, Interface] = {i.name: i for i in interfaces}
        self._link: _Link | None = None
        self._ready = asyncio.Event()
        self._events: asyncio.Queue[ObservedEvent] = asyncio.Queue()

    @property
    def interface_names(self) -> list[str]:
        """Names of the interfaces the device announces."""
        return list(self._interfaces)

    def add_interfaces(self, interfaces: Sequence[Interface]) -> None:
        """Add interfaces at runtime, re-announcing the introspection when connected."""
        for interface in interfaces:
            self._interfaces[interface.name] = interface
        if self._link is not None:
            self._send(Envelope.introspection(self.interface_names))

    async def run(self) -> None:
        """Connect, announce the interfaces, then receive until disconnected."""
        await self._hub.wait_ready()
        self._link = self._hub.connect(self.node_id)
        self._send(Envelope.introspection(self.interface_names))
        self._ready.set()
        while True:
            envelope = Envelope.from_bytes(await self._link.downlink.get())
            if envelope.kind is MessageKind.DISCONNECT:
                break
            self._events.put_nowait(self._to_event(envelope))
        self._link = None

    async def wait_ready(self) -> None:
        """Return once connected and announced."""
        await self._ready.wait()

    @staticmethod
    def _to_event(envelope: Envelope) -> ObservedEvent:
        if envelope.kind is MessageKind.UNSET:
            return ObservedEvent(envelope.interface, envelope.path, UNSET)
        if envelope.kind is MessageKind.OBJECT and isinstance(envelope.payload, dict):
            return ObservedEvent(envelope.interface, envelope.path, envelope.payload)
        if envelope.kind is MessageKind.INDIVIDUAL and isinstance(envelope.payload, Value):
            return ObservedEvent(envelope.interface, envelope.path, envelope.payload)
        raise EncodingError(f"unexpected {envelope.kind.value} message from hub")

    def _send(self, envelope: Envelope) -> None:
        if self._link is None:
            raise ConfigurationError("device is not connected")
        self._link.uplink.put_nowait(envelope.to_bytes())

    def _own(self, name: str) -> Interface:
        interface = self._interfaces.get(name)
        if interface is None:
            raise ConfigurationError(f"interface {name!r} is not in the device introspection")
        _require_owner(interface, Ownership.DEVICE)
        return interface

    async def send_object(self, interface: str, path: str, data: Aggregate) -> None:
        """Publish an aggregate object at *path*."""
        self._own(interface)
        self._send(Envelope.object(interface, path, data))

    async def send_individual(self, interface: str, path: str, value: Value) -> None:
        """Publish one individual value at *path*."""
        self._own(interface)
        self._send(Envelope.individual(interface, path, value))

    async def unset(self, interface: str, path: str) -> None:
        """Retract the property at *path*."""
        _require_property(self._own(interface))
        self._send(Envelope.unset(interface, path))

    async def receive(self) -> ObservedEvent:
        """Wait for the next event pushed by the server."""
        return await self._events.get()

    async def close(self) -> None:
        """Disconnect; the run loop ends once the hub acknowledges."""
        if self._link is not None:
            self._send(Envelope.disconnect())


# ---------------------------------------------------------------------------
# Inspection API
# ---------------------------------------------------------------------------


class LoopbackApi:
    """Inspection API answering from a :class:`LoopbackHub`'s state."""

    def __init__(self, hub: LoopbackHub) -> None:
        """Bind to *hub*."""
        self._hub = hub

    async def list_interfaces(self) -> list[str]:
        """Return the interface names the device announced."""
        return list(self._hub.introspection)

    async def get_aggregate(self, interface: str, path: str) -> Data:
        """Return the most recent object published at *path*.

        Raises:
            AssertionFailure: If nothing was published yet.

        """
        aggregate = self._hub.latest_object(interface, path)
        if aggregate is None:
            raise AssertionFailure("missing data from publish", endpoint=path)
        return Data.from_aggregate(aggregate)

    async def get_individual_values(self, interface: str) -> dict[str, Value]:
        """Return the latest value per endpoint path of a datastream."""
        return self._hub.individual_values(interface)

    async def get_property_set(self, interface: str) -> dict[str, Value]:
        """Return the currently set properties."""
        return self._hub.property_set(interface)

    async def inject_object(self, interface: str, path: str, data: Aggregate) -> None:
        """Push an aggregate object to the device."""
        self._hub.push(Envelope.object(interface, path, {k: _through_json(v) for k, v in data.items()}))

    async def inject_individual(self, interface: str, path: str, value: Value) -> None:
        """Push one individual value to the device."""
        self._hub.push(Envelope.individual(interface, path, _through_json(value)))

    async def inject_unset(self, interface: str, path: str) -> None:
        """Retract a server-owned property on the device."""
        self._hub.push(Envelope.unset(interface, path))

    async def aclose(self) -> None:
        """Nothing to release."""


def loopback_collaborators(config: E2EConfig, barrier: Rendezvous) -> Collaborators:
    """Build a connected hub, device and inspection API sharing *barrier*."""
    from hub_e2e.runner import Collaborators

    hub = LoopbackHub(barrier, node_id=config.node_id, port=config.hub_port)
    device = LoopbackDevice(hub, node_id=config.node_id)
    return Collaborators(hub=hub, device=device, api=LoopbackApi(hub))
