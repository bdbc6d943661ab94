"""Shared test fixtures for hub-e2e tests."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Callable, Iterable
from dataclasses import dataclass

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from hub_e2e.barrier import Rendezvous
from hub_e2e.interfaces import INTERFACES, Data, Interface
from hub_e2e.loopback import LoopbackApi, LoopbackDevice, LoopbackHub


@dataclass
class Running:
    """A connected loopback hub and device, with the API bound to the hub."""

    barrier: Rendezvous
    hub: LoopbackHub
    device: LoopbackDevice
    api: LoopbackApi


@contextlib.asynccontextmanager
async def running_loopback(interfaces: Iterable[Interface] = INTERFACES) -> AsyncIterator[Running]:
    """Run a loopback hub and device for the duration of the block, then disconnect both."""
    barrier = Rendezvous()
    hub = LoopbackHub(barrier)
    device = LoopbackDevice(hub, interfaces)
    async with asyncio.TaskGroup() as tg:
        tg.create_task(hub.run())
        tg.create_task(device.run())
        await device.wait_ready()
        try:
            yield Running(barrier, hub, device, LoopbackApi(hub))
        finally:
            await device.close()
            await hub.close()


@pytest.fixture()
def fixture_data() -> Data:
    """The reference record."""
    return Data.default()


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    """In-memory span exporter (attach with :func:`tracer_provider`)."""
    return InMemorySpanExporter()


@pytest.fixture()
def tracer_provider(span_exporter: InMemorySpanExporter) -> TracerProvider:
    """Tracer provider exporting finished spans to ``span_exporter``."""
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    return provider


LoopbackFactory = Callable[..., contextlib.AbstractAsyncContextManager[Running]]
"""Type alias for the ``loopback`` fixture return type."""


@pytest.fixture()
def loopback() -> LoopbackFactory:
    """Return :func:`running_loopback`, to be entered inside the test's event loop."""
    return running_loopback
