# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""OpenTelemetry instrumentation for end-to-end phases.

Every phase of a run executes inside a span named
``hub_e2e.phase.<phase>`` whose status is ``OK`` or ``ERROR`` (with the
exception recorded), and its duration is recorded in the
``hub_e2e.phase.duration`` histogram.

Without an installed ``TracerProvider`` / ``MeterProvider`` the API's no-op
implementations are used, so instrumentation costs next to nothing.

Usage::

    from hub_e2e.otel import OtelConfig, PhaseInstrumentation

    instrumentation = PhaseInstrumentation(OtelConfig(tracer_provider=provider))
    with instrumentation.phase("discovery"):
        ...
"""

from __future__ import annotations

import contextlib
import time
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field

from opentelemetry import context as otel_context
from opentelemetry import trace
from opentelemetry.metrics import Histogram, MeterProvider, get_meter_provider
from opentelemetry.trace import StatusCode, Tracer, TracerProvider, get_tracer_provider

__all__ = ["OtelConfig", "PhaseInstrumentation"]

_INSTRUMENTATION_NAME = "hub_e2e"
_INSTRUMENTATION_VERSION = "0.1.0"


@dataclass(frozen=True)
class OtelConfig:
    """Configuration for phase instrumentation.

    Attributes:
        tracer_provider: Custom ``TracerProvider``; uses the global provider when ``None``.
        meter_provider: Custom ``MeterProvider``; uses the global provider when ``None``.
        enable_metrics: Record the phase duration histogram (default ``True``).
        record_exceptions: Record exceptions on error spans (default ``True``).
        custom_attributes: Extra span/metric attributes merged into every phase.

    """

    tracer_provider: TracerProvider | None = None
    meter_provider: MeterProvider | None = None
    enable_metrics: bool = True
    record_exceptions: bool = True
    custom_attributes: Mapping[str, str] = field(default_factory=dict)


class PhaseInstrumentation:
    """Creates one span (and one duration sample) per phase."""

    __slots__ = ("_config", "_histogram", "_tracer")

    def __init__(self, config: OtelConfig | None = None) -> None:
        """Resolve the tracer and meter from *config* or the global providers."""
        self._config = config or OtelConfig()
        tp = self._config.tracer_provider or get_tracer_provider()
        self._tracer: Tracer = tp.get_tracer(_INSTRUMENTATION_NAME, _INSTRUMENTATION_VERSION)
        mp: MeterProvider = self._config.meter_provider or get_meter_provider()
        self._histogram: Histogram = mp.get_meter(_INSTRUMENTATION_NAME, _INSTRUMENTATION_VERSION).create_histogram(
            "hub_e2e.phase.duration",
            unit="s",
            description="Duration of end-to-end phases",
        )

    @contextlib.contextmanager
    def phase(self, name: str, **attributes: str) -> Iterator[trace.Span]:
        """Run the enclosed block inside the span of phase *name*.

        Exceptions propagate unchanged after being recorded on the span.
        """
        attrs: dict[str, str] = {"hub_e2e.phase": name, **attributes}
        attrs.update(self._config.custom_attributes)
        start_time = time.monotonic()
        span = self._tracer.start_span(f"hub_e2e.phase.{name}", attributes=attrs)
        token = otel_context.attach(trace.set_span_in_context(span))
        status = "ok"
        try:
            yield span
        except BaseException as e:
            status = "error"
            span.set_status(StatusCode.ERROR, str(e))
            span.set_attribute("hub_e2e.error_type", type(e).__name__)
            if self._config.record_exceptions:
                span.record_exception(e)
            raise
        else:
            span.set_status(StatusCode.OK)
        finally:
            span.end()
            otel_context.detach(token)
            if self._config.enable_metrics:
                self._histogram.record(
                    time.monotonic() - start_time,
                    {"hub_e2e.phase": name, "hub_e2e.status": status},
                )
