# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""End-to-end conformance runs between a device and the server through a message hub."""

import logging

from hub_e2e.api import AppEngineApi, InspectionApi
from hub_e2e.barrier import Rendezvous
from hub_e2e.config import ApiConfig, E2EConfig
from hub_e2e.device import DeviceClient, ObservedEvent, RoutingHub
from hub_e2e.errors import (
    AssertionFailure,
    ConfigurationError,
    E2EError,
    EncodingError,
    ExhaustedRetries,
    SchemaError,
    TaskFailure,
    TeardownError,
    UnknownFieldError,
)
from hub_e2e.interfaces import (
    ADDITIONAL_INTERFACES,
    ENDPOINTS,
    INTERFACES,
    Data,
    Interface,
    interface_by_name,
)
from hub_e2e.loopback import LoopbackApi, LoopbackDevice, LoopbackHub, loopback_collaborators
from hub_e2e.otel import OtelConfig, PhaseInstrumentation
from hub_e2e.retry import retry
from hub_e2e.runner import Collaborators, E2EReport, run_e2e
from hub_e2e.sequencer import PHASES, Phase, PhaseResult, Sequencer, State
from hub_e2e.values import UNSET, Aggregate, Unset, Value, ValueKind

__all__ = [
    # Entry point
    "run_e2e",
    "E2EReport",
    "Collaborators",
    # Sequencer
    "Sequencer",
    "State",
    "Phase",
    "PHASES",
    "PhaseResult",
    # Primitives
    "retry",
    "Rendezvous",
    # Data model
    "Value",
    "ValueKind",
    "UNSET",
    "Unset",
    "Aggregate",
    "Data",
    "ENDPOINTS",
    # Interfaces
    "Interface",
    "INTERFACES",
    "ADDITIONAL_INTERFACES",
    "interface_by_name",
    # Collaborators
    "DeviceClient",
    "RoutingHub",
    "InspectionApi",
    "ObservedEvent",
    "AppEngineApi",
    "LoopbackHub",
    "LoopbackDevice",
    "LoopbackApi",
    "loopback_collaborators",
    # Configuration
    "E2EConfig",
    "ApiConfig",
    # Tracing
    "OtelConfig",
    "PhaseInstrumentation",
    # Errors
    "E2EError",
    "ConfigurationError",
    "SchemaError",
    "UnknownFieldError",
    "EncodingError",
    "ExhaustedRetries",
    "AssertionFailure",
    "TaskFailure",
    "TeardownError",
]

# Attach NullHandler to the package logger so library users don't get
# "No handler found" warnings.
logging.getLogger("hub_e2e").addHandler(logging.NullHandler())
