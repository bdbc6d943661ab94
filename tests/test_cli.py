# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for the hub-e2e CLI tool."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest
from typer.testing import CliRunner

from hub_e2e.barrier import Rendezvous
from hub_e2e.cli import app
from hub_e2e.config import E2EConfig
from hub_e2e.interfaces import ADDITIONAL_INTERFACE_NAMES, DEVICE_PROPERTY, INTERFACE_NAMES, Data
from hub_e2e.logging_utils import KNOWN_LOGGERS, HubE2eJsonFormatter
from hub_e2e.loopback import LoopbackApi, LoopbackDevice, LoopbackHub
from hub_e2e.runner import Collaborators
from hub_e2e.values import Value
from hub_e2e.wire import Envelope

if TYPE_CHECKING:
    from collections.abc import Iterator

runner = CliRunner()

_QUIET = ["--log-filter", "hub_e2e=CRITICAL"]


def _invoke(args: list[str]) -> Any:
    """Invoke the CLI app with the given args.

    Returns ``Any`` because ``runner.invoke`` returns ``click.testing.Result``.
    """
    return runner.invoke(app, args, catch_exceptions=False)


class _WrongPropertyHub(LoopbackHub):
    """Stores every device property as zero."""

    def _apply(self, envelope: Envelope) -> None:
        if envelope.interface == DEVICE_PROPERTY.name and isinstance(envelope.payload, Value):
            envelope = Envelope.individual(envelope.interface, envelope.path, Value.integer(0))
        super()._apply(envelope)


def failing_collaborators(config: E2EConfig, barrier: Rendezvous) -> Collaborators:
    """Collaborator factory whose hub corrupts device properties."""
    hub = _WrongPropertyHub(barrier, node_id=config.node_id)
    return Collaborators(hub=hub, device=LoopbackDevice(hub, node_id=config.node_id), api=LoopbackApi(hub))


@pytest.fixture()
def _reset_loggers() -> Iterator[None]:
    """Save and restore logger handlers and levels after each test."""
    saved: dict[str, tuple[int, list[logging.Handler]]] = {}
    for name, _ in KNOWN_LOGGERS:
        logger = logging.getLogger(name)
        saved[name] = (logger.level, list(logger.handlers))
    yield
    for name, _ in KNOWN_LOGGERS:
        logger = logging.getLogger(name)
        level, handlers = saved[name]
        logger.handlers[:] = handlers
        logger.setLevel(level)


class TestCatalogCommands:
    """Commands that print the interface catalog and fixture."""

    def test_interfaces(self) -> None:
        """The six test interfaces are listed one per line."""
        result = _invoke(["interfaces"])
        assert result.exit_code == 0
        assert result.stdout.split() == list(INTERFACE_NAMES)

    def test_interfaces_additional(self) -> None:
        """``--additional`` appends the two extra interfaces."""
        result = _invoke(["interfaces", "--additional"])
        assert result.exit_code == 0
        assert result.stdout.split() == [*INTERFACE_NAMES, *ADDITIONAL_INTERFACE_NAMES]

    def test_schema(self) -> None:
        """The schema document is printed verbatim."""
        result = _invoke(["schema", DEVICE_PROPERTY.name])
        assert result.exit_code == 0
        doc = json.loads(result.stdout)
        assert doc["interface_name"] == DEVICE_PROPERTY.name
        assert doc["type"] == "properties"

    def test_schema_unknown(self) -> None:
        """Unknown interface names exit with the configuration status."""
        result = _invoke(["schema", "org.example.Nope"])
        assert result.exit_code == 2
        assert "unknown interface" in result.output

    def test_fixture(self) -> None:
        """The fixture is printed in the inspection API's JSON form."""
        result = _invoke(["fixture"])
        assert result.exit_code == 0
        obj = json.loads(result.stdout)
        assert obj["longinteger_endpoint"] == "45543543534"
        assert Data.from_json(obj) == Data.default()

    def test_loggers(self) -> None:
        """Every known logger is listed with its description."""
        result = _invoke(["loggers"])
        assert result.exit_code == 0
        for name, description in KNOWN_LOGGERS:
            assert name in result.stdout
            assert description in result.stdout


class TestRun:
    """The ``run`` command."""

    def test_passing_run_json(self, _reset_loggers: None) -> None:
        """A loopback run passes and reports every phase."""
        result = _invoke(["run", "--format", "json", *_QUIET])
        assert result.exit_code == 0, result.output
        report = json.loads(result.stdout)
        assert report["success"] is True
        assert (report["passed"], report["failed"], report["skipped"]) == (9, 0, 0)
        assert report["phases"][0]["phase"] == "discovery"
        assert report["error"] is None

    def test_table(self, _reset_loggers: None) -> None:
        """The table format starts with a summary line."""
        result = _invoke(["run", "--format", "table", *_QUIET])
        assert result.exit_code == 0, result.output
        assert result.stdout.startswith("hub-e2e: 9 passed, 0 failed, 0 skipped")
        assert "device_property_unset" in result.stdout

    def test_output_file(self, tmp_path: Path, _reset_loggers: None) -> None:
        """``--output`` writes the report to a file instead of stdout."""
        target = tmp_path / "report.json"
        result = _invoke(["run", "--output", str(target), *_QUIET])
        assert result.exit_code == 0, result.output
        assert json.loads(target.read_text())["success"] is True

    def test_failing_run(self, _reset_loggers: None) -> None:
        """A failed phase exits 1 and names the phase and endpoint."""
        result = _invoke(
            ["run", "--collaborators", "tests.test_cli:failing_collaborators", "--check-attempts", "2", *_QUIET]
        )
        assert result.exit_code == 1
        report = json.loads(result.stdout)
        assert report["success"] is False
        assert (report["passed"], report["failed"], report["skipped"]) == (3, 1, 5)
        assert report["error"].startswith("[device_property /double_endpoint]")
        assert report["phases"][-1]["error"] == report["error"]

    def test_verbose_progress(self, _reset_loggers: None) -> None:
        """``--verbose`` prints each phase outcome."""
        result = _invoke(["run", "--verbose", "--format", "table", *_QUIET])
        assert result.exit_code == 0, result.output
        assert "[PASS] server_property_unset" in result.output

    @pytest.mark.parametrize(
        "args",
        [
            ["--collaborators", "not-a-path"],
            ["--collaborators", "hub_e2e.loopback:nothing"],
            ["--check-attempts", "0"],
            ["--log-filter", "hub_e2e=LOUD"],
        ],
    )
    def test_configuration_errors(self, args: list[str], _reset_loggers: None) -> None:
        """Configuration problems exit with status 2 before any phase runs."""
        result = _invoke(["run", *args])
        assert result.exit_code == 2
        assert "Configuration error" in result.output


class TestLogging:
    """CLI logging options."""

    def test_debug_flag(self, _reset_loggers: None) -> None:
        """``--debug`` sets the package logger to DEBUG."""
        result = _invoke(["run", "--debug", "--format", "json"])
        assert result.exit_code == 0
        logger = logging.getLogger("hub_e2e")
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) >= 1

    def test_log_filter_targets_logger(self, _reset_loggers: None) -> None:
        """A filter directive sets only the named logger."""
        result = _invoke(["run", "--log-filter", "hub_e2e.retry=ERROR,hub_e2e=CRITICAL"])
        assert result.exit_code == 0
        assert logging.getLogger("hub_e2e.retry").level == logging.ERROR
        assert logging.getLogger("hub_e2e").level == logging.CRITICAL

    def test_log_format_json(self, _reset_loggers: None) -> None:
        """``--log-format json`` uses the JSON formatter."""
        result = _invoke(["run", "--log-format", "json", *_QUIET])
        assert result.exit_code == 0
        logger = logging.getLogger("hub_e2e")
        assert any(isinstance(h.formatter, HubE2eJsonFormatter) for h in logger.handlers)
