"""Command-line interface for hub end-to-end runs.

Provides ``run`` to execute the full sequence, plus ``interfaces``,
``schema`` and ``fixture`` to inspect the catalog the run relies on, and
``loggers`` to list the names ``--log-filter`` understands.

Usage::

    hub-e2e run
    hub-e2e run --collaborators mysite.e2e:collaborators --format json --output report.json
    hub-e2e interfaces --additional
    hub-e2e fixture

Exit status of ``run``: 0 when every phase passed and teardown was clean,
1 when the run failed, 2 on configuration errors.

"""

from __future__ import annotations

import asyncio
import json
import sys
from enum import StrEnum
from pathlib import Path
from typing import Annotated

import typer

from hub_e2e.barrier import Rendezvous
from hub_e2e.config import E2EConfig
from hub_e2e.errors import ConfigurationError
from hub_e2e.interfaces import ADDITIONAL_INTERFACE_NAMES, INTERFACE_NAMES, Data, interface_by_name
from hub_e2e.logging_utils import KNOWN_LOGGERS, configure_logging
from hub_e2e.runner import DEFAULT_FACTORY, CollaboratorFactory, E2EReport, load_factory, run_e2e
from hub_e2e.sequencer import PhaseResult

EXIT_FAILED = 1
EXIT_CONFIG = 2

# ---------------------------------------------------------------------------
# Output format enum
# ---------------------------------------------------------------------------


class OutputFormat(StrEnum):
    """Output format for the run report."""

    auto = "auto"
    json = "json"
    table = "table"


class LogFormat(StrEnum):
    """Format of log records on stderr."""

    text = "text"
    json = "json"


app = typer.Typer(
    name="hub-e2e",
    help="End-to-end conformance runs between a device and the server through a message hub.",
    add_completion=False,
    no_args_is_help=True,
)


# ---------------------------------------------------------------------------
# Output formatting
# ---------------------------------------------------------------------------


def _format_table(report: E2EReport) -> str:
    """Format a report as a human-readable table."""
    lines: list[str] = []
    lines.append(
        f"hub-e2e: {report.passed} passed, {report.failed} failed, {report.skipped} skipped"
        f" ({report.duration_ms / 1000:.2f}s)"
    )
    lines.append("")

    for r in report.phases:
        status = "PASS" if r.passed else "FAIL"
        lines.append(f"  {r.phase:<30s} {status:>4s}  {r.duration_ms:>7.1f}ms")
    if report.error is not None:
        lines.append("")
        lines.append(f"error: {report.error}")
    if report.teardown_error is not None:
        lines.append(f"teardown: {report.teardown_error}")

    return "\n".join(lines)


def _format_json(report: E2EReport) -> str:
    """Format a report as JSON."""
    data: dict[str, object] = {
        "success": report.success,
        "total": report.total,
        "passed": report.passed,
        "failed": report.failed,
        "skipped": report.skipped,
        "duration_ms": round(report.duration_ms, 1),
        "error": str(report.error) if report.error is not None else None,
        "teardown_error": str(report.teardown_error) if report.teardown_error is not None else None,
        "phases": [
            {
                "phase": r.phase,
                "passed": r.passed,
                "duration_ms": round(r.duration_ms, 1),
                "error": r.error,
            }
            for r in report.phases
        ],
    }
    return json.dumps(data, indent=2)


def _progress_to_stderr(result: PhaseResult) -> None:
    """Write one phase outcome to stderr."""
    status = "PASS" if result.passed else "FAIL"
    sys.stderr.write(f"[{status}] {result.phase}\n")
    sys.stderr.flush()


async def _run(
    factory: CollaboratorFactory,
    config: E2EConfig,
    timeout: float | None,
    verbose: bool,
) -> E2EReport:
    barrier = Rendezvous()
    collaborators = factory(config, barrier)
    return await run_e2e(
        collaborators,
        barrier,
        config,
        on_progress=_progress_to_stderr if verbose else None,
        timeout=timeout,
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def run(
    collaborators: Annotated[
        str, typer.Option("--collaborators", "-c", help="Collaborator factory as module:attribute")
    ] = DEFAULT_FACTORY,
    discovery_attempts: Annotated[int, typer.Option(help="Retry budget of the discovery check")] = 20,
    check_attempts: Annotated[int, typer.Option(help="Retry budget of each state check")] = 10,
    timeout: Annotated[float | None, typer.Option("--timeout", "-t", help="Overall deadline in seconds")] = None,
    fmt: Annotated[OutputFormat, typer.Option("--format", "-f", help="Report format")] = OutputFormat.auto,
    output: Annotated[Path | None, typer.Option("--output", "-o", help="Write the report to a file")] = None,
    log_filter: Annotated[
        str | None, typer.Option("--log-filter", help="Logger levels, e.g. hub_e2e=DEBUG,httpx=WARNING")
    ] = None,
    log_format: Annotated[LogFormat, typer.Option("--log-format", help="Log record format")] = LogFormat.text,
    debug: Annotated[bool, typer.Option("--debug", help="Shorthand for --log-filter hub_e2e=DEBUG")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Print each phase as it completes")] = False,
) -> None:
    """Run every phase against the configured collaborators."""
    try:
        configure_logging("hub_e2e=DEBUG" if debug else log_filter, log_format=log_format.value)
        factory = load_factory(collaborators)
        config = E2EConfig(discovery_attempts=discovery_attempts, check_attempts=check_attempts)
        report = asyncio.run(_run(factory, config, timeout, verbose))
    except ConfigurationError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(EXIT_CONFIG) from None

    if fmt == OutputFormat.table or (fmt == OutputFormat.auto and output is None and sys.stdout.isatty()):
        text = _format_table(report)
    else:
        text = _format_json(report)

    if output is not None:
        output.write_text(text + "\n", encoding="utf-8")
    else:
        typer.echo(text)

    if not report.success:
        raise typer.Exit(EXIT_FAILED)


@app.command()
def interfaces(
    additional: Annotated[bool, typer.Option("--additional", "-a", help="Include the additional interfaces")] = False,
) -> None:
    """List the interface names a device announces."""
    names = list(INTERFACE_NAMES)
    if additional:
        names.extend(ADDITIONAL_INTERFACE_NAMES)
    for name in names:
        typer.echo(name)


@app.command()
def schema(name: Annotated[str, typer.Argument(help="Interface name")]) -> None:
    """Print the schema document of an interface."""
    try:
        typer.echo(interface_by_name(name).schema.rstrip("\n"))
    except ConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(EXIT_CONFIG) from None


@app.command()
def loggers() -> None:
    """List the logger names accepted by --log-filter."""
    width = max(len(name) for name, _ in KNOWN_LOGGERS)
    for name, description in KNOWN_LOGGERS:
        typer.echo(f"{name:<{width}}  {description}")


@app.command()
def fixture() -> None:
    """Print the reference record in the inspection API's JSON form."""
    typer.echo(json.dumps(Data.default().to_json(), indent=2))
