# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Logging setup for the ``hub-e2e`` command line.

Provides :class:`HubE2eJsonFormatter`, a :class:`logging.Formatter`
subclass that serializes log records as single-line JSON objects, and the
log filter syntax used by ``HUB_E2E_LOG`` and ``--log-filter``::

    hub_e2e=DEBUG,httpx=WARNING

Each comma-separated directive sets the level of one logger; a bare level
(``DEBUG``) applies to ``hub_e2e``.  The default filter is ``hub_e2e=INFO``.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from collections.abc import Mapping

from hub_e2e.errors import ConfigurationError

__all__ = [
    "DEFAULT_LOG_FILTER",
    "KNOWN_LOGGERS",
    "HubE2eJsonFormatter",
    "configure_logging",
    "parse_log_filter",
]

DEFAULT_LOG_FILTER = "hub_e2e=INFO"

KNOWN_LOGGERS: tuple[tuple[str, str], ...] = (
    ("hub_e2e", "Root logger for all hub-e2e output"),
    ("hub_e2e.sequencer", "Phase start, pass and failure"),
    ("hub_e2e.retry", "Failed retry attempts"),
    ("hub_e2e.barrier", "Rendezvous crossings"),
    ("hub_e2e.api", "Inspection API requests"),
    ("hub_e2e.loopback", "In-process hub and device"),
    ("hub_e2e.runner", "Task supervision and teardown"),
)

_KNOWN_LOGGER_NAMES: frozenset[str] = frozenset(name for name, _ in KNOWN_LOGGERS)

# Build the set of attribute names that every LogRecord has by default.
# Anything *not* in this set was injected via ``extra``.
_DEFAULT_RECORD_ATTRS: frozenset[str] = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()) | {
    "message",
    "asctime",
}

_RESERVED_KEYS: frozenset[str] = frozenset({"timestamp", "level", "logger", "message", "exception", "stack_info"})


class HubE2eJsonFormatter(logging.Formatter):
    """JSON formatter that emits all structured extra fields.

    ``timestamp``, ``level``, ``logger`` and ``message`` are always present
    and win over extra fields of the same name.  Exception information goes
    under ``"exception"``.  Values that are not JSON serializable are
    rendered with ``str``.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a single-line JSON string."""
        record.message = record.getMessage()
        obj: dict[str, object] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
            **{k: v for k, v in record.__dict__.items() if k not in _DEFAULT_RECORD_ATTRS and k not in _RESERVED_KEYS},
        }
        if record.exc_info and record.exc_info[1]:
            obj["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            obj["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(obj, default=str)


def parse_log_filter(spec: str) -> dict[str, int]:
    """Parse a log filter into logger name -> numeric level.

    Raises:
        ConfigurationError: On an unknown level name or an empty logger name.

    """
    levels = logging.getLevelNamesMapping()
    result: dict[str, int] = {}
    for directive in spec.split(","):
        directive = directive.strip()
        if not directive:
            continue
        name, sep, level = directive.rpartition("=")
        if not sep:
            name = "hub_e2e"
        elif not name.strip():
            raise ConfigurationError(f"log filter directive {directive!r} has no logger name")
        level = level.strip().upper()
        if level not in levels:
            raise ConfigurationError(f"unknown log level {level!r} in {directive!r}")
        result[name.strip()] = levels[level]
    return result


# Handlers installed by the last configure_logging call, by logger name.
_installed: dict[str, logging.Handler] = {}


def configure_logging(
    log_filter: str | None = None,
    *,
    log_format: str = "text",
    environ: Mapping[str, str] | None = None,
) -> dict[str, int]:
    """Attach a stderr handler to every logger named by the filter.

    The filter comes from *log_filter*, else ``HUB_E2E_LOG``, else
    :data:`DEFAULT_LOG_FILTER`.  Handlers from a previous call are removed
    first, so reconfiguring never duplicates output.

    Returns:
        The parsed filter.

    """
    env = os.environ if environ is None else environ
    spec = log_filter or env.get("HUB_E2E_LOG") or DEFAULT_LOG_FILTER
    levels = parse_log_filter(spec)

    for name, previous in _installed.items():
        logging.getLogger(name).removeHandler(previous)
    _installed.clear()

    handler = logging.StreamHandler(sys.stderr)
    if log_format == "json":
        handler.setFormatter(HubE2eJsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(name)-20s %(levelname)-5s %(message)s"))

    for name, level in levels.items():
        if name.startswith("hub_e2e") and name not in _KNOWN_LOGGER_NAMES:
            sys.stderr.write(f"Warning: unknown logger '{name}'\n")
            sys.stderr.flush()
        logger = logging.getLogger(name)
        logger.setLevel(level)
        logger.addHandler(handler)
        _installed[name] = handler
    return levels
