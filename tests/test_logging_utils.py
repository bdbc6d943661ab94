"""Tests for the JSON log formatter and log filter parsing."""

from __future__ import annotations

import io
import json
import logging
import sys
from collections.abc import Iterator

import pytest

from hub_e2e.errors import ConfigurationError
from hub_e2e.logging_utils import DEFAULT_LOG_FILTER, HubE2eJsonFormatter, configure_logging, parse_log_filter


def _record(msg: str = "hello %s", args: tuple[object, ...] = ("world",), **extra: object) -> logging.LogRecord:
    record = logging.LogRecord("hub_e2e.test", logging.INFO, __file__, 1, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    """Single-line JSON records."""

    def test_base_fields(self) -> None:
        """Timestamp, level, logger and the formatted message are always present."""
        obj = json.loads(HubE2eJsonFormatter().format(_record()))
        assert obj["level"] == "INFO"
        assert obj["logger"] == "hub_e2e.test"
        assert obj["message"] == "hello world"
        assert "timestamp" in obj

    def test_extra_fields(self) -> None:
        """Fields passed through ``extra`` are emitted."""
        obj = json.loads(HubE2eJsonFormatter().format(_record(phase="discovery", attempt=3)))
        assert obj["phase"] == "discovery"
        assert obj["attempt"] == 3

    def test_reserved_keys_win(self) -> None:
        """An extra field cannot overwrite the base fields."""
        obj = json.loads(HubE2eJsonFormatter().format(_record(level="spoofed")))
        assert obj["level"] == "INFO"

    def test_non_serializable_extra(self) -> None:
        """Values JSON cannot represent are rendered as text."""
        obj = json.loads(HubE2eJsonFormatter().format(_record(payload=b"\x00")))
        assert obj["payload"] == "b'\\x00'"

    def test_exception(self) -> None:
        """Exception information is included."""
        try:
            raise ValueError("bad")
        except ValueError:
            record = _record()
            record.exc_info = sys.exc_info()
        obj = json.loads(HubE2eJsonFormatter().format(record))
        assert "ValueError: bad" in obj["exception"]


class TestParseLogFilter:
    """The ``name=LEVEL`` directive syntax."""

    def test_default(self) -> None:
        """The default filter enables INFO on the package logger."""
        assert parse_log_filter(DEFAULT_LOG_FILTER) == {"hub_e2e": logging.INFO}

    def test_several_directives(self) -> None:
        """Directives are comma separated and case insensitive."""
        levels = parse_log_filter("hub_e2e=debug, httpx=WARNING,")
        assert levels == {"hub_e2e": logging.DEBUG, "httpx": logging.WARNING}

    def test_bare_level(self) -> None:
        """A bare level applies to the package logger."""
        assert parse_log_filter("ERROR") == {"hub_e2e": logging.ERROR}

    @pytest.mark.parametrize("spec", ["hub_e2e=LOUD", "=DEBUG", "verbose"])
    def test_invalid(self, spec: str) -> None:
        """Unknown levels and empty logger names are rejected."""
        with pytest.raises(ConfigurationError):
            parse_log_filter(spec)


class TestConfigureLogging:
    """Handler installation."""

    @pytest.fixture(autouse=True)
    def _restore(self) -> Iterator[None]:
        names = ("hub_e2e", "hub_e2e.api", "hub_e2e.nonexistent")
        saved = {name: (logging.getLogger(name).level, list(logging.getLogger(name).handlers)) for name in names}
        yield
        for name, (level, handlers) in saved.items():
            logger = logging.getLogger(name)
            logger.handlers[:] = handlers
            logger.setLevel(level)

    def test_environment_filter(self) -> None:
        """``HUB_E2E_LOG`` is used when no filter is given."""
        levels = configure_logging(environ={"HUB_E2E_LOG": "hub_e2e.api=DEBUG"})
        assert levels == {"hub_e2e.api": logging.DEBUG}
        assert logging.getLogger("hub_e2e.api").level == logging.DEBUG

    def test_argument_wins(self) -> None:
        """An explicit filter overrides the environment."""
        levels = configure_logging("hub_e2e=WARNING", environ={"HUB_E2E_LOG": "hub_e2e.api=DEBUG"})
        assert levels == {"hub_e2e": logging.WARNING}

    def test_json_handler(self) -> None:
        """The JSON format installs the JSON formatter."""
        configure_logging("hub_e2e=INFO", log_format="json", environ={})
        handler = logging.getLogger("hub_e2e").handlers[-1]
        assert isinstance(handler.formatter, HubE2eJsonFormatter)

    def test_reconfigure_replaces_handler(self) -> None:
        """Calling twice leaves one handler per logger, not two."""
        logger = logging.getLogger("hub_e2e")
        configure_logging("hub_e2e=INFO", environ={})
        installed = len(logger.handlers)
        configure_logging("hub_e2e=DEBUG", log_format="json", environ={})
        assert len(logger.handlers) == installed
        assert isinstance(logger.handlers[-1].formatter, HubE2eJsonFormatter)

    def test_reconfigure_drops_unlisted_logger(self) -> None:
        """A logger missing from the new filter loses the earlier handler."""
        api = logging.getLogger("hub_e2e.api")
        configure_logging("hub_e2e.api=DEBUG", environ={})
        installed = len(api.handlers)
        configure_logging("hub_e2e=INFO", environ={})
        assert len(api.handlers) == installed - 1

    def test_unknown_logger_warning(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Unknown package loggers produce a warning on stderr."""
        stderr = io.StringIO()
        monkeypatch.setattr(sys, "stderr", stderr)
        configure_logging("hub_e2e.nonexistent=DEBUG", environ={})
        assert "unknown logger 'hub_e2e.nonexistent'" in stderr.getvalue()
