# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Error taxonomy for the end-to-end run.

Every error raised by the run derives from :class:`E2EError` and can carry
the phase and endpoint it happened in, plus the expected and actual values
for mismatches.  Context is attached as the error travels outwards
(see :meth:`E2EError.in_phase`) so the final message reads like::

    [device_datastream /integer_endpoint] value mismatch: expected=... actual=...

KEY CLASSES
-----------
ConfigurationError : environment or setup is unusable
SchemaError : aggregate/record shape mismatch
UnknownFieldError : aggregate carries keys outside the endpoint catalog
EncodingError : a value cannot be represented or a codec round-trip failed
ExhaustedRetries : an eventually consistent check never converged
AssertionFailure : observed value or order differs from the expectation
TaskFailure : a concurrent unit of work exited abnormally
TeardownError : cleanup failed after the phases completed

"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Self

__all__ = [
    "AssertionFailure",
    "ConfigurationError",
    "E2EError",
    "EncodingError",
    "ExhaustedRetries",
    "SchemaError",
    "TaskFailure",
    "TeardownError",
    "UnknownFieldError",
]

_MISSING: Any = object()


class E2EError(Exception):
    """Base class for every failure surfaced by the end-to-end run.

    Attributes:
        message: Human readable description without context prefix.
        phase: Name of the phase the error was raised in, if known.
        endpoint: Endpoint path involved, if any.
        expected: Expected value for mismatches.
        actual: Observed value for mismatches.

    """

    def __init__(
        self,
        message: str,
        *,
        phase: str | None = None,
        endpoint: str | None = None,
        expected: Any = _MISSING,
        actual: Any = _MISSING,
    ) -> None:
        """Initialize with a message and optional context."""
        self.message = message
        self.phase = phase
        self.endpoint = endpoint
        self.expected = expected
        self.actual = actual
        super().__init__(message)

    @property
    def has_values(self) -> bool:
        """Whether expected/actual values were recorded."""
        return self.expected is not _MISSING or self.actual is not _MISSING

    def in_phase(self, phase: str) -> Self:
        """Attach *phase* unless a more specific one is already set."""
        if self.phase is None:
            self.phase = phase
        return self

    def at_endpoint(self, endpoint: str) -> Self:
        """Attach *endpoint* unless one is already set."""
        if self.endpoint is None:
            self.endpoint = endpoint
        return self

    def __str__(self) -> str:
        """Render the message with its phase/endpoint prefix and values."""
        context = " ".join(c for c in (self.phase, self.endpoint) if c)
        text = f"[{context}] {self.message}" if context else self.message
        if self.has_values:
            expected = "<unknown>" if self.expected is _MISSING else repr(self.expected)
            actual = "<unknown>" if self.actual is _MISSING else repr(self.actual)
            text = f"{text}: expected={expected} actual={actual}"
        return text


class ConfigurationError(E2EError):
    """The environment or setup is unusable."""


class SchemaError(E2EError):
    """An aggregate does not match the typed record (missing slot or wrong type)."""


class UnknownFieldError(SchemaError):
    """An aggregate contains keys outside the endpoint catalog."""


class EncodingError(E2EError):
    """A value cannot be represented, or a codec round-trip was violated."""


class AssertionFailure(E2EError):
    """An observed value or ordering differs from the expectation."""


class ExhaustedRetries(E2EError):
    """An eventually consistent check never converged within its budget.

    Attributes:
        attempts: Number of attempts made.
        last_error: The error raised by the final attempt.

    """

    def __init__(self, attempts: int, last_error: BaseException | None, *, what: str = "check") -> None:
        """Initialize with the attempt count and the final underlying error."""
        self.attempts = attempts
        self.last_error = last_error
        endpoint = last_error.endpoint if isinstance(last_error, E2EError) else None
        super().__init__(
            f"{what} did not converge after {attempts} attempts (last error: {last_error})",
            endpoint=endpoint,
        )


class TaskFailure(E2EError):
    """A concurrent unit of work exited abnormally.

    Attributes:
        task: Name of the failing task (``"tasks"`` when aggregating several).
        errors: The underlying errors, one per failed task.

    """

    def __init__(self, task: str, errors: Sequence[BaseException], *, phase: str | None = None) -> None:
        """Initialize with the task name and its underlying errors."""
        self.task = task
        self.errors = list(errors)
        details = "; ".join(f"{type(e).__name__}: {e}" for e in self.errors)
        super().__init__(f"task {task!r} failed ({details})", phase=phase)

    @classmethod
    def collapse(cls, errors: Sequence[BaseException]) -> E2EError:
        """Collapse concurrent failures into a single error.

        A single :class:`E2EError` is returned unchanged; anything else is
        wrapped so that callers always see exactly one error.
        """
        if len(errors) == 1 and isinstance(errors[0], E2EError):
            return errors[0]
        flat: list[BaseException] = []
        for err in errors:
            if isinstance(err, TaskFailure) and err.task == "tasks":
                flat.extend(err.errors)
            else:
                flat.append(err)
        return cls("tasks", flat)


class TeardownError(E2EError):
    """Closing the device client or shutting down the routing hub failed."""
