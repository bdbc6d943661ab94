# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tagged dynamic values exchanged between the device and the server.

A :class:`Value` pairs a :class:`ValueKind` (one of the fourteen mapping
types an interface endpoint can have) with validated Python data.  The kind
is what keeps a 64-bit integer distinguishable from a 32-bit one, and a blob
from a string, once values leave the typed record.

Each kind maps onto an Arrow type, which is how values travel on the wire
(see :mod:`hub_e2e.wire`)::

    ValueKind.INTEGER.arrow_type       -> int32
    ValueKind.LONGINTEGER.arrow_type   -> int64
    ValueKind.DATETIMEARRAY.arrow_type -> list<timestamp[us, tz=UTC]>

:data:`UNSET` is the property retraction marker.  It is a separate singleton
so that "no value" never compares equal to a zero value or an empty array.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from enum import Enum
from typing import Any, Final

import pyarrow as pa

from hub_e2e.errors import EncodingError

__all__ = [
    "UNSET",
    "Aggregate",
    "Unset",
    "Value",
    "ValueKind",
]

INT32_MIN: Final = -(2**31)
INT32_MAX: Final = 2**31 - 1
INT64_MIN: Final = -(2**63)
INT64_MAX: Final = 2**63 - 1

_TIMESTAMP_TYPE: Final = pa.timestamp("us", tz="UTC")


class ValueKind(Enum):
    """Mapping types supported by an interface endpoint.

    Member values are the type names used in interface schema documents.
    """

    DOUBLE = "double"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    LONGINTEGER = "longinteger"
    STRING = "string"
    BINARYBLOB = "binaryblob"
    DATETIME = "datetime"
    DOUBLEARRAY = "doublearray"
    INTEGERARRAY = "integerarray"
    BOOLEANARRAY = "booleanarray"
    LONGINTEGERARRAY = "longintegerarray"
    STRINGARRAY = "stringarray"
    BINARYBLOBARRAY = "binaryblobarray"
    DATETIMEARRAY = "datetimearray"

    @property
    def is_array(self) -> bool:
        """Whether this kind holds a list of elements."""
        return self.value.endswith("array")

    @property
    def element(self) -> ValueKind:
        """Scalar kind of each element (the kind itself for scalars)."""
        if not self.is_array:
            return self
        return ValueKind(self.value.removesuffix("array"))

    @property
    def array(self) -> ValueKind:
        """Array kind whose elements are of this scalar kind."""
        if self.is_array:
            raise ValueError(f"{self.value} is already an array kind")
        return ValueKind(f"{self.value}array")

    @property
    def arrow_type(self) -> pa.DataType:
        """Arrow type carrying values of this kind."""
        if self.is_array:
            return pa.list_(self.element.arrow_type)
        return _SCALAR_ARROW_TYPES[self]

    @classmethod
    def from_arrow_type(cls, arrow_type: pa.DataType) -> ValueKind:
        """Recover the kind from an Arrow type.

        Raises:
            EncodingError: If the Arrow type does not correspond to any kind.

        """
        if pa.types.is_list(arrow_type):
            return cls.from_arrow_type(arrow_type.value_type).array
        for kind, scalar_type in _SCALAR_ARROW_TYPES.items():
            if arrow_type == scalar_type:
                return kind
        raise EncodingError(f"no value kind for Arrow type {arrow_type}")


_SCALAR_ARROW_TYPES: dict[ValueKind, pa.DataType] = {
    ValueKind.DOUBLE: pa.float64(),
    ValueKind.INTEGER: pa.int32(),
    ValueKind.BOOLEAN: pa.bool_(),
    ValueKind.LONGINTEGER: pa.int64(),
    ValueKind.STRING: pa.string(),
    ValueKind.BINARYBLOB: pa.binary(),
    ValueKind.DATETIME: _TIMESTAMP_TYPE,
}


def _check_scalar(kind: ValueKind, data: Any) -> Any:
    """Validate one scalar element and return it (normalized where needed)."""
    if kind is ValueKind.DOUBLE and isinstance(data, float):
        return data
    if kind in (ValueKind.INTEGER, ValueKind.LONGINTEGER) and isinstance(data, int) and not isinstance(data, bool):
        low, high = (INT32_MIN, INT32_MAX) if kind is ValueKind.INTEGER else (INT64_MIN, INT64_MAX)
        if not low <= data <= high:
            raise EncodingError(f"{kind.value} {data} is out of range")
        return data
    if kind is ValueKind.BOOLEAN and isinstance(data, bool):
        return data
    if kind is ValueKind.STRING and isinstance(data, str):
        return data
    if kind is ValueKind.BINARYBLOB and isinstance(data, (bytes, bytearray)):
        return bytes(data)
    if kind is ValueKind.DATETIME and isinstance(data, dt.datetime):
        if data.utcoffset() is None:
            raise EncodingError(f"datetime {data.isoformat()} is not timezone-aware")
        return data
    raise EncodingError(f"{type(data).__name__} {data!r} is not a valid {kind.value}")


@dataclass(frozen=True)
class Value:
    """A dynamically typed endpoint value.

    Attributes:
        kind: The mapping type of the value.
        data: Python data; a ``tuple`` for array kinds.

    Raises:
        EncodingError: If *data* cannot be represented as *kind*.

    """

    kind: ValueKind
    data: Any

    def __post_init__(self) -> None:
        """Validate (and normalize) the payload against the kind."""
        if self.kind.is_array:
            if not isinstance(self.data, (list, tuple)):
                raise EncodingError(f"{type(self.data).__name__} is not a valid {self.kind.value}")
            normalized: Any = tuple(_check_scalar(self.kind.element, item) for item in self.data)
        else:
            normalized = _check_scalar(self.kind, self.data)
        object.__setattr__(self, "data", normalized)

    # -- Convenience constructors -------------------------------------------

    @classmethod
    def double(cls, data: float) -> Value:
        """Build a ``double`` value."""
        return cls(ValueKind.DOUBLE, data)

    @classmethod
    def integer(cls, data: int) -> Value:
        """Build a 32-bit ``integer`` value."""
        return cls(ValueKind.INTEGER, data)

    @classmethod
    def longinteger(cls, data: int) -> Value:
        """Build a 64-bit ``longinteger`` value."""
        return cls(ValueKind.LONGINTEGER, data)

    @classmethod
    def boolean(cls, data: bool) -> Value:
        """Build a ``boolean`` value."""
        return cls(ValueKind.BOOLEAN, data)

    @classmethod
    def string(cls, data: str) -> Value:
        """Build a ``string`` value."""
        return cls(ValueKind.STRING, data)

    @classmethod
    def binaryblob(cls, data: bytes) -> Value:
        """Build a ``binaryblob`` value."""
        return cls(ValueKind.BINARYBLOB, data)

    @classmethod
    def datetime(cls, data: dt.datetime) -> Value:
        """Build a ``datetime`` value from a timezone-aware datetime."""
        return cls(ValueKind.DATETIME, data)

    def __repr__(self) -> str:
        """Compact representation used in mismatch reports."""
        return f"{self.kind.value}({self.data!r})"


class Unset:
    """Property retraction marker; see :data:`UNSET`."""

    _instance: Unset | None = None

    def __new__(cls) -> Unset:
        """Return the process-wide singleton."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        """Return ``UNSET``."""
        return "UNSET"

    def __bool__(self) -> bool:
        """An unset value is falsy."""
        return False


UNSET: Final = Unset()

Aggregate = dict[str, Value]
"""Ordered slot-name to value mapping (the generic aggregate)."""
