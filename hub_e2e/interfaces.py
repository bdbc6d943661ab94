# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Interface catalog and the typed record exchanged on every interface.

All eight test interfaces share the same fourteen endpoints, one per mapping
type (see :data:`ENDPOINTS`).  :class:`Data` is the strict, typed view of
one value per endpoint and converts losslessly to and from the generic
:data:`~hub_e2e.values.Aggregate`::

    aggregate = Data.default().to_aggregate()
    assert Data.from_aggregate(aggregate) == Data.default()

Interface identities are module-level constants and never change after
import.  Their schema documents ship as package data and are treated as
opaque text.
"""

from __future__ import annotations

import datetime as dt
import functools
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from importlib import resources
from typing import Any, Final

from hub_e2e.codec import decode_blob, parse_timestamp, value_from_json, value_to_json
from hub_e2e.errors import ConfigurationError, EncodingError, SchemaError, UnknownFieldError
from hub_e2e.values import Aggregate, Value, ValueKind

__all__ = [
    "ADDITIONAL_DEVICE_DATASTREAM",
    "ADDITIONAL_INTERFACES",
    "ADDITIONAL_INTERFACE_NAMES",
    "ADDITIONAL_SERVER_DATASTREAM",
    "DEVICE_AGGREGATE",
    "DEVICE_DATASTREAM",
    "DEVICE_PROPERTY",
    "ENDPOINTS",
    "ENDPOINT_KINDS",
    "INTERFACES",
    "INTERFACE_NAMES",
    "SERVER_AGGREGATE",
    "SERVER_DATASTREAM",
    "SERVER_PROPERTY",
    "Aggregation",
    "Data",
    "Interface",
    "InterfaceType",
    "Ownership",
    "endpoint_path",
    "interface_by_name",
]

_NAME_PREFIX: Final = "org.astarte-platform.python.e2etest."

# ---------------------------------------------------------------------------
# Endpoint catalog
# ---------------------------------------------------------------------------

ENDPOINT_KINDS: Final[Mapping[str, ValueKind]] = {f"{kind.value}_endpoint": kind for kind in ValueKind}
"""Endpoint name to mapping type, in catalog order."""

ENDPOINTS: Final[tuple[str, ...]] = tuple(ENDPOINT_KINDS)


def endpoint_path(endpoint: str) -> str:
    """Return the individual path of *endpoint* (``/<endpoint>``)."""
    return f"/{endpoint}"


# ---------------------------------------------------------------------------
# Typed record
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Data:
    """One value for each of the fourteen endpoints."""

    double_endpoint: float
    integer_endpoint: int
    boolean_endpoint: bool
    longinteger_endpoint: int
    string_endpoint: str
    binaryblob_endpoint: bytes
    datetime_endpoint: dt.datetime
    doublearray_endpoint: list[float]
    integerarray_endpoint: list[int]
    booleanarray_endpoint: list[bool]
    longintegerarray_endpoint: list[int]
    stringarray_endpoint: list[str]
    binaryblobarray_endpoint: list[bytes]
    datetimearray_endpoint: list[dt.datetime]

    @classmethod
    def default(cls) -> Data:
        """Return the fixture every assertion compares against."""
        return cls(
            double_endpoint=4.34,
            integer_endpoint=1,
            boolean_endpoint=True,
            longinteger_endpoint=45543543534,
            string_endpoint="Hello",
            binaryblob_endpoint=decode_blob("aGVsbG8="),
            datetime_endpoint=parse_timestamp("2021-09-29T17:46:48.000Z"),
            doublearray_endpoint=[43.5, 10.5, 11.9],
            integerarray_endpoint=[-4, 123, -2222, 30],
            booleanarray_endpoint=[True, False],
            longintegerarray_endpoint=[53267895478, 53267895428, 53267895118],
            stringarray_endpoint=["Test ", "String"],
            binaryblobarray_endpoint=[decode_blob(s) for s in ("aGVsbG8=", "aGVsbG8=")],
            datetimearray_endpoint=[
                parse_timestamp(s) for s in ("2021-10-23T17:46:48.000Z", "2021-11-11T17:46:48.000Z")
            ],
        )

    def to_aggregate(self) -> Aggregate:
        """Convert into the generic aggregate, in catalog order.

        Raises:
            EncodingError: If a slot holds data its mapping type cannot represent.

        """
        aggregate: Aggregate = {}
        for endpoint, kind in ENDPOINT_KINDS.items():
            try:
                aggregate[endpoint] = Value(kind, getattr(self, endpoint))
            except EncodingError as e:
                raise e.at_endpoint(endpoint_path(endpoint)) from None
        return aggregate

    @classmethod
    def from_aggregate(cls, aggregate: Mapping[str, Any]) -> Data:
        """Build a record from a generic aggregate.

        Raises:
            UnknownFieldError: If the aggregate has keys outside the catalog.
            SchemaError: If a slot is missing or holds the wrong kind of value.

        """
        unknown = [key for key in aggregate if key not in ENDPOINT_KINDS]
        if unknown:
            raise UnknownFieldError(f"unknown fields {unknown}")
        kwargs: dict[str, Any] = {}
        for endpoint, kind in ENDPOINT_KINDS.items():
            if endpoint not in aggregate:
                raise SchemaError("missing field", endpoint=endpoint_path(endpoint))
            value = aggregate[endpoint]
            if not isinstance(value, Value) or value.kind is not kind:
                actual = value.kind.value if isinstance(value, Value) else type(value).__name__
                raise SchemaError(
                    "wrong value type", endpoint=endpoint_path(endpoint), expected=kind.value, actual=actual
                )
            kwargs[endpoint] = list(value.data) if kind.is_array else value.data
        return cls(**kwargs)

    def to_json(self) -> dict[str, Any]:
        """Encode in the inspection API's JSON form."""
        return {endpoint: value_to_json(value) for endpoint, value in self.to_aggregate().items()}

    @classmethod
    def from_json(cls, obj: Mapping[str, Any]) -> Data:
        """Decode from the inspection API's JSON form, as strictly as :meth:`from_aggregate`."""
        if not isinstance(obj, Mapping):
            raise SchemaError(f"expected a JSON object, got {type(obj).__name__}")
        unknown = [key for key in obj if key not in ENDPOINT_KINDS]
        if unknown:
            raise UnknownFieldError(f"unknown fields {unknown}")
        aggregate: Aggregate = {}
        for endpoint, kind in ENDPOINT_KINDS.items():
            if endpoint not in obj:
                raise SchemaError("missing field", endpoint=endpoint_path(endpoint))
            try:
                aggregate[endpoint] = value_from_json(kind, obj[endpoint])
            except SchemaError as e:
                raise e.at_endpoint(endpoint_path(endpoint)) from None
        return cls.from_aggregate(aggregate)


# ---------------------------------------------------------------------------
# Interface identities
# ---------------------------------------------------------------------------


class Ownership(Enum):
    """Which side publishes on the interface."""

    DEVICE = "device"
    SERVER = "server"


class InterfaceType(Enum):
    """Whether endpoints stream samples or hold state."""

    DATASTREAM = "datastream"
    PROPERTIES = "properties"


class Aggregation(Enum):
    """Whether endpoints are sent one by one or as a whole object."""

    INDIVIDUAL = "individual"
    OBJECT = "object"


@dataclass(frozen=True)
class Interface:
    """Identity of one test interface.

    Attributes:
        name: Dotted reverse-domain interface name.
        ownership: Publishing side.
        type: Datastream or properties.
        aggregation: Individual or object aggregation.
        path: Fixed object path for aggregates, ``None`` otherwise.
        schema_file: Resource path of the schema document under ``schemas/``.

    """

    name: str
    ownership: Ownership
    type: InterfaceType
    aggregation: Aggregation
    path: str | None = None
    schema_file: str = ""

    @functools.cached_property
    def schema(self) -> str:
        """Raw schema document (opaque JSON text).

        Raises:
            ConfigurationError: If the document is not shipped with the package.

        """
        resource = resources.files("hub_e2e").joinpath("schemas", self.schema_file)
        try:
            return resource.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"schema for {self.name} is unavailable: {e}") from e

    @property
    def is_object(self) -> bool:
        """Whether values are sent as aggregate objects."""
        return self.aggregation is Aggregation.OBJECT

    @property
    def is_property(self) -> bool:
        """Whether the interface holds stateful properties."""
        return self.type is InterfaceType.PROPERTIES


def _interface(
    short_name: str,
    ownership: Ownership,
    itype: InterfaceType,
    aggregation: Aggregation = Aggregation.INDIVIDUAL,
    *,
    subdir: str = "",
) -> Interface:
    name = f"{_NAME_PREFIX}{short_name}"
    schema_file = f"{subdir}/{name}.json" if subdir else f"{name}.json"
    path = "/sensor_1" if aggregation is Aggregation.OBJECT else None
    return Interface(name, ownership, itype, aggregation, path, schema_file)


DEVICE_AGGREGATE: Final = _interface("DeviceAggregate", Ownership.DEVICE, InterfaceType.DATASTREAM, Aggregation.OBJECT)
DEVICE_DATASTREAM: Final = _interface("DeviceDatastream", Ownership.DEVICE, InterfaceType.DATASTREAM)
DEVICE_PROPERTY: Final = _interface("DeviceProperty", Ownership.DEVICE, InterfaceType.PROPERTIES)
SERVER_AGGREGATE: Final = _interface("ServerAggregate", Ownership.SERVER, InterfaceType.DATASTREAM, Aggregation.OBJECT)
SERVER_DATASTREAM: Final = _interface("ServerDatastream", Ownership.SERVER, InterfaceType.DATASTREAM)
SERVER_PROPERTY: Final = _interface("ServerProperty", Ownership.SERVER, InterfaceType.PROPERTIES)

ADDITIONAL_DEVICE_DATASTREAM: Final = _interface(
    "AdditionalDeviceDatastream", Ownership.DEVICE, InterfaceType.DATASTREAM, subdir="additional"
)
ADDITIONAL_SERVER_DATASTREAM: Final = _interface(
    "AdditionalServerDatastream", Ownership.SERVER, InterfaceType.DATASTREAM, subdir="additional"
)

INTERFACES: Final[tuple[Interface, ...]] = (
    DEVICE_AGGREGATE,
    DEVICE_DATASTREAM,
    DEVICE_PROPERTY,
    SERVER_AGGREGATE,
    SERVER_DATASTREAM,
    SERVER_PROPERTY,
)
INTERFACE_NAMES: Final[tuple[str, ...]] = tuple(sorted(i.name for i in INTERFACES))

ADDITIONAL_INTERFACES: Final[tuple[Interface, ...]] = (ADDITIONAL_DEVICE_DATASTREAM, ADDITIONAL_SERVER_DATASTREAM)
ADDITIONAL_INTERFACE_NAMES: Final[tuple[str, ...]] = tuple(i.name for i in ADDITIONAL_INTERFACES)

_BY_NAME: Final[dict[str, Interface]] = {i.name: i for i in (*INTERFACES, *ADDITIONAL_INTERFACES)}


def interface_by_name(name: str) -> Interface:
    """Look up a known interface.

    Raises:
        ConfigurationError: If *name* is not one of the eight test interfaces.

    """
    try:
        return _BY_NAME[name]
    except KeyError:
        raise ConfigurationError(f"unknown interface {name!r}") from None
