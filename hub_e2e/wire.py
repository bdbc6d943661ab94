# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Arrow IPC wire format for device <-> hub messages.

Every message is a complete Arrow IPC stream holding exactly one record
batch.  The batch schema carries the values, so the kind of every value is
recovered from its Arrow type: a ``longinteger`` travels as ``int64`` and an
``integer`` as ``int32``, a blob as ``binary`` and a string as ``utf8``.

Message routing information lives in the batch custom metadata:

==========================  =================================================
Key                         Meaning
==========================  =================================================
``hub_e2e.message``         :class:`MessageKind` value
``hub_e2e.interface``       interface name (absent for introspection)
``hub_e2e.path``            endpoint or object path (absent for introspection)
==========================  =================================================

Batches per kind:

- ``object``: one row, one column per aggregate slot.
- ``individual``: one row, a single ``value`` column.
- ``unset`` / ``disconnect``: zero columns, zero rows.
- ``introspection``: one row, an ``interfaces`` column of ``list<utf8>``.

Set ``HUB_E2E_IPC_DEBUG=1`` to log every encoded and decoded message.
"""

from __future__ import annotations

import os
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from io import BytesIO
from typing import Any

import pyarrow as pa
from pyarrow import ipc

from hub_e2e.errors import EncodingError
from hub_e2e.values import Aggregate, Value, ValueKind

__all__ = [
    "Envelope",
    "MessageKind",
    "decode_aggregate",
    "decode_value",
    "encode_aggregate",
    "encode_value",
]

MESSAGE_KEY = b"hub_e2e.message"
INTERFACE_KEY = b"hub_e2e.interface"
PATH_KEY = b"hub_e2e.path"

_VALUE_COLUMN = "value"
_INTERFACES_COLUMN = "interfaces"

_IPC_DEBUG = os.environ.get("HUB_E2E_IPC_DEBUG", "").lower() in ("1", "true", "yes")


class MessageKind(Enum):
    """Kind of message travelling between the device and the hub."""

    INTROSPECTION = "introspection"
    OBJECT = "object"
    INDIVIDUAL = "individual"
    UNSET = "unset"
    DISCONNECT = "disconnect"


# ---------------------------------------------------------------------------
# IPC helpers
# ---------------------------------------------------------------------------


def _write_batch(batch: pa.RecordBatch, custom_metadata: pa.KeyValueMetadata | None = None) -> bytes:
    """Serialize a single batch into a complete IPC stream."""
    buffer = BytesIO()
    with ipc.RecordBatchStreamWriter(buffer, batch.schema) as writer:
        writer.write_batch(batch, custom_metadata=custom_metadata)
    return buffer.getvalue()


def _read_batch(data: bytes) -> tuple[pa.RecordBatch, pa.KeyValueMetadata | None]:
    """Read the single batch of an IPC stream.

    Raises:
        EncodingError: If the stream is malformed or holds no batch.

    """
    try:
        with ipc.open_stream(pa.BufferReader(data)) as reader:
            try:
                return reader.read_next_batch_with_custom_metadata()
            except StopIteration:
                raise EncodingError("no record batch found in message") from None
    except (pa.ArrowInvalid, OSError) as e:
        raise EncodingError(f"malformed IPC message: {e}") from e


def _single_row(batch: pa.RecordBatch, what: str) -> dict[str, Any]:
    if batch.num_rows != 1:
        raise EncodingError(f"expected a single-row {what} batch, got {batch.num_rows} rows")
    row: dict[str, Any] = batch.to_pylist()[0]
    return row


def _value_batch(values: Aggregate) -> pa.RecordBatch:
    fields = [pa.field(name, value.kind.arrow_type, nullable=False) for name, value in values.items()]
    arrays = [
        pa.array([list(value.data) if value.kind.is_array else value.data], type=value.kind.arrow_type)
        for value in values.values()
    ]
    try:
        return pa.RecordBatch.from_arrays(arrays, schema=pa.schema(fields))
    except (pa.ArrowInvalid, pa.ArrowTypeError) as e:
        raise EncodingError(f"cannot encode values as Arrow: {e}") from e


def _batch_values(batch: pa.RecordBatch, what: str) -> Aggregate:
    row = _single_row(batch, what)
    return {f.name: Value(ValueKind.from_arrow_type(f.type), row[f.name]) for f in batch.schema}


def _batch_value(batch: pa.RecordBatch) -> Value:
    values = _batch_values(batch, "value")
    if list(values) != [_VALUE_COLUMN]:
        raise EncodingError(f"expected a single {_VALUE_COLUMN!r} column, got {list(values)}")
    return values[_VALUE_COLUMN]


# ---------------------------------------------------------------------------
# Values and aggregates
# ---------------------------------------------------------------------------


def encode_value(value: Value, custom_metadata: pa.KeyValueMetadata | None = None) -> bytes:
    """Encode one individual value as an IPC stream, optionally tagged with batch metadata."""
    return _write_batch(_value_batch({_VALUE_COLUMN: value}), custom_metadata)


def decode_value(data: bytes) -> Value:
    """Decode an individual value produced by :func:`encode_value`."""
    batch, _ = _read_batch(data)
    return _batch_value(batch)


def encode_aggregate(aggregate: Aggregate, custom_metadata: pa.KeyValueMetadata | None = None) -> bytes:
    """Encode an aggregate as a single-row IPC stream, one column per slot."""
    return _write_batch(_value_batch(aggregate), custom_metadata)


def decode_aggregate(data: bytes) -> Aggregate:
    """Decode an aggregate produced by :func:`encode_aggregate`, preserving slot order."""
    batch, _ = _read_batch(data)
    return _batch_values(batch, "aggregate")


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------

_EMPTY_BATCH = pa.RecordBatch.from_arrays([], schema=pa.schema([]))


@dataclass(frozen=True)
class Envelope:
    """One routed message between the device and the hub.

    Attributes:
        kind: What the message carries.
        interface: Interface name, empty for introspection and disconnect.
        path: Endpoint or object path, empty for introspection and disconnect.
        payload: Aggregate, single value, or introspection names; depends on *kind*.

    """

    kind: MessageKind
    interface: str = ""
    path: str = ""
    payload: Aggregate | Value | tuple[str, ...] | None = field(default=None)

    @classmethod
    def introspection(cls, names: Sequence[str]) -> Envelope:
        """Announce the interfaces the device supports."""
        return cls(MessageKind.INTROSPECTION, payload=tuple(names))

    @classmethod
    def object(cls, interface: str, path: str, aggregate: Aggregate) -> Envelope:
        """Carry an aggregate object published at *path*."""
        return cls(MessageKind.OBJECT, interface, path, dict(aggregate))

    @classmethod
    def individual(cls, interface: str, path: str, value: Value) -> Envelope:
        """Carry one individual value."""
        return cls(MessageKind.INDIVIDUAL, interface, path, value)

    @classmethod
    def unset(cls, interface: str, path: str) -> Envelope:
        """Carry a property retraction."""
        return cls(MessageKind.UNSET, interface, path)

    @classmethod
    def disconnect(cls) -> Envelope:
        """Signal the end of the connection."""
        return cls(MessageKind.DISCONNECT)

    def to_bytes(self) -> bytes:
        """Serialize into a single-batch IPC stream."""
        metadata = {MESSAGE_KEY: self.kind.value.encode()}
        if self.interface:
            metadata[INTERFACE_KEY] = self.interface.encode()
        if self.path:
            metadata[PATH_KEY] = self.path.encode()
        custom_metadata = pa.KeyValueMetadata(metadata)
        if self.kind is MessageKind.OBJECT and isinstance(self.payload, dict):
            data = encode_aggregate(self.payload, custom_metadata)
        elif self.kind is MessageKind.INDIVIDUAL and isinstance(self.payload, Value):
            data = encode_value(self.payload, custom_metadata)
        elif self.kind is MessageKind.INTROSPECTION and isinstance(self.payload, tuple):
            names = pa.array([list(self.payload)], type=pa.list_(pa.string()))
            data = _write_batch(pa.RecordBatch.from_arrays([names], names=[_INTERFACES_COLUMN]), custom_metadata)
        elif self.kind in (MessageKind.UNSET, MessageKind.DISCONNECT) and self.payload is None:
            data = _write_batch(_EMPTY_BATCH, custom_metadata)
        else:
            raise EncodingError(f"{self.kind.value} message cannot carry {type(self.payload).__name__}")
        if _IPC_DEBUG:
            _get_wire_log().debug("ipc_write", kind=self.kind.value, interface=self.interface, path=self.path)
        return data

    @classmethod
    def from_bytes(cls, data: bytes) -> Envelope:
        """Deserialize a message produced by :meth:`to_bytes`.

        Raises:
            EncodingError: If the stream is malformed or the metadata is missing.

        """
        batch, custom_metadata = _read_batch(data)
        metadata = dict(custom_metadata) if custom_metadata is not None else {}
        raw_kind = metadata.get(MESSAGE_KEY)
        if raw_kind is None:
            raise EncodingError("message has no kind metadata")
        try:
            kind = MessageKind(raw_kind.decode())
        except ValueError as e:
            raise EncodingError(f"unknown message kind {raw_kind!r}") from e
        interface = metadata.get(INTERFACE_KEY, b"").decode()
        path = metadata.get(PATH_KEY, b"").decode()
        if _IPC_DEBUG:
            _get_wire_log().debug("ipc_read", kind=kind.value, interface=interface, path=path, nbytes=len(data))

        payload: Aggregate | Value | tuple[str, ...] | None = None
        if kind is MessageKind.OBJECT:
            payload = _batch_values(batch, "object")
        elif kind is MessageKind.INDIVIDUAL:
            payload = _batch_value(batch)
        elif kind is MessageKind.INTROSPECTION:
            payload = tuple(_single_row(batch, "introspection")[_INTERFACES_COLUMN])
        return cls(kind, interface, path, payload)


def _get_wire_log() -> Any:
    """Return the structlog logger used for IPC debugging."""
    from hub_e2e.device import get_trace_log

    return get_trace_log().bind(component="ipc")
