# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for the Arrow IPC message format."""

from __future__ import annotations

import pyarrow as pa
import pytest

from hub_e2e.errors import EncodingError
from hub_e2e.interfaces import Data
from hub_e2e.values import Value, ValueKind
from hub_e2e.wire import (
    MESSAGE_KEY,
    Envelope,
    MessageKind,
    _write_batch,
    decode_aggregate,
    decode_value,
    encode_aggregate,
    encode_value,
)


class TestValues:
    """Single values and aggregates."""

    def test_fixture_aggregate_survives(self, fixture_data: Data) -> None:
        """Every slot keeps its kind and data, in order."""
        aggregate = fixture_data.to_aggregate()
        decoded = decode_aggregate(encode_aggregate(aggregate))
        assert list(decoded) == list(aggregate)
        assert decoded == aggregate
        assert Data.from_aggregate(decoded) == fixture_data

    def test_integer_width_preserved(self) -> None:
        """A small long integer does not come back as a 32-bit integer."""
        assert decode_value(encode_value(Value.longinteger(1))).kind is ValueKind.LONGINTEGER
        assert decode_value(encode_value(Value.integer(1))).kind is ValueKind.INTEGER

    def test_blob_not_confused_with_string(self) -> None:
        """Blob and string with the same content stay distinct."""
        assert decode_value(encode_value(Value.binaryblob(b"hello"))) == Value.binaryblob(b"hello")
        assert decode_value(encode_value(Value.string("hello"))) == Value.string("hello")

    def test_empty_array(self) -> None:
        """Empty arrays keep their element kind."""
        empty = Value(ValueKind.DATETIMEARRAY, [])
        assert decode_value(encode_value(empty)) == empty

    def test_value_requires_value_column(self) -> None:
        """An aggregate is not a single value."""
        data = encode_aggregate({"a": Value.integer(1), "b": Value.integer(2)})
        with pytest.raises(EncodingError, match="single 'value' column"):
            decode_value(data)

    def test_malformed_stream(self) -> None:
        """Garbage bytes are an encoding error, not an Arrow exception."""
        with pytest.raises(EncodingError, match="malformed IPC message"):
            decode_value(b"definitely not arrow")

    def test_unsupported_column_type(self) -> None:
        """Columns of an unknown Arrow type are rejected."""
        batch = pa.RecordBatch.from_arrays([pa.array([1], type=pa.int8())], names=["value"])
        with pytest.raises(EncodingError, match="no value kind"):
            decode_value(_write_batch(batch))


class TestEnvelope:
    """Routed messages."""

    def test_object(self, fixture_data: Data) -> None:
        """Objects carry interface, path and the full aggregate."""
        env = Envelope.object("iface", "/sensor_1", fixture_data.to_aggregate())
        decoded = Envelope.from_bytes(env.to_bytes())
        assert decoded.kind is MessageKind.OBJECT
        assert (decoded.interface, decoded.path) == ("iface", "/sensor_1")
        assert decoded.payload == fixture_data.to_aggregate()

    def test_individual(self) -> None:
        """Individual messages carry one value."""
        env = Envelope.individual("iface", "/double_endpoint", Value.double(4.34))
        assert Envelope.from_bytes(env.to_bytes()) == env

    def test_payload_readable_without_routing(self, fixture_data: Data) -> None:
        """Envelope payloads use the plain value and aggregate encodings."""
        value = Value.longinteger(-(2**40))
        assert decode_value(Envelope.individual("iface", "/longinteger_endpoint", value).to_bytes()) == value
        aggregate = fixture_data.to_aggregate()
        assert decode_aggregate(Envelope.object("iface", "/sensor_1", aggregate).to_bytes()) == aggregate

    def test_unset_has_no_payload(self) -> None:
        """Unset messages carry routing only."""
        env = Envelope.unset("iface", "/integer_endpoint")
        decoded = Envelope.from_bytes(env.to_bytes())
        assert decoded == env
        assert decoded.payload is None

    def test_introspection(self) -> None:
        """Introspection carries the interface names, in order."""
        env = Envelope.introspection(["b", "a"])
        decoded = Envelope.from_bytes(env.to_bytes())
        assert decoded.payload == ("b", "a")
        assert decoded.interface == ""

    def test_disconnect(self) -> None:
        """Disconnect is a bare marker."""
        assert Envelope.from_bytes(Envelope.disconnect().to_bytes()).kind is MessageKind.DISCONNECT

    def test_payload_must_match_kind(self) -> None:
        """An unset carrying a value cannot be serialized."""
        env = Envelope(MessageKind.UNSET, "iface", "/p", Value.integer(0))
        with pytest.raises(EncodingError, match="unset message cannot carry Value"):
            env.to_bytes()

    def test_missing_kind_metadata(self) -> None:
        """A plain value stream is not a routed message."""
        with pytest.raises(EncodingError, match="no kind metadata"):
            Envelope.from_bytes(encode_value(Value.integer(1)))

    def test_unknown_kind(self) -> None:
        """Unknown message kinds are rejected."""
        batch = pa.RecordBatch.from_arrays([], schema=pa.schema([]))
        data = _write_batch(batch, pa.KeyValueMetadata({MESSAGE_KEY: b"telepathy"}))
        with pytest.raises(EncodingError, match="unknown message kind"):
            Envelope.from_bytes(data)
