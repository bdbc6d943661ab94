# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Text codecs for values crossing text-based boundaries.

The inspection API speaks JSON, which cannot natively tell a 64-bit integer
from a 32-bit one, nor a blob from a string.  This module owns those
encodings:

- 64-bit integers are written as decimal text and read back from either
  decimal text or a JSON integer.
- Binary blobs are standard (padded) base64 text.
- Timestamps are RFC 3339 text, always timezone-aware.

``value_to_json`` / ``value_from_json`` apply these rules to a whole
:class:`~hub_e2e.values.Value`, element-wise for arrays.
"""

from __future__ import annotations

import base64
import binascii
import datetime as dt
import re
from typing import Any

from hub_e2e.errors import EncodingError, SchemaError
from hub_e2e.values import INT64_MAX, INT64_MIN, Value, ValueKind

__all__ = [
    "decode_blob",
    "decode_long_integer",
    "encode_blob",
    "encode_long_integer",
    "format_timestamp",
    "parse_timestamp",
    "value_from_json",
    "value_to_json",
]


# ---------------------------------------------------------------------------
# 64-bit integers
# ---------------------------------------------------------------------------


def encode_long_integer(value: int) -> str:
    """Encode a 64-bit integer as decimal text.

    Raises:
        EncodingError: If *value* is not an integer in the int64 range.

    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise EncodingError(f"cannot encode {type(value).__name__} as longinteger")
    if not INT64_MIN <= value <= INT64_MAX:
        raise EncodingError(f"longinteger {value} is out of range")
    return str(value)


def decode_long_integer(raw: str | int) -> int:
    """Decode a 64-bit integer from decimal text or a JSON integer.

    Raises:
        EncodingError: If *raw* is not an integer (booleans and floats are
            rejected) or falls outside the int64 range.

    """
    if isinstance(raw, bool):
        raise EncodingError(f"cannot decode longinteger from bool {raw!r}")
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, str):
        text = raw.strip()
        digits = text[1:] if text[:1] in ("-", "+") else text
        if not digits.isdigit() or not digits.isascii():
            raise EncodingError(f"cannot decode longinteger from {raw!r}")
        value = int(text)
    else:
        raise EncodingError(f"cannot decode longinteger from {type(raw).__name__} {raw!r}")
    if not INT64_MIN <= value <= INT64_MAX:
        raise EncodingError(f"longinteger {value} is out of range")
    return value


# ---------------------------------------------------------------------------
# Binary blobs
# ---------------------------------------------------------------------------


def encode_blob(data: bytes) -> str:
    """Encode bytes as padded standard base64 text."""
    if not isinstance(data, (bytes, bytearray)):
        raise EncodingError(f"cannot encode {type(data).__name__} as binaryblob")
    return base64.b64encode(bytes(data)).decode("ascii")


def decode_blob(raw: str) -> bytes:
    """Decode padded standard base64 text.

    Raises:
        EncodingError: If *raw* is not a string or not valid base64.

    """
    if not isinstance(raw, str):
        raise EncodingError(f"cannot decode binaryblob from {type(raw).__name__} {raw!r}")
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as e:
        raise EncodingError(f"invalid base64 binaryblob {raw!r}: {e}") from e


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------

# RFC 3339 date-time; a missing offset is reported separately.
_RFC3339 = re.compile(
    r"\d{4}-\d{2}-\d{2}[Tt ]\d{2}:\d{2}:\d{2}(?:\.\d+)?(?P<offset>[Zz]|[+-]\d{2}:\d{2})?",
    re.ASCII,
)


def format_timestamp(value: dt.datetime) -> str:
    """Format an aware datetime as RFC 3339 in UTC.

    Millisecond precision is used unless the value carries sub-millisecond
    digits, e.g. ``2021-09-29T17:46:48.000Z``.

    Raises:
        EncodingError: If *value* is naive.

    """
    if not isinstance(value, dt.datetime) or value.utcoffset() is None:
        raise EncodingError(f"cannot format {value!r} as an RFC 3339 timestamp")
    utc = value.astimezone(dt.UTC)
    timespec = "milliseconds" if utc.microsecond % 1000 == 0 else "microseconds"
    return utc.replace(tzinfo=None).isoformat(timespec=timespec) + "Z"


def parse_timestamp(raw: str) -> dt.datetime:
    """Parse an RFC 3339 timestamp (``Z`` or numeric offset).

    Raises:
        EncodingError: If *raw* is not a timestamp or carries no offset.

    """
    if not isinstance(raw, str):
        raise EncodingError(f"cannot parse timestamp from {type(raw).__name__} {raw!r}")
    text = raw.strip()
    match = _RFC3339.fullmatch(text)
    if match is None:
        raise EncodingError(f"invalid RFC 3339 timestamp {raw!r}")
    if match["offset"] is None:
        raise EncodingError(f"timestamp {raw!r} has no timezone offset")
    if match["offset"] in ("z", "Z"):
        text = text[:-1] + "+00:00"
    try:
        return dt.datetime.fromisoformat(text)
    except ValueError as e:
        raise EncodingError(f"invalid RFC 3339 timestamp {raw!r}") from e


# ---------------------------------------------------------------------------
# JSON values
# ---------------------------------------------------------------------------


def _scalar_to_json(kind: ValueKind, data: Any) -> Any:
    if kind is ValueKind.LONGINTEGER:
        return encode_long_integer(data)
    if kind is ValueKind.BINARYBLOB:
        return encode_blob(data)
    if kind is ValueKind.DATETIME:
        return format_timestamp(data)
    return data


def _scalar_from_json(kind: ValueKind, raw: Any) -> Any:
    if kind is ValueKind.LONGINTEGER:
        return decode_long_integer(raw)
    if kind is ValueKind.BINARYBLOB:
        return decode_blob(raw)
    if kind is ValueKind.DATETIME:
        return parse_timestamp(raw)
    # JSON has a single number type: whole doubles may arrive as integers
    if kind is ValueKind.DOUBLE and isinstance(raw, int) and not isinstance(raw, bool):
        return float(raw)
    return raw


def value_to_json(value: Value) -> Any:
    """Encode a value into its JSON-compatible form."""
    if value.kind.is_array:
        return [_scalar_to_json(value.kind.element, item) for item in value.data]
    return _scalar_to_json(value.kind, value.data)


def value_from_json(kind: ValueKind, raw: Any) -> Value:
    """Decode a JSON-compatible value of the given kind.

    Raises:
        SchemaError: If *raw* does not have the JSON shape *kind* requires.

    """
    try:
        if kind.is_array:
            if not isinstance(raw, list):
                raise SchemaError(f"expected a JSON array for {kind.value}, got {type(raw).__name__}")
            return Value(kind, [_scalar_from_json(kind.element, item) for item in raw])
        return Value(kind, _scalar_from_json(kind, raw))
    except EncodingError as e:
        raise SchemaError(f"invalid {kind.value}: {e.message}") from e
