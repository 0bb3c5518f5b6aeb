"""Conversion between BigQuery's JSON wire values and Python values."""

from __future__ import annotations

import base64
import binascii
import json
import math
import re
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Dict

from .errors import UnsupportedTypeError, ValueDecodeError, ValueEncodeError

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1
# JSON の数値として精度を失わずに表せる整数の上限
MAX_SAFE_INTEGER = 2**53 - 1

_INTEGER_PATTERN = re.compile(r"^[+-]?\d+$")
_FLOAT_SPECIALS = {"NaN": math.nan, "Infinity": math.inf, "-Infinity": -math.inf}


class BigQueryType(str, Enum):
    BOOL = "BOOL"
    BYTES = "BYTES"
    INT64 = "INT64"
    FLOAT64 = "FLOAT64"
    NUMERIC = "NUMERIC"
    BIGNUMERIC = "BIGNUMERIC"
    STRING = "STRING"
    DATE = "DATE"
    DATETIME = "DATETIME"
    TIME = "TIME"
    TIMESTAMP = "TIMESTAMP"
    JSON = "JSON"
    # remote function では使えない型
    ARRAY = "ARRAY"
    STRUCT = "STRUCT"
    INTERVAL = "INTERVAL"
    GEOGRAPHY = "GEOGRAPHY"


UNSUPPORTED_TYPES = frozenset(
    {
        BigQueryType.ARRAY,
        BigQueryType.STRUCT,
        BigQueryType.INTERVAL,
        BigQueryType.GEOGRAPHY,
    }
)


def ensure_supported(type_: BigQueryType | str) -> BigQueryType:
    if isinstance(type_, BigQueryType):
        resolved = type_
    else:
        try:
            resolved = BigQueryType(str(type_).strip().upper())
        except ValueError as exc:
            raise UnsupportedTypeError(f"unknown BigQuery type: {type_}") from exc
    if resolved in UNSUPPORTED_TYPES:
        raise UnsupportedTypeError(
            f"{resolved.value} is not supported by remote functions"
        )
    return resolved


# --- decode ---


def _decode_bool(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    raise ValueDecodeError(f"expected BOOL, got {raw!r}")


def _decode_int64(raw: Any) -> int:
    if isinstance(raw, bool):
        raise ValueDecodeError(f"expected INT64, got {raw!r}")
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, float) and raw.is_integer():
        value = int(raw)
    elif isinstance(raw, str) and _INTEGER_PATTERN.match(raw.strip()):
        value = int(raw.strip())
    else:
        raise ValueDecodeError(f"expected INT64, got {raw!r}")
    if not INT64_MIN <= value <= INT64_MAX:
        raise ValueDecodeError(f"INT64 out of range: {raw!r}")
    return value


def _decode_float64(raw: Any) -> float:
    if isinstance(raw, bool):
        raise ValueDecodeError(f"expected FLOAT64, got {raw!r}")
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, str):
        if raw in _FLOAT_SPECIALS:
            return _FLOAT_SPECIALS[raw]
        try:
            return float(raw)
        except ValueError as exc:
            raise ValueDecodeError(f"expected FLOAT64, got {raw!r}") from exc
    raise ValueDecodeError(f"expected FLOAT64, got {raw!r}")


def _decode_numeric(raw: Any) -> Decimal:
    if isinstance(raw, bool) or not isinstance(raw, (int, float, str)):
        raise ValueDecodeError(f"expected NUMERIC, got {raw!r}")
    try:
        value = Decimal(str(raw))
    except InvalidOperation as exc:
        raise ValueDecodeError(f"expected NUMERIC, got {raw!r}") from exc
    if not value.is_finite():
        raise ValueDecodeError(f"NUMERIC must be finite, got {raw!r}")
    return value


def _decode_string(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    raise ValueDecodeError(f"expected STRING, got {raw!r}")


def _decode_bytes(raw: Any) -> bytes:
    if not isinstance(raw, str):
        raise ValueDecodeError(f"expected base64 BYTES, got {raw!r}")
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueDecodeError(f"invalid base64 BYTES: {raw!r}") from exc


def _parse_iso(kind: str, raw: Any, parser: Callable[[str], Any]) -> Any:
    if not isinstance(raw, str):
        raise ValueDecodeError(f"expected {kind} string, got {raw!r}")
    try:
        return parser(raw.strip())
    except ValueError as exc:
        raise ValueDecodeError(f"invalid {kind}: {raw!r}") from exc


def _decode_date(raw: Any) -> date:
    return _parse_iso("DATE", raw, date.fromisoformat)


def _decode_datetime(raw: Any) -> datetime:
    value = _parse_iso("DATETIME", raw, datetime.fromisoformat)
    if value.tzinfo is not None:
        raise ValueDecodeError(f"DATETIME must not carry a time zone: {raw!r}")
    return value


def _decode_time(raw: Any) -> time:
    return _parse_iso("TIME", raw, time.fromisoformat)


def _parse_timestamp(text: str) -> datetime:
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _decode_timestamp(raw: Any) -> datetime:
    return _parse_iso("TIMESTAMP", raw, _parse_timestamp)


def _decode_json(raw: Any) -> Any:
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueDecodeError(f"invalid JSON value: {raw!r}") from exc
    return raw


_DECODERS: Dict[BigQueryType, Callable[[Any], Any]] = {
    BigQueryType.BOOL: _decode_bool,
    BigQueryType.BYTES: _decode_bytes,
    BigQueryType.INT64: _decode_int64,
    BigQueryType.FLOAT64: _decode_float64,
    BigQueryType.NUMERIC: _decode_numeric,
    BigQueryType.BIGNUMERIC: _decode_numeric,
    BigQueryType.STRING: _decode_string,
    BigQueryType.DATE: _decode_date,
    BigQueryType.DATETIME: _decode_datetime,
    BigQueryType.TIME: _decode_time,
    BigQueryType.TIMESTAMP: _decode_timestamp,
    BigQueryType.JSON: _decode_json,
}


def decode_value(type_: BigQueryType | str, raw: Any) -> Any:
    resolved = ensure_supported(type_)
    if raw is None:
        return None
    return _DECODERS[resolved](raw)


# --- encode ---


def _encode_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raise ValueEncodeError(f"BOOL result expected, got {value!r}")


def _encode_int64(value: Any) -> int | str:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueEncodeError(f"INT64 result expected, got {value!r}")
    if not INT64_MIN <= value <= INT64_MAX:
        raise ValueEncodeError(f"INT64 result out of range: {value}")
    if abs(value) > MAX_SAFE_INTEGER:
        return str(value)
    return value


def _encode_float64(value: Any) -> float | str:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueEncodeError(f"FLOAT64 result expected, got {value!r}")
    value = float(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    return value


def _encode_numeric(value: Any) -> str:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise ValueEncodeError(f"NUMERIC result expected, got {value!r}")
    decimal_value = value if isinstance(value, Decimal) else Decimal(str(value))
    if not decimal_value.is_finite():
        raise ValueEncodeError(f"NUMERIC result must be finite, got {value!r}")
    return str(decimal_value)


def _encode_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    raise ValueEncodeError(f"STRING result expected, got {value!r}")


def _encode_bytes(value: Any) -> str:
    if not isinstance(value, (bytes, bytearray)):
        raise ValueEncodeError(f"BYTES result expected, got {value!r}")
    return base64.b64encode(bytes(value)).decode("ascii")


def _encode_date(value: Any) -> str:
    if isinstance(value, datetime) or not isinstance(value, date):
        raise ValueEncodeError(f"DATE result expected, got {value!r}")
    return value.isoformat()


def _encode_datetime(value: Any) -> str:
    if not isinstance(value, datetime):
        raise ValueEncodeError(f"DATETIME result expected, got {value!r}")
    if value.tzinfo is not None:
        raise ValueEncodeError("DATETIME result must be naive")
    return value.isoformat()


def _encode_time(value: Any) -> str:
    if not isinstance(value, time):
        raise ValueEncodeError(f"TIME result expected, got {value!r}")
    return value.isoformat()


def _encode_timestamp(value: Any) -> str:
    if not isinstance(value, datetime):
        raise ValueEncodeError(f"TIMESTAMP result expected, got {value!r}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _encode_json(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError) as exc:
        raise ValueEncodeError(f"JSON result is not serializable: {exc}") from exc
    return value


_ENCODERS: Dict[BigQueryType, Callable[[Any], Any]] = {
    BigQueryType.BOOL: _encode_bool,
    BigQueryType.BYTES: _encode_bytes,
    BigQueryType.INT64: _encode_int64,
    BigQueryType.FLOAT64: _encode_float64,
    BigQueryType.NUMERIC: _encode_numeric,
    BigQueryType.BIGNUMERIC: _encode_numeric,
    BigQueryType.STRING: _encode_string,
    BigQueryType.DATE: _encode_date,
    BigQueryType.DATETIME: _encode_datetime,
    BigQueryType.TIME: _encode_time,
    BigQueryType.TIMESTAMP: _encode_timestamp,
    BigQueryType.JSON: _encode_json,
}


def encode_value(type_: BigQueryType | str, value: Any) -> Any:
    resolved = ensure_supported(type_)
    if value is None:
        return None
    return _ENCODERS[resolved](value)
