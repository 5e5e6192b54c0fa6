"""
Column types and value coercion.

Every column in the schema has one of a closed set of scalar types. This
module maps each type to its physical PostgreSQL type and converts untyped
input (decoded JSON values, HTTP header strings) into a `SqlValue`: a
tagged value the repository binds as the right physical type.

Rules worth knowing:
- A value of the wrong JSON shape is "absent", not an error. Absent values
  become typed NULLs for optional columns and `MissingValue` for required
  ones.
- `i32`/`i64` values outside their signed range are also absent.
- Timestamp errors (`TimestampFormat`, `TimestampTooLarge`) are raised even
  for optional columns.

Example:
    >>> coerce(ColumnType.I64, "count", 3, required=True)
    SqlValue(type=<ColumnType.I64: 'i64'>, value=3)
"""

import math
import re
import struct
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from psycopg.types.numeric import Float4, Float8, Int4, Int8

from errors import MissingValue, TimestampFormat, TimestampTooLarge

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_INT_RANGES = {
    "i32": (-(2**31), 2**31 - 1),
    "i64": (-(2**63), 2**63 - 1),
}

_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})[Tt ](\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?"
    r"(?:([Zz])|([+-])(\d{2}):(\d{2}))",
    re.ASCII,
)


class ColumnType(Enum):
    """Scalar column types, valued by their configuration spelling."""

    BOOL = "bool"
    I32 = "i32"
    I64 = "i64"
    F32 = "f32"
    F64 = "f64"
    STRING = "string"
    TIMESTAMP = "timestamp"

    @property
    def sql_type(self) -> str:
        return _SQL_TYPES[self]


_SQL_TYPES = {
    ColumnType.BOOL: "BOOL",
    ColumnType.I32: "INT4",
    ColumnType.I64: "INT8",
    ColumnType.F32: "FLOAT4",
    ColumnType.F64: "FLOAT8",
    ColumnType.STRING: "VARCHAR",
    ColumnType.TIMESTAMP: "TIMESTAMPTZ",
}


@dataclass(frozen=True)
class SqlValue:
    """A coerced value tagged with its column type.

    `value` is None for a typed NULL. Call `adapt()` to get the object to
    pass to psycopg as a query parameter.
    """

    type: ColumnType
    value: Any = None

    def adapt(self) -> Any:
        if self.value is None:
            return None
        return _ADAPTERS[self.type](self.value)


# Wrappers pin the bound PostgreSQL type.
_ADAPTERS = {
    ColumnType.BOOL: bool,
    ColumnType.I32: Int4,
    ColumnType.I64: Int8,
    ColumnType.F32: Float4,
    ColumnType.F64: Float8,
    ColumnType.STRING: str,
    ColumnType.TIMESTAMP: lambda v: v,
}


def _is_int(raw: Any) -> bool:
    return isinstance(raw, int) and not isinstance(raw, bool)


def _is_number(raw: Any) -> bool:
    return isinstance(raw, (int, float)) and not isinstance(raw, bool)


def _to_float(raw: Any) -> Optional[float]:
    try:
        return float(raw)
    except OverflowError:
        return None


def _narrow_f32(value: float) -> float:
    try:
        return struct.unpack("f", struct.pack("f", value))[0]
    except OverflowError:
        return math.copysign(math.inf, value)


def epoch_to_datetime(seconds: float) -> datetime:
    """Convert Unix epoch seconds to an aware UTC datetime.

    Whole seconds are `floor(seconds)`. The fractional part is scaled to
    nanoseconds and truncated; a negative fraction counts as zero. The
    result is truncated again to microseconds, the resolution of
    `datetime`.

    Raises:
        TimestampTooLarge: if the instant cannot be represented.
    """
    try:
        whole = math.floor(seconds)
        fraction = seconds - math.trunc(seconds)
        nanos = int(1e9 * fraction) if fraction > 0 else 0
        return EPOCH + timedelta(seconds=whole, microseconds=nanos // 1000)
    except (OverflowError, ValueError) as exc:
        raise TimestampTooLarge() from exc


def parse_rfc3339(text: str) -> datetime:
    """Parse an RFC 3339 date-time string strictly.

    Raises:
        TimestampFormat: if the string is not RFC 3339 or names an
            impossible date or time.
    """
    match = _RFC3339.fullmatch(text)
    if match is None:
        raise TimestampFormat("input is not an RFC 3339 date-time")

    year, month, day, hour, minute, second = (int(g) for g in match.groups()[:6])
    fraction, zulu, sign, off_hours, off_minutes = match.groups()[6:]
    microsecond = int((fraction or "").ljust(6, "0")[:6])
    if not zulu and (int(off_hours) > 23 or int(off_minutes) > 59):
        raise TimestampFormat("input is out of range")

    try:
        if zulu:
            tz = timezone.utc
        else:
            offset = timedelta(hours=int(off_hours), minutes=int(off_minutes))
            tz = timezone(-offset if sign == "-" else offset)
        return datetime(year, month, day, hour, minute, second, microsecond, tzinfo=tz)
    except ValueError as exc:
        raise TimestampFormat(str(exc)) from exc


def _to_timestamp(raw: Any) -> Optional[datetime]:
    if _is_number(raw):
        return epoch_to_datetime(raw)
    if isinstance(raw, str):
        return parse_rfc3339(raw)
    return None


def _convert(column_type: ColumnType, raw: Any) -> Any:
    """Return the typed Python value for `raw`, or None if absent."""
    if column_type is ColumnType.BOOL:
        return raw if isinstance(raw, bool) else None

    if column_type in (ColumnType.I32, ColumnType.I64):
        if not _is_int(raw):
            return None
        low, high = _INT_RANGES[column_type.value]
        return raw if low <= raw <= high else None

    if column_type in (ColumnType.F32, ColumnType.F64):
        if not _is_number(raw):
            return None
        value = _to_float(raw)
        if value is not None and column_type is ColumnType.F32:
            value = _narrow_f32(value)
        return value

    if column_type is ColumnType.STRING:
        return raw if isinstance(raw, str) else None

    return _to_timestamp(raw)


def coerce(column_type: ColumnType, column: str, raw: Any, required: bool) -> SqlValue:
    """Coerce a decoded JSON value into a `SqlValue`.

    `raw` is None when the key was missing from the event.

    Raises:
        MissingValue: if the value is absent and the column is required.
        TimestampFormat, TimestampTooLarge: for unparseable timestamps.
    """
    value = _convert(column_type, raw)
    if value is None and required:
        raise MissingValue(column)
    return SqlValue(column_type, value)


def _parse_header(column_type: ColumnType, text: str) -> Any:
    if column_type is ColumnType.BOOL:
        return {"true": True, "false": False}.get(text.strip().lower())
    if column_type in (ColumnType.I32, ColumnType.I64):
        try:
            return int(text.strip())
        except ValueError:
            return None
    if column_type in (ColumnType.F32, ColumnType.F64):
        try:
            return float(text.strip())
        except ValueError:
            return None
    return text


def coerce_header(column_type: ColumnType, column: str, text: Optional[str], required: bool) -> SqlValue:
    """Coerce an HTTP header string into a `SqlValue`.

    String and timestamp columns take the text as a JSON string would be
    taken. Boolean and numeric columns parse the text first; text that does
    not parse is absent.
    """
    raw = None if text is None else _parse_header(column_type, text)
    return coerce(column_type, column, raw, required)
