"""Convert PostgreSQL text values into typed Spanner values.

Only the formats pg_dump produces are handled; PostgreSQL accepts many more
input formats than it ever outputs.
"""

from __future__ import annotations

import binascii
import datetime
import re
from typing import Any, Callable

from .. import ddl
from ..conv import Conv
from ..errors import ConversionError

_TRUE = frozenset(("1", "t", "T", "TRUE", "true", "True"))
_FALSE = frozenset(("0", "f", "F", "FALSE", "false", "False"))

_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1

_INT_RE = re.compile(r"[+-]?[0-9]+\Z")
_DATE_RE = re.compile(r"([0-9]{4})-([0-9]{2})-([0-9]{2})\Z")
# pg_dump writes ISO 8601 with a space instead of "T". The offset is
# abbreviated to the hour unless minutes (or seconds) are non-zero.
_TIMESTAMP_RE = re.compile(
    r"([0-9]{4})-([0-9]{2})-([0-9]{2}) ([0-9]{2}):([0-9]{2}):([0-9]{2})(?:\.([0-9]{1,9}))?"
    r"(Z|[+-][0-9]{2}(?::[0-9]{2}){0,2})?\Z"
)


def convert_data(
    conv: Conv, sp_table: str, pg_table: str, cols: list[str], vals: list[str | None]
) -> tuple[list[str], list[Any]]:
    """Convert one row; `cols` are Spanner column names.

    NULL values are dropped together with their column, so the returned
    column list can be shorter than `cols`. Tables with a synthetic primary
    key get the next key value appended.
    """
    ct = conv.sp_schema.get(sp_table)
    pg = conv.pg_schema.get(pg_table)
    if ct is None or pg is None:
        raise ConversionError(f"Can't find table {sp_table} in schema")
    if len(cols) != len(vals):
        raise ConversionError(
            f"Bad parameters: cols and vals have different lengths: len(cols)={len(cols)}, len(vals)={len(vals)}"
        )
    out_cols = []
    out_vals: list[Any] = []
    for col, val in zip(cols, vals):
        if val is None:
            continue
        cd = ct.cds.get(col)
        if cd is None:
            raise ConversionError(f"Can't find col {col} in schema")
        pg_col = pg.cols.get(col)
        if pg_col is None:
            raise ConversionError(f"Can't find col {col} in pg_schema")
        if cd.type.is_array:
            x = convert_array(cd.type.kind, pg_col.id, conv.location, val)
        else:
            x = convert_scalar(cd.type.kind, pg_col.id, conv.location, val)
        out_cols.append(col)
        out_vals.append(x)

    aux = conv.synthetic_pkeys.get(sp_table)
    if aux is not None:
        out_cols.append(aux.col)
        out_vals.append(bit_reverse64(aux.sequence))
        aux.sequence += 1
    return out_cols, out_vals


def bit_reverse64(n: int) -> int:
    """Reverse the bits of a 64-bit value, returned as a signed int64.

    Used for synthetic keys so consecutive rows spread across the key space.
    """
    r = int(format(n & 0xFFFFFFFFFFFFFFFF, "064b")[::-1], 2)
    if r > _INT64_MAX:
        r -= 1 << 64
    return r


def convert_scalar(kind: ddl.ScalarKind, pg_type: str, location: datetime.tzinfo | None, val: str) -> Any:
    # Whitespace is part of the value; pg_dump never pads values.
    if kind is ddl.ScalarKind.TIMESTAMP:
        return convert_timestamp(pg_type, location, val)
    conv = _SCALAR_CONVERTERS.get(kind)
    if conv is None:
        raise ConversionError(f"Data conversion not implemented for type {kind.value}")
    return conv(val)


def convert_bool(val: str) -> bool:
    if val in _TRUE:
        return True
    if val in _FALSE:
        return False
    raise ConversionError(f"Can't convert to bool: {val!r}")


def convert_bytes(val: str) -> bytes:
    if not val.startswith("\\x"):
        raise ConversionError("Can't convert bytea data to bytes: doesn't start with \\x prefix")
    try:
        return binascii.unhexlify(val[2:])
    except (binascii.Error, ValueError) as exc:
        raise ConversionError(f"Can't convert bytea data to bytes: {exc}") from exc


def convert_date(val: str) -> datetime.date:
    m = _DATE_RE.match(val)
    try:
        if m is None:
            raise ValueError(f"invalid date {val!r}")
        return datetime.date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    except ValueError as exc:
        raise ConversionError(f"Can't convert to date: {exc}") from exc


def convert_float64(val: str) -> float:
    # float() tolerates surrounding whitespace and digit separators.
    if val != val.strip() or "_" in val:
        raise ConversionError(f"Can't convert to float64: {val!r}")
    try:
        return float(val)
    except ValueError as exc:
        raise ConversionError(f"Can't convert to float64: {exc}") from exc


def convert_int64(val: str) -> int:
    # Longer strings are out of range anyway, and int() refuses very long ones.
    if len(val) > 20 or not _INT_RE.match(val):
        raise ConversionError(f"Can't convert to int64: {val[:40]!r}")
    try:
        i = int(val)
    except ValueError as exc:
        raise ConversionError(f"Can't convert to int64: {exc}") from exc
    if not _INT64_MIN <= i <= _INT64_MAX:
        raise ConversionError(f"Can't convert to int64: {val!r} out of range")
    return i


def convert_string(val: str) -> str:
    return val


def _parse_offset(text: str) -> datetime.timezone:
    if text == "Z":
        return datetime.timezone.utc
    sign = -1 if text[0] == "-" else 1
    parts = [int(p) for p in text[1:].split(":")]
    parts += [0] * (3 - len(parts))
    delta = datetime.timedelta(hours=parts[0], minutes=parts[1], seconds=parts[2])
    return datetime.timezone(sign * delta)


def convert_timestamp(pg_type: str, location: datetime.tzinfo | None, val: str) -> datetime.datetime:
    """Convert a pg_dump timestamp to an aware datetime.

    timestamptz values carry an offset; ones that don't (some dumps omit it)
    are interpreted in `location`, or local time when it is None. timestamp
    values have no zone, so they are stored as-is, i.e. as UTC.
    """
    m = _TIMESTAMP_RE.match(val)
    if m is None:
        raise ConversionError(f"Can't convert to timestamp (postgres type: {pg_type})")
    year, month, day, hour, minute, second = (int(g) for g in m.group(1, 2, 3, 4, 5, 6))
    frac = m.group(7) or ""
    # Python datetimes stop at microseconds.
    micro = int(frac[:6].ljust(6, "0")) if frac else 0
    offset = m.group(8)
    try:
        t = datetime.datetime(year, month, day, hour, minute, second, micro)
        if pg_type != "timestamptz":
            return t.replace(tzinfo=datetime.timezone.utc)
        if offset:
            return t.replace(tzinfo=_parse_offset(offset))
        if location is None:
            return t.astimezone()
        return t.replace(tzinfo=location)
    except ValueError as exc:
        raise ConversionError(f"Can't convert to timestamp (postgres type: {pg_type}): {exc}") from exc


_SCALAR_CONVERTERS: dict[ddl.ScalarKind, Callable[[str], Any]] = {
    ddl.ScalarKind.BOOL: convert_bool,
    ddl.ScalarKind.BYTES: convert_bytes,
    ddl.ScalarKind.DATE: convert_date,
    ddl.ScalarKind.FLOAT64: convert_float64,
    ddl.ScalarKind.INT64: convert_int64,
    ddl.ScalarKind.STRING: convert_string,
}


def split_array(v: str) -> list[str | None]:
    """Split a one-dimensional array literal such as `{1,"a b",NULL}`.

    Double-quoted elements are unquoted; an unquoted NULL is None.
    """
    v = v.strip()
    if len(v) < 2 or v[0] != "{" or v[-1] != "}":
        raise ConversionError("Unrecognized data format for array: expected {v1, v2, ...}")
    body = v[1:-1]
    if not body:
        return []
    elems: list[str | None] = []
    i = 0
    while True:
        if i < len(body) and body[i] == '"':
            buf = []
            i += 1
            while i < len(body) and body[i] != '"':
                if body[i] == "\\" and i + 1 < len(body):
                    i += 1
                buf.append(body[i])
                i += 1
            if i >= len(body):
                raise ConversionError("Unrecognized data format for array: unterminated quoted element")
            i += 1
            elems.append("".join(buf))
        else:
            j = body.find(",", i)
            if j == -1:
                j = len(body)
            elem = body[i:j]
            elems.append(None if elem == "NULL" else elem)
            i = j
        if i >= len(body):
            break
        if body[i] != ",":
            raise ConversionError("Unrecognized data format for array: expected ',' between elements")
        i += 1
    return elems


def convert_array(kind: ddl.ScalarKind, pg_type: str, location: datetime.tzinfo | None, v: str) -> list[Any]:
    return [None if e is None else convert_scalar(kind, pg_type, location, e) for e in split_array(v)]
