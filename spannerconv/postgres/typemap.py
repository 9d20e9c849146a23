"""PostgreSQL to Spanner type mapping."""

from __future__ import annotations

from typing import Sequence

from .. import ddl
from ..conv import Conv, PgColDef, SchemaIssue

# float64 has a 53-bit mantissa, which faithfully represents ~15.96
# decimal digits.
MAX_FLOAT64_NUMERIC_PRECISION = 15

# type id -> (most modifiers expected, Spanner type, issues)
_SIMPLE_TYPES: dict[str, tuple[int, ddl.ColumnType, tuple[SchemaIssue, ...]]] = {
    "bool": (0, ddl.ColumnType(ddl.ScalarKind.BOOL), ()),
    "bigserial": (0, ddl.ColumnType(ddl.ScalarKind.INT64), (SchemaIssue.SERIAL,)),
    "serial": (0, ddl.ColumnType(ddl.ScalarKind.INT64), (SchemaIssue.SERIAL,)),
    "bytea": (0, ddl.bytes_type(), ()),
    "date": (0, ddl.ColumnType(ddl.ScalarKind.DATE), ()),
    "float8": (0, ddl.ColumnType(ddl.ScalarKind.FLOAT64), ()),
    "float4": (0, ddl.ColumnType(ddl.ScalarKind.FLOAT64), (SchemaIssue.WIDENED,)),
    "int8": (0, ddl.ColumnType(ddl.ScalarKind.INT64), ()),
    "int4": (0, ddl.ColumnType(ddl.ScalarKind.INT64), (SchemaIssue.WIDENED,)),
    "int2": (0, ddl.ColumnType(ddl.ScalarKind.INT64), (SchemaIssue.WIDENED,)),
    "text": (0, ddl.string_type(), ()),
    "timestamptz": (1, ddl.ColumnType(ddl.ScalarKind.TIMESTAMP), ()),
    "timestamp": (1, ddl.ColumnType(ddl.ScalarKind.TIMESTAMP), (SchemaIssue.TIMESTAMP,)),
}


def to_spanner_type(conv: Conv, type_id: str, mods: Sequence[int]) -> tuple[ddl.ColumnType, list[SchemaIssue]]:
    """Map a scalar PostgreSQL type to a Spanner type plus conversion issues.

    Never fails: unknown types map to STRING(MAX) with NO_GOOD_TYPE. More
    modifiers than a type takes are recorded as an unexpected condition.
    """

    def max_expected_mods(n: int) -> None:
        if len(mods) > n:
            conv.unexpected(f"Found {len(mods)} mods while processing type id={type_id}")

    simple = _SIMPLE_TYPES.get(type_id)
    if simple is not None:
        n, t, issues = simple
        max_expected_mods(n)
        return t, list(issues)

    if type_id == "bpchar":
        max_expected_mods(1)
        # bpchar without a length is bpchar(1).
        return ddl.string_type(mods[0] if mods else 1), []
    if type_id == "varchar":
        max_expected_mods(1)
        return ddl.string_type(mods[0] if mods else ddl.MAX_LENGTH), []
    if type_id == "numeric":
        max_expected_mods(2)
        if mods and mods[0] <= MAX_FLOAT64_NUMERIC_PRECISION:
            return ddl.ColumnType(ddl.ScalarKind.FLOAT64), [SchemaIssue.NUMERIC_THAT_FITS]
        return ddl.ColumnType(ddl.ScalarKind.FLOAT64), [SchemaIssue.NUMERIC]
    return ddl.string_type(), [SchemaIssue.NO_GOOD_TYPE]


def print_type(col: PgColDef) -> str:
    """Render a source column type, e.g. "varchar(20)" or "int4[][]"."""
    s = col.id
    if col.mods:
        s += "(" + ",".join(str(m) for m in col.mods) + ")"
    for bound in col.array:
        s += "[]" if bound == -1 else f"[{bound}]"
    return s
