import pytest

from spannerconv import ddl
from spannerconv.conv import Conv, PgColDef, SchemaIssue
from spannerconv.postgres.typemap import print_type, to_spanner_type

K = ddl.ScalarKind


@pytest.mark.parametrize(
    "type_id,mods,expected,issues",
    [
        ("bool", (), ddl.ColumnType(K.BOOL), []),
        ("bigserial", (), ddl.ColumnType(K.INT64), [SchemaIssue.SERIAL]),
        ("serial", (), ddl.ColumnType(K.INT64), [SchemaIssue.SERIAL]),
        ("bpchar", (), ddl.string_type(1), []),
        ("bpchar", (42,), ddl.string_type(42), []),
        ("bytea", (), ddl.bytes_type(), []),
        ("date", (), ddl.ColumnType(K.DATE), []),
        ("float8", (), ddl.ColumnType(K.FLOAT64), []),
        ("float4", (), ddl.ColumnType(K.FLOAT64), [SchemaIssue.WIDENED]),
        ("int8", (), ddl.ColumnType(K.INT64), []),
        ("int4", (), ddl.ColumnType(K.INT64), [SchemaIssue.WIDENED]),
        ("int2", (), ddl.ColumnType(K.INT64), [SchemaIssue.WIDENED]),
        ("numeric", (), ddl.ColumnType(K.FLOAT64), [SchemaIssue.NUMERIC]),
        ("text", (), ddl.string_type(), []),
        ("timestamptz", (), ddl.ColumnType(K.TIMESTAMP), []),
        ("timestamp", (), ddl.ColumnType(K.TIMESTAMP), [SchemaIssue.TIMESTAMP]),
        ("varchar", (), ddl.string_type(), []),
        ("varchar", (40,), ddl.string_type(40), []),
        ("json", (), ddl.string_type(), [SchemaIssue.NO_GOOD_TYPE]),
        ("point", (), ddl.string_type(), [SchemaIssue.NO_GOOD_TYPE]),
    ],
)
def test_to_spanner_type(type_id, mods, expected, issues):
    conv = Conv()
    t, got = to_spanner_type(conv, type_id, mods)
    assert t == expected
    assert got == issues
    assert conv.unexpecteds() == 0


def test_numeric_precision_boundary():
    conv = Conv()
    assert to_spanner_type(conv, "numeric", (15, 2))[1] == [SchemaIssue.NUMERIC_THAT_FITS]
    assert to_spanner_type(conv, "numeric", (16, 2))[1] == [SchemaIssue.NUMERIC]


def test_unexpected_mods_are_recorded_not_fatal():
    conv = Conv()
    t, issues = to_spanner_type(conv, "int8", (10,))
    assert t == ddl.ColumnType(K.INT64)
    assert issues == []
    assert conv.stats.unexpected == {"Found 1 mods while processing type id=int8": 1}


def test_issue_lists_are_not_shared():
    conv = Conv()
    _, issues = to_spanner_type(conv, "int4", ())
    issues.append(SchemaIssue.DEFAULT_VALUE)
    assert to_spanner_type(conv, "int4", ())[1] == [SchemaIssue.WIDENED]


def test_print_type():
    assert print_type(PgColDef(id="varchar", mods=[20])) == "varchar(20)"
    assert print_type(PgColDef(id="numeric", mods=[10, 2])) == "numeric(10,2)"
    assert print_type(PgColDef(id="int4", array=[-1])) == "int4[]"
    assert print_type(PgColDef(id="int4", array=[3, -1])) == "int4[3][]"
