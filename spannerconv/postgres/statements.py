"""Schema building and data extraction from parsed PostgreSQL statements."""

from __future__ import annotations

import dataclasses
import datetime
import enum
import json
import logging
import math
import unicodedata
import zoneinfo

from .. import ddl
from ..conv import Conv, PgColDef, PgTableDef, SchemaIssue
from ..errors import SpannerConvError
from ..names import get_spanner_col, get_spanner_cols, get_spanner_table
from .nodes import (
    AlterKind,
    AlterTable,
    ColumnDef,
    Constraint,
    ConstrType,
    CopyFrom,
    CreateTable,
    Insert,
    RangeVar,
    SetVariable,
    Statement,
    UnsupportedValue,
    statement_key,
)
from .typemap import print_type, to_spanner_type

logger = logging.getLogger(__name__)

BOGUS_COPY_FROM_TABLE = "BOGUS_COPY_FROM_TABLE"
BOGUS_COPY_FROM_COLUMN = "BOGUS_COPY_FROM_COLUMN"


class DirectiveKind(enum.Enum):
    COPY_FROM = "copy_from"
    INSERT = "insert"


@dataclasses.dataclass
class CopyOrInsert:
    """Data to be read (COPY) or converted (INSERT) for one table."""

    kind: DirectiveKind
    sp_table: str
    pg_table: str
    # Spanner column names.
    cols: list[str]
    # INSERT rows; empty for COPY, whose rows follow in the dump.
    rows: list[list[str | None]] = dataclasses.field(default_factory=list)


def process_statements(conv: Conv, statements: list[Statement]) -> list[CopyOrInsert]:
    """Update the schema from `statements` and return any data they carry.

    A COPY directive is always the last one returned: its data block follows
    the statement in the dump.
    """
    directives = []
    for i, stmt in enumerate(statements):
        if isinstance(stmt, AlterTable):
            if conv.schema_mode():
                process_alter_table(conv, stmt)
        elif isinstance(stmt, CopyFrom):
            if i != len(statements) - 1:
                conv.unexpected("CopyFrom is not the last statement in batch: ignoring following statements")
                conv.error_in_statement(statement_key(stmt))
            directives.append(process_copy_from(conv, stmt))
            break
        elif isinstance(stmt, CreateTable):
            if conv.schema_mode():
                process_create_table(conv, stmt)
        elif isinstance(stmt, Insert):
            d = process_insert(conv, stmt)
            if d is not None:
                directives.append(d)
        elif isinstance(stmt, SetVariable):
            if conv.schema_mode():
                process_set_variable(conv, stmt)
        else:
            conv.skip_statement(statement_key(stmt))
    return directives


def _log_stmt_error(conv: Conv, stmt: Statement, err: object) -> None:
    key = statement_key(stmt)
    conv.unexpected(f"Processing {key} statement: {err}")
    conv.error_in_statement(key)


def get_table_name(conv: Conv, relation: RangeVar) -> tuple[str, str]:
    """Return the PostgreSQL and Spanner names of `relation`."""
    pg_table = relation.table_name()
    return pg_table, get_spanner_table(conv, pg_table)


def process_create_table(conv: Conv, n: CreateTable) -> None:
    try:
        pg_table, sp_table = get_table_name(conv, n.relation)
    except SpannerConvError as err:
        _log_stmt_error(conv, n, f"can't get table name: {err}")
        return
    cols = []
    cds = {}
    pg_cols = {}
    constraints = []
    for col in n.columns:
        try:
            sp_col, cd, pg_col, col_constraints = _process_column_def(conv, col, pg_table)
        except SpannerConvError as err:
            _log_stmt_error(conv, n, err)
            return
        cols.append(sp_col)
        cds[sp_col] = cd
        pg_cols[sp_col] = pg_col
        constraints.extend(col_constraints)
    constraints.extend(n.constraints)
    conv.schema_statement(statement_key(n))
    conv.sp_schema[sp_table] = ddl.CreateTable(
        name=sp_table, cols=cols, cds=cds, comment=_table_comment(pg_table)
    )
    conv.pg_schema[pg_table] = PgTableDef(cols=pg_cols, col_names=[c.name for c in n.columns])
    update_schema(conv, sp_table, pg_table, constraints, "CREATE TABLE")


def _process_column_def(
    conv: Conv, n: ColumnDef, pg_table: str
) -> tuple[str, ddl.ColumnDef, PgColDef, list[Constraint]]:
    sp_col = get_spanner_col(conv, pg_table, n.name, must_exist=False)
    t = n.type_name
    ty, issues = to_spanner_type(conv, t.id, t.mods)
    # A single array bound maps to a Spanner array (the bound itself is
    # ignored). Spanner has no multi-dimensional arrays.
    if len(t.array_bounds) > 1:
        ty = ddl.string_type()
        issues.append(SchemaIssue.MULTI_DIMENSIONAL_ARRAY)
    elif len(t.array_bounds) == 1:
        ty = ty.as_array()
    pg_col = PgColDef(id=t.id, mods=list(t.mods), array=list(t.array_bounds), issues=issues)
    cd = ddl.ColumnDef(name=sp_col, type=ty, comment=_col_comment(n.name, print_type(pg_col)))

    constraints = []
    for c in n.constraints:
        if c.keys:
            conv.unexpected("ColumnDef constraint has keys")
        constraints.append(dataclasses.replace(c, keys=(n.name,)))
    return sp_col, cd, pg_col, constraints


def process_alter_table(conv: Conv, n: AlterTable) -> None:
    try:
        pg_table, sp_table = get_table_name(conv, n.relation)
    except SpannerConvError as err:
        _log_stmt_error(conv, n, f"can't get table name: {err}")
        return
    if sp_table not in conv.sp_schema:
        # ALTER TABLE also applies to views, sequences and indexes, which
        # are not tracked.
        conv.skip_statement(statement_key(n))
        logger.debug("Processing AlterTable statement: table %s not found", sp_table)
        return
    for cmd in n.cmds:
        if cmd.kind is AlterKind.SET_NOT_NULL and cmd.name:
            c = Constraint(ConstrType.NOT_NULL, keys=(cmd.name,))
            update_schema(conv, sp_table, pg_table, [c], "ALTER TABLE")
            conv.schema_statement(statement_key(n, cmd))
        elif cmd.kind is AlterKind.ADD_CONSTRAINT and cmd.constraint is not None:
            update_schema(conv, sp_table, pg_table, [cmd.constraint], "ALTER TABLE")
            conv.schema_statement(statement_key(n, cmd, cmd.constraint))
        else:
            conv.skip_statement(statement_key(n, cmd))


def update_schema(conv: Conv, sp_table: str, pg_table: str, constraints: list[Constraint], stmt: str) -> None:
    """Apply primary key, NOT NULL, DEFAULT and FOREIGN KEY constraints."""
    ct = conv.sp_schema[sp_table]
    for c in constraints:
        if c.kind is ConstrType.PRIMARY:
            if ct.pks:
                conv.unexpected(f"{stmt} statement is adding a second primary key")
            ct.pks = _index_keys(conv, pg_table, c.keys)
            # PostgreSQL primary keys are implicitly NOT NULL.
            _set_not_null(ct, [k.col for k in ct.pks])
        elif c.kind is ConstrType.NOT_NULL:
            _set_not_null(ct, [k.col for k in _index_keys(conv, pg_table, c.keys)])
        elif c.kind in (ConstrType.DEFAULT, ConstrType.FOREIGN):
            issue = SchemaIssue.DEFAULT_VALUE if c.kind is ConstrType.DEFAULT else SchemaIssue.FOREIGN_KEY
            for key in c.keys:
                try:
                    sp_col = get_spanner_col(conv, pg_table, key, must_exist=True)
                except SpannerConvError as err:
                    conv.unexpected(f"Can't get Spanner col: {err}")
                    continue
                pg_col = conv.pg_schema[pg_table].cols.get(sp_col)
                if pg_col is not None:
                    pg_col.issues.append(issue)


def _index_keys(conv: Conv, pg_table: str, keys: tuple[str, ...]) -> list[ddl.IndexKey]:
    # PostgreSQL primary keys have no ordering: all keys are ascending.
    out = []
    for key in keys:
        try:
            out.append(ddl.IndexKey(col=get_spanner_col(conv, pg_table, key, must_exist=True)))
        except SpannerConvError as err:
            conv.unexpected(f"Can't get Spanner col: {err}")
    return out


def _set_not_null(ct: ddl.CreateTable, cols: list[str]) -> None:
    for col in cols:
        cd = ct.cds.get(col)
        if cd is not None:
            cd.not_null = True


def _table_columns(conv: Conv, pg_table: str, cols: tuple[str, ...] | None) -> tuple[str, ...]:
    """Column list of a COPY or INSERT; the table's columns when none is given."""
    if cols:
        return cols
    pg = conv.pg_schema.get(pg_table)
    if pg is None:
        return ()
    return tuple(pg.col_names)


def process_copy_from(conv: Conv, n: CopyFrom) -> CopyOrInsert:
    # Always return a directive, even on errors: the data block that follows
    # must still be consumed.
    pg_table = sp_table = BOGUS_COPY_FROM_TABLE
    try:
        pg_table, sp_table = get_table_name(conv, n.relation)
    except SpannerConvError as err:
        conv.unexpected(f"Processing CopyFrom statement: {err}")
    cols = []
    for c in _table_columns(conv, pg_table, n.columns):
        try:
            cols.append(get_spanner_col(conv, pg_table, c, must_exist=True))
        except SpannerConvError as err:
            conv.unexpected(f"Processing CopyFrom statement columns: {err}")
            cols.append(BOGUS_COPY_FROM_COLUMN)
    conv.data_statement(statement_key(n))
    return CopyOrInsert(DirectiveKind.COPY_FROM, sp_table, pg_table, cols)


def process_insert(conv: Conv, n: Insert) -> CopyOrInsert | None:
    try:
        pg_table, sp_table = get_table_name(conv, n.relation)
    except SpannerConvError as err:
        _log_stmt_error(conv, n, f"can't get table name: {err}")
        return None
    for _ in n.rows:
        conv.stats_add_row(sp_table, conv.schema_mode())
    try:
        cols = get_spanner_cols(conv, pg_table, list(_table_columns(conv, pg_table, n.columns)), must_exist=True)
    except SpannerConvError as err:
        _log_stmt_error(conv, n, f"can't get col name: {err}")
        for _ in n.rows:
            conv.stats_add_bad_row(sp_table, conv.schema_mode())
        return None
    rows = []
    for row in n.rows:
        values = []
        for v in row:
            if isinstance(v, UnsupportedValue):
                conv.unexpected(f"Processing Insert statement: found unsupported value {v.text}")
                continue
            values.append(v)
        rows.append(values)
    conv.data_statement(statement_key(n))
    if conv.data_mode():
        return CopyOrInsert(DirectiveKind.INSERT, sp_table, pg_table, cols, rows)
    return None


def process_set_variable(conv: Conv, n: SetVariable) -> None:
    conv.schema_statement(statement_key(n))
    if n.name != "timezone":
        return
    if not n.args:
        # SET TIME ZONE DEFAULT / LOCAL
        conv.set_location(None)
        return
    if len(n.args) != 1:
        _log_stmt_error(conv, n, f"expected one timezone argument, found {len(n.args)}")
        return
    try:
        conv.set_location(load_location(n.args[0]))
    except (ValueError, OSError, zoneinfo.ZoneInfoNotFoundError) as err:
        _log_stmt_error(conv, n, f"can't load timezone {n.args[0]!r}: {err}")


def load_location(name: str) -> datetime.tzinfo:
    """Load an IANA timezone; a bare number is an offset in hours from UTC."""
    try:
        hours = float(name)
    except ValueError:
        return zoneinfo.ZoneInfo(name)
    # timezone() only takes offsets strictly between -24h and +24h.
    if not math.isfinite(hours) or abs(hours) >= 24:
        raise ValueError(f"UTC offset out of range: {name}")
    return datetime.timezone(datetime.timedelta(hours=hours))


def _needs_quote(name: str) -> bool:
    return any(not (c.isalnum() or unicodedata.category(c).startswith("P")) for c in name)


def _col_comment(name: str, type_text: str) -> str:
    if _needs_quote(name):
        name = json.dumps(name, ensure_ascii=False)
    return f"From PostgreSQL: {name} {type_text}"


def _table_comment(name: str) -> str:
    if _needs_quote(name):
        name = json.dumps(name, ensure_ascii=False)
    return f"Spanner schema for PostgreSQL table {name}"
