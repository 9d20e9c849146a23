"""Conversion state shared by schema and data conversion.

A dump is processed twice. The first pass (schema mode) builds the Spanner
schema and counts rows; the second pass (data mode) converts rows and hands
them to the data sink. Each statistic is collected in exactly one of the
two passes so that nothing is counted twice.
"""

from __future__ import annotations

import dataclasses
import datetime
import enum
import logging
from collections import defaultdict
from typing import Any, Callable

from . import ddl

logger = logging.getLogger(__name__)

DataSink = Callable[[str, list[str], list[Any]], None]

BAD_ROWS_BYTES_LIMIT = 10 * 1000 * 1000
MAX_UNEXPECTED_CONDITIONS = 1000
SYNTHETIC_KEY_BASE = "synth_id"


class Mode(enum.Enum):
    SCHEMA = "schema"
    DATA = "data"


class SchemaIssue(enum.Enum):
    """Schema conversion issues tracked per source column (or table)."""

    DEFAULT_VALUE = "default_value"
    FOREIGN_KEY = "foreign_key"
    MISSING_PRIMARY_KEY = "missing_primary_key"
    MULTI_DIMENSIONAL_ARRAY = "multi_dimensional_array"
    NO_GOOD_TYPE = "no_good_type"
    NUMERIC = "numeric"
    NUMERIC_THAT_FITS = "numeric_that_fits"
    SERIAL = "serial"
    TIMESTAMP = "timestamp"
    WIDENED = "widened"

    @property
    def description(self) -> str:
        return _ISSUE_DESCRIPTIONS[self][1]

    @property
    def severity(self) -> str:
        return _ISSUE_DESCRIPTIONS[self][0]


_ISSUE_DESCRIPTIONS = {
    SchemaIssue.DEFAULT_VALUE: ("warning", "Spanner does not support default values"),
    SchemaIssue.FOREIGN_KEY: ("warning", "Spanner does not support foreign keys"),
    SchemaIssue.MISSING_PRIMARY_KEY: ("warning", "table has no primary key, a synthetic key was added"),
    SchemaIssue.MULTI_DIMENSIONAL_ARRAY: ("warning", "Spanner does not support multi-dimensional arrays"),
    SchemaIssue.NO_GOOD_TYPE: ("warning", "no appropriate Spanner type"),
    SchemaIssue.NUMERIC: ("warning", "Spanner does not support numeric, values may lose precision"),
    SchemaIssue.NUMERIC_THAT_FITS: ("info", "numeric stored as FLOAT64 without loss of precision"),
    SchemaIssue.SERIAL: ("warning", "Spanner does not support autoincrementing types"),
    SchemaIssue.TIMESTAMP: ("warning", "Spanner timestamp is closer to PostgreSQL timestamptz"),
    SchemaIssue.WIDENED: ("info", "some columns will consume more storage in Spanner"),
}


@dataclasses.dataclass
class PgColDef:
    id: str
    mods: list[int] = dataclasses.field(default_factory=list)
    # Array bounds, -1 for an unspecified bound. Empty for scalars.
    array: list[int] = dataclasses.field(default_factory=list)
    issues: list[SchemaIssue] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class PgTableDef:
    cols: dict[str, PgColDef] = dataclasses.field(default_factory=dict)
    # Column names in CREATE TABLE order.
    col_names: list[str] = dataclasses.field(default_factory=list)
    issues: list[SchemaIssue] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class NameAndCols:
    name: str
    cols: dict[str, str] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass
class SyntheticPKey:
    col: str
    sequence: int = 0


@dataclasses.dataclass(frozen=True)
class Row:
    table: str
    cols: list[str]
    vals: list[str | None]

    def byte_size(self) -> int:
        n = len(self.table)
        n += sum(len(c) for c in self.cols)
        n += sum(len(v) for v in self.vals if v is not None)
        return n

    def format(self) -> str:
        vals = ["\\N" if v is None else v for v in self.vals]
        return f"table={self.table} cols=[{' '.join(self.cols)}] data=[{' '.join(vals)}]"


@dataclasses.dataclass
class RowSamples:
    rows: list[Row] = dataclasses.field(default_factory=list)
    bytes: int = 0
    bytes_limit: int = BAD_ROWS_BYTES_LIMIT

    def add(self, row: Row) -> bool:
        """Keep `row` if the byte budget allows it (the first row is always kept)."""
        size = row.byte_size()
        if self.rows and self.bytes + size >= self.bytes_limit:
            return False
        self.rows.append(row)
        self.bytes += size
        return True


@dataclasses.dataclass
class StatementStat:
    schema: int = 0
    data: int = 0
    skip: int = 0
    error: int = 0

    def total(self) -> int:
        return self.schema + self.data + self.skip + self.error


@dataclasses.dataclass
class Stats:
    # Rows seen (schema pass), rows converted and rows rejected (data pass),
    # all keyed by Spanner table.
    rows: dict[str, int] = dataclasses.field(default_factory=lambda: defaultdict(int))
    good_rows: dict[str, int] = dataclasses.field(default_factory=lambda: defaultdict(int))
    bad_rows: dict[str, int] = dataclasses.field(default_factory=lambda: defaultdict(int))
    statement: dict[str, StatementStat] = dataclasses.field(default_factory=dict)
    unexpected: dict[str, int] = dataclasses.field(default_factory=dict)
    reparsed: int = 0


class Conv:
    """All schema and data conversion state for one run."""

    def __init__(self, *, bad_rows_bytes_limit: int = BAD_ROWS_BYTES_LIMIT) -> None:
        self.mode = Mode.SCHEMA
        self.sp_schema: dict[str, ddl.CreateTable] = {}
        self.synthetic_pkeys: dict[str, SyntheticPKey] = {}
        self.pg_schema: dict[str, PgTableDef] = {}
        self.to_spanner: dict[str, NameAndCols] = {}
        self.to_postgres: dict[str, NameAndCols] = {}
        self.data_sink: DataSink | None = None
        # None means local time.
        self.location: datetime.tzinfo | None = None
        self.sample_bad_rows = RowSamples(bytes_limit=bad_rows_bytes_limit)
        self.stats = Stats()

    def set_data_sink(self, sink: DataSink | None) -> None:
        self.data_sink = sink

    def set_location(self, tz: datetime.tzinfo | None) -> None:
        self.location = tz

    def set_schema_mode(self) -> None:
        self.mode = Mode.SCHEMA

    def set_data_mode(self) -> None:
        self.mode = Mode.DATA

    def schema_mode(self) -> bool:
        return self.mode is Mode.SCHEMA

    def data_mode(self) -> bool:
        return self.mode is Mode.DATA

    def get_ddl(self, config: ddl.PrintConfig | None = None) -> list[str]:
        """Return CREATE TABLE statements in table-name order."""
        return [self.sp_schema[t].print(config) for t in sorted(self.sp_schema)]

    # Accessors

    def rows(self) -> int:
        return sum(self.stats.rows.values())

    def good_rows(self) -> int:
        return sum(self.stats.good_rows.values())

    def bad_rows(self) -> int:
        return sum(self.stats.bad_rows.values())

    def statements(self) -> int:
        return sum(s.total() for s in self.stats.statement.values())

    def statement_errors(self) -> int:
        return sum(s.error for s in self.stats.statement.values())

    def unexpecteds(self) -> int:
        """Number of distinct unexpected conditions."""
        return len(self.stats.unexpected)

    def sample_bad_row_strings(self, n: int) -> list[str]:
        return [r.format() for r in self.sample_bad_rows.rows[:n]]

    # Synthetic primary keys

    def add_primary_keys(self) -> None:
        """Add a synthetic INT64 primary key to every table that lacks one."""
        for name, ct in self.sp_schema.items():
            if ct.pks:
                continue
            key = self._build_primary_key(name)
            ct.cols.append(key)
            ct.cds[key] = ddl.ColumnDef(name=key, type=ddl.ColumnType(ddl.ScalarKind.INT64))
            ct.pks = [ddl.IndexKey(col=key)]
            self.synthetic_pkeys[name] = SyntheticPKey(col=key)
            pg = self.to_postgres.get(name)
            if pg is not None and pg.name in self.pg_schema:
                self.pg_schema[pg.name].issues.append(SchemaIssue.MISSING_PRIMARY_KEY)

    def _build_primary_key(self, sp_table: str) -> str:
        pg = self.to_postgres.get(sp_table)
        if pg is None:
            self.unexpected(f"to_postgres lookup fails for table {sp_table}")
            return SYNTHETIC_KEY_BASE
        key = SYNTHETIC_KEY_BASE
        count = 0
        while key in pg.cols:
            key = f"{SYNTHETIC_KEY_BASE}{count}"
            count += 1
        return key

    # Statistics

    def unexpected(self, condition: str) -> None:
        """Record a corner case that was not expected.

        Only the first MAX_UNEXPECTED_CONDITIONS distinct conditions are
        tracked; after that only existing entries are incremented.
        """
        logger.debug("Unexpected condition: %s", condition)
        counts = self.stats.unexpected
        if condition in counts or len(counts) < MAX_UNEXPECTED_CONDITIONS:
            counts[condition] = counts.get(condition, 0) + 1

    def stats_add_row(self, table: str, record: bool) -> None:
        if record:
            self.stats.rows[table] += 1

    def stats_add_good_row(self, table: str, record: bool) -> None:
        if record:
            self.stats.good_rows[table] += 1

    def stats_add_bad_row(self, table: str, record: bool) -> None:
        if record:
            self.stats.bad_rows[table] += 1

    def _statement_stat(self, key: str) -> StatementStat:
        stat = self.stats.statement.get(key)
        if stat is None:
            stat = self.stats.statement[key] = StatementStat()
        return stat

    # Statement stats are recorded on the schema pass only.

    def skip_statement(self, key: str) -> None:
        if self.schema_mode():
            logger.debug("Skipping statement: %s", key)
            self._statement_stat(key).skip += 1

    def error_in_statement(self, key: str) -> None:
        if self.schema_mode():
            logger.debug("Error processing statement: %s", key)
            self._statement_stat(key).error += 1

    def schema_statement(self, key: str) -> None:
        if self.schema_mode():
            self._statement_stat(key).schema += 1

    def data_statement(self, key: str) -> None:
        if self.schema_mode():
            self._statement_stat(key).data += 1
