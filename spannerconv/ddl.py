"""Spanner DDL model and printer.

Only the subset of Spanner DDL needed to describe converted tables is
modelled: scalar and array column types, NOT NULL, and primary keys.
"""

from __future__ import annotations

import dataclasses
import enum


class ScalarKind(enum.Enum):
    BOOL = "BOOL"
    BYTES = "BYTES"
    DATE = "DATE"
    FLOAT64 = "FLOAT64"
    INT64 = "INT64"
    STRING = "STRING"
    TIMESTAMP = "TIMESTAMP"


# Length value meaning "MAX" for STRING and BYTES.
MAX_LENGTH: int | None = None


@dataclasses.dataclass(frozen=True)
class ColumnType:
    kind: ScalarKind
    length: int | None = MAX_LENGTH
    is_array: bool = False

    def print_scalar(self) -> str:
        if self.kind in (ScalarKind.STRING, ScalarKind.BYTES):
            length = "MAX" if self.length is None else str(self.length)
            return f"{self.kind.value}({length})"
        return self.kind.value

    def print(self) -> str:
        t = self.print_scalar()
        if self.is_array:
            return f"ARRAY<{t}>"
        return t

    def as_array(self) -> ColumnType:
        return dataclasses.replace(self, is_array=True)


def string_type(length: int | None = MAX_LENGTH) -> ColumnType:
    return ColumnType(ScalarKind.STRING, length)


def bytes_type(length: int | None = MAX_LENGTH) -> ColumnType:
    return ColumnType(ScalarKind.BYTES, length)


@dataclasses.dataclass(frozen=True)
class PrintConfig:
    comments: bool = False
    # Enclose table and column names in backticks (avoids reserved words).
    protect_ids: bool = False

    def quote(self, name: str) -> str:
        if self.protect_ids:
            return f"`{name}`"
        return name


@dataclasses.dataclass
class ColumnDef:
    name: str
    type: ColumnType
    not_null: bool = False
    comment: str = ""

    def print(self, config: PrintConfig) -> str:
        s = f"{config.quote(self.name)} {self.type.print()}"
        if self.not_null:
            s += " NOT NULL"
        return s


@dataclasses.dataclass(frozen=True)
class IndexKey:
    col: str
    desc: bool = False

    def print(self, config: PrintConfig) -> str:
        col = config.quote(self.col)
        if self.desc:
            return f"{col} DESC"
        return col


@dataclasses.dataclass
class CreateTable:
    name: str
    cols: list[str] = dataclasses.field(default_factory=list)
    cds: dict[str, ColumnDef] = dataclasses.field(default_factory=dict)
    pks: list[IndexKey] = dataclasses.field(default_factory=list)
    comment: str = ""

    def print(self, config: PrintConfig | None = None) -> str:
        if config is None:
            config = PrintConfig()
        lines = []
        comments = []
        for i, name in enumerate(self.cols):
            cd = self.cds[name]
            s = "\n    " + cd.print(config)
            s += "," if i < len(self.cols) - 1 else " "
            lines.append(s)
            comments.append(cd.comment)

        width = max((len(s) for s in lines), default=0)
        body = ""
        for s, comment in zip(lines, comments):
            body += s
            if config.comments and comment:
                body += " " * (width - len(s)) + " -- " + comment

        keys = ", ".join(k.print(config) for k in self.pks)
        header = ""
        if config.comments and self.comment:
            header = f"--\n-- {self.comment}\n--\n"
        return f"{header}CREATE TABLE {config.quote(self.name)} ({body}\n) PRIMARY KEY ({keys})"


def print_schema(tables: dict[str, CreateTable], config: PrintConfig | None = None) -> str:
    """Print every table, sorted by name, as a ';'-terminated DDL script."""
    return "".join(tables[name].print(config) + ";\n\n" for name in sorted(tables))
