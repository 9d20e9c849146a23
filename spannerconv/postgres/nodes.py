"""Parsed PostgreSQL statements.

`Statement` is a closed union: every statement the parser produces is one
of the classes listed there. Anything the converter has no use for becomes
`Unhandled`.
"""

from __future__ import annotations

import dataclasses
import enum
from typing import Union


@dataclasses.dataclass(frozen=True)
class RangeVar:
    name: str
    schema: str | None = None
    catalog: str | None = None

    def table_name(self) -> str:
        """Source table name: components joined with ".", schema "public" dropped."""
        parts = []
        if self.catalog:
            parts.append(self.catalog)
        if self.schema and self.schema != "public":
            parts.append(self.schema)
        parts.append(self.name)
        return ".".join(parts)


@dataclasses.dataclass(frozen=True)
class TypeName:
    # Canonical PostgreSQL type id, e.g. "int4", "varchar", "timestamptz".
    id: str
    mods: tuple[int, ...] = ()
    # -1 for an unspecified bound.
    array_bounds: tuple[int, ...] = ()


class ConstrType(enum.Enum):
    PRIMARY = "primary"
    NOT_NULL = "not_null"
    NULL = "null"
    DEFAULT = "default"
    FOREIGN = "foreign"
    UNIQUE = "unique"
    CHECK = "check"
    OTHER = "other"


@dataclasses.dataclass(frozen=True)
class Constraint:
    kind: ConstrType
    # Empty for column constraints; the column is implied.
    keys: tuple[str, ...] = ()
    name: str | None = None
    refer_table: RangeVar | None = None
    refer_keys: tuple[str, ...] = ()


@dataclasses.dataclass(frozen=True)
class ColumnDef:
    name: str
    type_name: TypeName
    constraints: tuple[Constraint, ...] = ()


class AlterKind(enum.Enum):
    SET_NOT_NULL = "set_not_null"
    ADD_CONSTRAINT = "add_constraint"
    OTHER = "other"


@dataclasses.dataclass(frozen=True)
class AlterTableCmd:
    kind: AlterKind
    # Column name for SET NOT NULL.
    name: str | None = None
    constraint: Constraint | None = None


@dataclasses.dataclass(frozen=True)
class UnsupportedValue:
    """A VALUES entry that is not a literal."""

    text: str


Value = Union[str, None, UnsupportedValue]


@dataclasses.dataclass(frozen=True)
class CreateTable:
    relation: RangeVar
    columns: tuple[ColumnDef, ...] = ()
    constraints: tuple[Constraint, ...] = ()


@dataclasses.dataclass(frozen=True)
class AlterTable:
    relation: RangeVar
    cmds: tuple[AlterTableCmd, ...] = ()


@dataclasses.dataclass(frozen=True)
class CopyFrom:
    relation: RangeVar
    columns: tuple[str, ...] = ()


@dataclasses.dataclass(frozen=True)
class Insert:
    relation: RangeVar
    # None when the statement has no column list.
    columns: tuple[str, ...] | None
    rows: tuple[tuple[Value, ...], ...] = ()


@dataclasses.dataclass(frozen=True)
class SetVariable:
    name: str
    # Constant arguments as text. Empty for SET ... TO DEFAULT.
    args: tuple[str, ...] = ()


@dataclasses.dataclass(frozen=True)
class Unhandled:
    kind: str
    text: str = ""


Statement = Union[CreateTable, AlterTable, CopyFrom, Insert, SetVariable, Unhandled]


def node_type(node: object) -> str:
    if isinstance(node, Unhandled):
        return node.kind
    return type(node).__name__


def statement_key(*chain: object) -> str:
    """Statistics key for a statement, e.g. "AlterTable.AlterTableCmd.Constraint"."""
    return ".".join(node_type(n) for n in chain)
