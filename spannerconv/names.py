"""Map PostgreSQL identifiers to legal, unique Spanner identifiers.

Spanner names must start with a letter and contain only letters, digits and
underscores. PostgreSQL names can be almost anything, so names are fixed up
and, when a fixed-up name collides with one already in use, a `_<n>` suffix
is added. Results are memoized so a source name always maps to the same
Spanner name.
"""

from __future__ import annotations

import logging
import string

from .conv import Conv, NameAndCols
from .errors import InternalError, NameMappingError

logger = logging.getLogger(__name__)

_LETTERS = frozenset(string.ascii_letters)
_NAME_CHARS = frozenset(string.ascii_letters + string.digits + "_")

# Upper bound on collision candidates beyond the number of names already in use.
MAX_COLLISION_CANDIDATES = 1000


def fix_name(name: str) -> tuple[str, bool]:
    """Return a legal Spanner name for `name` and whether it was changed."""
    out = []
    for i, c in enumerate(name):
        if i == 0 and c not in _LETTERS:
            out.append("A")
        elif c not in _NAME_CHARS:
            out.append("_")
        else:
            out.append(c)
    fixed = "".join(out)
    return fixed, fixed != name


def _avoid_collision(name: str, used: dict[str, str], start: int) -> str:
    if name not in used:
        return name
    for n in range(start, start + MAX_COLLISION_CANDIDATES):
        candidate = f"{name}_{n}"
        if candidate not in used:
            return candidate
    raise InternalError(f"Could not find an unused name for {name!r}")


def get_spanner_table(conv: Conv, pg_table: str) -> str:
    if not pg_table:
        raise NameMappingError("Bad parameter: table string is empty")
    sp = conv.to_spanner.get(pg_table)
    if sp is not None:
        return sp.name

    name, _ = fix_name(pg_table)
    name = _avoid_collision(name, conv.to_postgres, len(conv.to_spanner))
    if name != pg_table:
        logger.debug("Mapping PostgreSQL table %r to Spanner table %s", pg_table, name)
    conv.to_spanner[pg_table] = NameAndCols(name=name)
    conv.to_postgres[name] = NameAndCols(name=pg_table)
    return name


def get_spanner_col(conv: Conv, pg_table: str, pg_col: str, *, must_exist: bool) -> str:
    """Map a column of a known table.

    With `must_exist`, an unmapped column is an error instead of being
    assigned a new name.
    """
    if not pg_table:
        raise NameMappingError("Bad parameter: table string is empty")
    if not pg_col:
        raise NameMappingError("Bad parameter: column string is empty")
    sp = conv.to_spanner.get(pg_table)
    if sp is None:
        raise NameMappingError(f"Unknown table {pg_table}")
    pg = conv.to_postgres.get(sp.name)
    if pg is None or pg.name != pg_table:
        found = pg.name if pg is not None else ""
        raise InternalError(
            f"Internal error: table mapping inconsistency for table {pg_table} ({found})"
        )
    col = sp.cols.get(pg_col)
    if col is not None:
        return col
    if must_exist:
        raise NameMappingError(f"Table {pg_table} does not have a column {pg_col}")

    col, _ = fix_name(pg_col)
    col = _avoid_collision(col, pg.cols, len(sp.cols))
    if col != pg_col:
        logger.debug(
            "Mapping PostgreSQL col %r (table %s) to Spanner col %s", pg_col, pg_table, col
        )
    sp.cols[pg_col] = col
    pg.cols[col] = pg_col
    return col


def get_spanner_cols(conv: Conv, pg_table: str, pg_cols: list[str], *, must_exist: bool) -> list[str]:
    return [get_spanner_col(conv, pg_table, c, must_exist=must_exist) for c in pg_cols]
