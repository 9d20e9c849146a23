"""Drive conversion of a pg_dump file.

The dump is read a chunk at a time: lines are accumulated until they parse
as a complete list of statements. COPY data blocks are read line by line
after their COPY statement.
"""

from __future__ import annotations

import logging
from typing import Any

from ..conv import Conv, Row
from ..errors import ConversionError, SQLParseError
from ..reader import Reader
from .data import convert_data
from .nodes import Statement
from .sqlparser import parse
from .statements import CopyOrInsert, DirectiveKind, process_statements

logger = logging.getLogger(__name__)

_COPY_ESCAPES = {
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "v": "\v",
}
_OCTAL = "01234567"
_HEX = "0123456789abcdefABCDEF"


def read_and_parse_chunk(conv: Conv, r: Reader) -> tuple[str, list[Statement]]:
    """Read lines until they parse as statements; return the text and statements.

    A statement can span many lines, and a line containing ";" can still be
    mid-statement (e.g. inside a string literal), so a failed parse reads
    another line and tries again. Unparsable input at end of file is
    reported and dropped.
    """
    lines: list[str] = []
    while True:
        line = r.read_line()
        if line:
            lines.append(line)
        if not r.eof and ";" not in line:
            continue
        text = "".join(lines)
        try:
            return text, parse(text, final=r.eof)
        except SQLParseError as err:
            if r.eof:
                logger.error("Error parsing last %d line(s) of input: %s", len(lines), err)
                conv.unexpected(f"Error parsing last {len(lines)} line(s) of input")
                return text, []
            if conv.schema_mode():
                conv.stats.reparsed += 1


def process_pg_dump(conv: Conv, r: Reader, *, progress: Any = None, task_id: Any = None) -> None:
    """Process a pg_dump in the current mode (schema or data).

    `progress` is an optional rich Progress updated with the bytes read.
    """
    while True:
        _, statements = read_and_parse_chunk(conv, r)
        for d in process_statements(conv, statements):
            if d.kind is DirectiveKind.COPY_FROM:
                process_copy_block(conv, d, r)
            else:
                for row in d.rows:
                    process_row(conv, d.sp_table, d.pg_table, d.cols, row)
        if progress is not None and task_id is not None:
            progress.update(task_id, completed=r.offset)
        if r.eof:
            break
    if conv.schema_mode():
        conv.add_primary_keys()


def process_copy_block(conv: Conv, d: CopyOrInsert, r: Reader) -> None:
    logger.debug("Parsing COPY-FROM stdin block for table %s starting at line %d", d.pg_table, r.line_number + 1)
    while True:
        line = r.read_line()
        if line.rstrip("\r\n") == "\\.":
            break
        if r.eof:
            conv.unexpected("Reached eof while parsing copy-block")
            return
        conv.stats_add_row(d.sp_table, conv.schema_mode())
        if conv.data_mode():
            process_row(conv, d.sp_table, d.pg_table, d.cols, parse_copy_line(line))


def parse_copy_line(line: str) -> list[str | None]:
    """Split a COPY text-format line into fields; \\N is NULL."""
    line = line.rstrip("\r\n")
    # Tabs inside values are always escaped, so splitting on raw tabs is safe.
    return [None if field == "\\N" else unescape_copy_field(field) for field in line.split("\t")]


def unescape_copy_field(field: str) -> str:
    if "\\" not in field:
        return field
    out = []
    i = 0
    n = len(field)
    while i < n:
        char = field[i]
        if char != "\\" or i + 1 == n:
            out.append(char)
            i += 1
            continue
        next_char = field[i + 1]
        if next_char in _COPY_ESCAPES:
            out.append(_COPY_ESCAPES[next_char])
            i += 2
        elif next_char in _OCTAL:
            j = i + 1
            while j < n and j < i + 4 and field[j] in _OCTAL:
                j += 1
            out.append(chr(int(field[i + 1 : j], 8) & 0xFF))
            i = j
        elif next_char == "x" and i + 2 < n and field[i + 2] in _HEX:
            j = i + 2
            while j < n and j < i + 4 and field[j] in _HEX:
                j += 1
            out.append(chr(int(field[i + 2 : j], 16)))
            i = j
        else:
            # Any other escaped character stands for itself, including "\\".
            out.append(next_char)
            i += 2
    return "".join(out)


def process_row(conv: Conv, sp_table: str, pg_table: str, cols: list[str], vals: list[str | None]) -> None:
    """Convert a row and hand it to the data sink.

    Conversion failures are counted as bad rows, and a sample of bad rows
    is kept within the configured byte budget.
    """
    try:
        c, v = convert_data(conv, sp_table, pg_table, cols, vals)
    except ConversionError as err:
        conv.unexpected(f"Error while converting data: {err}")
        conv.stats_add_bad_row(sp_table, conv.data_mode())
        conv.sample_bad_rows.add(Row(table=sp_table, cols=list(cols), vals=list(vals)))
        return
    if conv.data_sink is None:
        conv.unexpected("Internal error: process_row called but data sink not configured")
        conv.stats_add_bad_row(sp_table, conv.data_mode())
        return
    conv.data_sink(sp_table, c, v)
    conv.stats_add_good_row(sp_table, conv.data_mode())
