"""Convert PostgreSQL dump files into a Spanner schema and typed rows.

Supports plain SQL dumps and gzipped dumps. The dump is read twice: once to
build the schema and once to convert data.
"""

from __future__ import annotations

import argparse
import datetime
import json
import logging
import os
import sys
import time
from typing import Any, Sequence

from .. import ddl
from ..conv import BAD_ROWS_BYTES_LIMIT, Conv, DataSink
from ..postgres.process import process_pg_dump
from ..postgres.statements import load_location
from ..reader import Reader

logger = logging.getLogger(__name__)

MAX_LISTED_WARNINGS = 20


def _discard_row(table: str, cols: list[str], vals: list[Any]) -> None:
    pass


def convert_pg_dump(
    *,
    pg_dump_path: str,
    data_sink: DataSink | None = None,
    location: datetime.tzinfo | None = None,
    bad_rows_bytes_limit: int = BAD_ROWS_BYTES_LIMIT,
    show_progress: bool = False,
) -> Conv:
    """Convert a PostgreSQL dump file.

    Rows are handed to `data_sink` as they are converted; without a sink
    they are converted (and counted) but dropped.
    """
    if not os.path.exists(pg_dump_path):
        raise FileNotFoundError(pg_dump_path)

    conv = Conv(bad_rows_bytes_limit=bad_rows_bytes_limit)
    conv.set_location(location)

    progress = None
    if show_progress:
        from rich.console import Console
        from rich.progress import (
            BarColumn,
            DownloadColumn,
            Progress,
            SpinnerColumn,
            TextColumn,
            TimeElapsedColumn,
        )

        progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}[/bold]"),
            BarColumn(bar_width=None),
            DownloadColumn(),
            TimeElapsedColumn(),
            console=Console(stderr=True),
            transient=False,
        )
        progress.start()

    # Compressed dumps report decompressed offsets, so their size is no use
    # as a total.
    total = None if pg_dump_path.endswith(".gz") else os.path.getsize(pg_dump_path)
    try:
        with Reader.open(pg_dump_path) as r:
            conv.set_schema_mode()
            task = progress.add_task("Schema", total=total) if progress is not None else None
            process_pg_dump(conv, r, progress=progress, task_id=task)
            logger.debug("Schema pass done: %d tables, %d rows", len(conv.sp_schema), conv.rows())

            r.reset()
            conv.set_data_mode()
            conv.set_data_sink(data_sink if data_sink is not None else _discard_row)
            task = progress.add_task("Data", total=total) if progress is not None else None
            process_pg_dump(conv, r, progress=progress, task_id=task)
            logger.debug("Data pass done: %d good rows, %d bad rows", conv.good_rows(), conv.bad_rows())
    finally:
        if progress is not None:
            progress.stop()
    return conv


def stats_to_dict(conv: Conv) -> dict[str, Any]:
    tables = {}
    for sp_table in sorted(conv.sp_schema):
        pg = conv.to_postgres.get(sp_table)
        pg_table = pg.name if pg is not None else sp_table
        pg_def = conv.pg_schema.get(pg_table)
        issues = {}
        if pg_def is not None:
            for col, pg_col in pg_def.cols.items():
                if pg_col.issues:
                    issues[col] = [i.value for i in pg_col.issues]
        synth = conv.synthetic_pkeys.get(sp_table)
        tables[sp_table] = {
            "source_table": pg_table,
            "rows": conv.stats.rows.get(sp_table, 0),
            "good_rows": conv.stats.good_rows.get(sp_table, 0),
            "bad_rows": conv.stats.bad_rows.get(sp_table, 0),
            "synthetic_primary_key": synth.col if synth is not None else None,
            "table_issues": [i.value for i in pg_def.issues] if pg_def is not None else [],
            "column_issues": issues,
        }
    return {
        "tables": tables,
        "statements": {
            key: {"schema": s.schema, "data": s.data, "skip": s.skip, "error": s.error}
            for key, s in conv.stats.statement.items()
        },
        "unexpected": dict(conv.stats.unexpected),
        "reparsed": conv.stats.reparsed,
        "totals": {
            "rows": conv.rows(),
            "good_rows": conv.good_rows(),
            "bad_rows": conv.bad_rows(),
            "statements": conv.statements(),
            "statement_errors": conv.statement_errors(),
            "unexpected": conv.unexpecteds(),
        },
        "sample_bad_rows": conv.sample_bad_row_strings(len(conv.sample_bad_rows.rows)),
    }


def write_stats_json(conv: Conv, path: str) -> None:
    payload = json.dumps(stats_to_dict(conv), ensure_ascii=False, indent=2, sort_keys=True)
    if path == "-":
        print(payload)
        return
    with open(path, "w", encoding="utf-8") as f:
        f.write(payload)
        f.write("\n")


def write_ddl(conv: Conv, path: str, config: ddl.PrintConfig) -> None:
    text = ddl.print_schema(conv.sp_schema, config)
    if path == "-":
        sys.stdout.write(text)
        return
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)


def print_summary(conv: Conv, *, pg_dump_path: str, elapsed: float, console: Any) -> None:
    from rich.markup import escape
    from rich.panel import Panel
    from rich.table import Table as RichTable

    elapsed_str = f"{int(elapsed // 60)}:{int(elapsed % 60):02d}"

    summary = RichTable.grid(padding=(0, 1))
    summary.add_column(justify="right", style="bold")
    summary.add_column()
    summary.add_row("From", pg_dump_path)
    summary.add_row("Tables", str(len(conv.sp_schema)))
    summary.add_row("Statements", str(conv.statements()))
    if conv.statement_errors() > 0:
        summary.add_row("Statement errors", str(conv.statement_errors()))
    summary.add_row("Rows", str(conv.rows()))
    summary.add_row("Rows converted", str(conv.good_rows()))
    if conv.bad_rows() > 0:
        summary.add_row("Bad rows", str(conv.bad_rows()))
    if conv.stats.reparsed > 0:
        summary.add_row("Reparsed", str(conv.stats.reparsed))
    summary.add_row("Elapsed", elapsed_str)
    console.print(Panel(summary, title="PostgreSQL  Spanner", border_style="green"))

    tables_tbl = RichTable(title="Tables", show_lines=False)
    tables_tbl.add_column("Spanner table", style="cyan")
    tables_tbl.add_column("Rows", justify="right")
    tables_tbl.add_column("Bad rows", justify="right", style="yellow")
    tables_tbl.add_column("Synthetic key")
    for name in sorted(conv.sp_schema):
        synth = conv.synthetic_pkeys.get(name)
        tables_tbl.add_row(
            name,
            str(conv.stats.good_rows.get(name, 0)),
            str(conv.stats.bad_rows.get(name, 0)),
            synth.col if synth is not None else "",
        )
    console.print(tables_tbl)

    issues = []
    for pg_table in sorted(conv.pg_schema):
        pg_def = conv.pg_schema[pg_table]
        for issue in pg_def.issues:
            issues.append((pg_table, "", issue))
        for col, pg_col in pg_def.cols.items():
            for issue in pg_col.issues:
                issues.append((pg_table, col, issue))
    if issues:
        issues_tbl = RichTable(title="Schema Issues", show_lines=False)
        issues_tbl.add_column("Table", style="cyan")
        issues_tbl.add_column("Column")
        issues_tbl.add_column("Issue", style="yellow")
        for table, col, issue in issues:
            issues_tbl.add_row(table, col, f"{issue.severity}: {issue.description}")
        console.print(issues_tbl)

    if conv.stats.unexpected:
        warn_tbl = RichTable(title="Unexpected Conditions", show_lines=False)
        warn_tbl.add_column("Count", justify="right")
        warn_tbl.add_column("Condition", style="yellow")
        ordered = sorted(conv.stats.unexpected.items(), key=lambda kv: (-kv[1], kv[0]))
        for condition, count in ordered[:MAX_LISTED_WARNINGS]:
            warn_tbl.add_row(str(count), escape(condition))
        if len(ordered) > MAX_LISTED_WARNINGS:
            warn_tbl.add_row("", f"... and {len(ordered) - MAX_LISTED_WARNINGS} more conditions")
        console.print(warn_tbl)

    samples = conv.sample_bad_row_strings(MAX_LISTED_WARNINGS)
    if samples:
        bad_tbl = RichTable(title="Sample Bad Rows", show_lines=False)
        bad_tbl.add_column("Row", style="red")
        for s in samples:
            bad_tbl.add_row(escape(s))
        console.print(bad_tbl)


def _configure_logging(verbose: bool) -> None:
    from rich.logging import RichHandler

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=verbose)],
    )


def main(argv: Sequence[str] | None = None) -> int:
    p = argparse.ArgumentParser(
        description="Convert a PostgreSQL dump file into a Spanner schema and typed rows"
    )
    p.add_argument(
        "pg_dump_path", help="Path to the PostgreSQL dump file (.sql or .sql.gz)"
    )
    p.add_argument(
        "--ddl-out",
        default=None,
        help="Write the Spanner DDL to this path (use '-' for stdout)",
    )
    p.add_argument(
        "--comments", action="store_true", help="Include comments in the DDL output"
    )
    p.add_argument(
        "--protect-ids",
        action="store_true",
        help="Quote table and column names in the DDL output",
    )
    p.add_argument(
        "--report-json",
        default=None,
        help="Write JSON conversion statistics to this path (use '-' for stdout)",
    )
    p.add_argument(
        "--timezone",
        default=None,
        help="Timezone for timestamptz values without an offset (default: local time)",
    )
    p.add_argument(
        "--no-progress", action="store_true", help="Disable rich progress output"
    )
    p.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output for debugging",
    )
    args = p.parse_args(argv)

    _configure_logging(bool(args.verbose))

    location = None
    if args.timezone:
        try:
            location = load_location(str(args.timezone))
        except (ValueError, OSError, KeyError) as exc:
            p.error(f"unknown timezone {args.timezone!r}: {exc}")

    show_progress = not bool(args.no_progress)
    start_time = time.time()
    conv = convert_pg_dump(
        pg_dump_path=args.pg_dump_path,
        location=location,
        show_progress=show_progress,
    )

    if args.ddl_out:
        config = ddl.PrintConfig(comments=bool(args.comments), protect_ids=bool(args.protect_ids))
        write_ddl(conv, str(args.ddl_out), config)

    if show_progress:
        from rich.console import Console

        # Keep stdout clean when DDL or statistics go there.
        to_stdout = "-" in (args.ddl_out, args.report_json)
        console = Console(stderr=to_stdout)
        print_summary(
            conv,
            pg_dump_path=args.pg_dump_path,
            elapsed=time.time() - start_time,
            console=console,
        )

    if args.report_json:
        write_stats_json(conv, str(args.report_json))

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
