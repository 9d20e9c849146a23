import datetime
import gzip
import io
import json
import os

import pytest
from rich.console import Console

from spannerconv.tools.pgdump_import import (
    convert_pg_dump,
    main,
    print_summary,
    stats_to_dict,
    write_stats_json,
)

from conftest import SAMPLE_DUMP, RowCollector


def _make_pg_dump_gzipped(path: str) -> None:
    """Create a gzipped PostgreSQL dump file."""
    plain_path = path.replace(".gz", "")
    with open(plain_path, "w", encoding="utf-8") as f:
        f.write(SAMPLE_DUMP)

    with open(plain_path, "rb") as f_in:
        with gzip.open(path, "wb") as f_out:
            f_out.write(f_in.read())

    os.remove(plain_path)


def test_convert_plain(pg_dump_path):
    """Test converting a plain SQL dump file."""
    sink = RowCollector()
    conv = convert_pg_dump(pg_dump_path=pg_dump_path, data_sink=sink, show_progress=False)

    assert sorted(conv.sp_schema) == ["Albums", "Artists", "plays"]
    assert conv.good_rows() == 8
    assert len(sink.for_table("Artists")) == 3
    assert conv.data_mode()


def test_convert_gzipped(tmp_path):
    """Test converting a gzipped SQL dump file."""
    pg_path = str(tmp_path / "dump.sql.gz")
    _make_pg_dump_gzipped(pg_path)

    sink = RowCollector()
    conv = convert_pg_dump(pg_dump_path=pg_path, data_sink=sink, show_progress=False)

    assert sorted(conv.sp_schema) == ["Albums", "Artists", "plays"]
    assert [r["Title"] for r in sink.for_table("Albums")][0] == "Abbey Road"


def test_convert_with_progress(pg_dump_path):
    conv = convert_pg_dump(pg_dump_path=pg_dump_path, show_progress=True)
    # Without a sink rows are converted and dropped.
    assert conv.good_rows() == 8


def test_convert_with_location(tmp_path):
    pg_path = tmp_path / "dump.sql"
    pg_path.write_text(
        "CREATE TABLE ev (id bigint PRIMARY KEY, happened timestamp with time zone);\n"
        "COPY ev (id, happened) FROM stdin;\n"
        "1\t2020-06-01 12:00:00\n"
        "\\.\n",
        encoding="utf-8",
    )
    sink = RowCollector()
    offset = datetime.timezone(datetime.timedelta(hours=-4))
    convert_pg_dump(pg_dump_path=str(pg_path), data_sink=sink, location=offset)
    (row,) = sink.for_table("ev")
    assert row["happened"] == datetime.datetime(2020, 6, 1, 16, 0, tzinfo=datetime.timezone.utc)


def test_file_not_found():
    """Test handling of missing file."""
    with pytest.raises(FileNotFoundError):
        convert_pg_dump(pg_dump_path="/nonexistent/path/dump.sql", show_progress=False)


def test_stats_to_dict(pg_dump_path):
    conv = convert_pg_dump(pg_dump_path=pg_dump_path)
    stats = stats_to_dict(conv)

    assert stats["tables"]["plays"] == {
        "source_table": "plays",
        "rows": 2,
        "good_rows": 2,
        "bad_rows": 0,
        "synthetic_primary_key": "synth_id",
        "table_issues": ["missing_primary_key"],
        "column_issues": {},
    }
    assert stats["tables"]["Albums"]["column_issues"] == {
        "Id": ["widened"],
        "ArtistId": ["widened", "foreign_key"],
        "Price": ["numeric_that_fits"],
    }
    assert stats["statements"]["CopyFrom"] == {"schema": 0, "data": 3, "skip": 0, "error": 0}
    assert stats["totals"]["rows"] == 8
    assert stats["totals"]["statements"] == 18
    assert stats["unexpected"] == {}
    assert stats["sample_bad_rows"] == []


def test_write_stats_json(pg_dump_path, tmp_path, capsys):
    conv = convert_pg_dump(pg_dump_path=pg_dump_path)

    out = tmp_path / "stats.json"
    write_stats_json(conv, str(out))
    assert json.loads(out.read_text(encoding="utf-8")) == stats_to_dict(conv)

    write_stats_json(conv, "-")
    assert json.loads(capsys.readouterr().out)["totals"]["good_rows"] == 8


def test_print_summary(tmp_path):
    pg_path = tmp_path / "dump.sql"
    pg_path.write_text(
        "CREATE TABLE t (a bigint, b boolean);\n"
        "COPY t (a, b) FROM stdin;\n"
        "1\tmaybe\n"
        "\\.\n",
        encoding="utf-8",
    )
    conv = convert_pg_dump(pg_dump_path=str(pg_path))
    buf = io.StringIO()
    console = Console(file=buf, width=200)
    print_summary(conv, pg_dump_path=str(pg_path), elapsed=75.0, console=console)

    text = buf.getvalue()
    assert "PostgreSQL" in text
    assert "1:15" in text
    assert "Schema Issues" in text
    assert "table has no primary key" in text
    assert "Unexpected Conditions" in text
    assert "Sample Bad Rows" in text
    assert "table=t cols=[a b] data=[1 maybe]" in text


def test_main_writes_ddl_and_report(pg_dump_path, tmp_path):
    ddl_path = tmp_path / "schema.ddl"
    report_path = tmp_path / "report.json"

    rc = main(
        [
            pg_dump_path,
            "--no-progress",
            "--comments",
            "--ddl-out",
            str(ddl_path),
            "--report-json",
            str(report_path),
        ]
    )
    assert rc == 0

    ddl_text = ddl_path.read_text(encoding="utf-8")
    assert ddl_text.startswith("--\n-- Spanner schema for PostgreSQL table Albums\n--\nCREATE TABLE Albums (")
    assert ddl_text.count("CREATE TABLE") == 3
    assert ") PRIMARY KEY (synth_id);\n\n" in ddl_text

    report = json.loads(report_path.read_text(encoding="utf-8"))
    assert report["totals"]["good_rows"] == 8


def test_main_ddl_to_stdout(pg_dump_path, capsys):
    assert main([pg_dump_path, "--no-progress", "--protect-ids", "--ddl-out", "-"]) == 0
    out = capsys.readouterr().out
    assert "CREATE TABLE `Artists` (" in out
    assert ") PRIMARY KEY (`Id`);" in out


def test_main_rejects_unknown_timezone(pg_dump_path):
    with pytest.raises(SystemExit) as exc:
        main([pg_dump_path, "--no-progress", "--timezone", "Not/AZone"])
    assert exc.value.code == 2


@pytest.mark.parametrize("tz", ["inf", "1e400", "24", "America"])
def test_main_rejects_out_of_range_timezone(pg_dump_path, tz):
    with pytest.raises(SystemExit) as exc:
        main([pg_dump_path, "--no-progress", "--timezone", tz])
    assert exc.value.code == 2
