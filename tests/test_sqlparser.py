import pytest

from spannerconv.errors import SQLParseError
from spannerconv.postgres.nodes import (
    AlterKind,
    AlterTable,
    ConstrType,
    CopyFrom,
    CreateTable,
    Insert,
    RangeVar,
    SetVariable,
    Unhandled,
    UnsupportedValue,
    statement_key,
)
from spannerconv.postgres.sqlparser import parse


def _one(sql):
    stmts = parse(sql)
    assert len(stmts) == 1
    return stmts[0]


def test_create_table():
    stmt = _one(
        """CREATE TABLE public."MyTable" (
    id bigint NOT NULL,
    "Name" character varying(20),
    price numeric(10,2) DEFAULT 0.0,
    tags text[],
    grid integer[][],
    at timestamp with time zone,
    at2 timestamp(3) without time zone,
    ratio double precision,
    code character(3),
    PRIMARY KEY (id)
);"""
    )
    assert isinstance(stmt, CreateTable)
    assert stmt.relation == RangeVar("MyTable", schema="public")
    assert [c.name for c in stmt.columns] == ["id", "Name", "price", "tags", "grid", "at", "at2", "ratio", "code"]
    types = {c.name: c.type_name for c in stmt.columns}
    assert types["id"].id == "int8"
    assert types["Name"].id == "varchar"
    assert types["Name"].mods == (20,)
    assert types["price"].mods == (10, 2)
    assert types["tags"].array_bounds == (-1,)
    assert types["grid"].array_bounds == (-1, -1)
    assert types["at"].id == "timestamptz"
    assert types["at2"].id == "timestamp"
    assert types["at2"].mods == (3,)
    assert types["ratio"].id == "float8"
    assert types["code"].id == "bpchar"

    cols = {c.name: c for c in stmt.columns}
    assert [c.kind for c in cols["id"].constraints] == [ConstrType.NOT_NULL]
    assert [c.kind for c in cols["price"].constraints] == [ConstrType.DEFAULT]
    assert stmt.constraints[0].kind is ConstrType.PRIMARY
    assert stmt.constraints[0].keys == ("id",)


def test_create_table_constraints():
    stmt = _one(
        """CREATE TABLE orders (
    id serial PRIMARY KEY,
    customer integer REFERENCES customers(id) ON DELETE CASCADE,
    total real CHECK (total > 0) NOT NULL,
    CONSTRAINT orders_customer_fkey FOREIGN KEY (customer) REFERENCES public.customers (id)
);"""
    )
    cols = {c.name: c for c in stmt.columns}
    assert cols["id"].type_name.id == "serial"
    assert [c.kind for c in cols["id"].constraints] == [ConstrType.PRIMARY]
    fk = cols["customer"].constraints[0]
    assert fk.kind is ConstrType.FOREIGN
    assert fk.refer_table == RangeVar("customers")
    assert fk.refer_keys == ("id",)
    assert [c.kind for c in cols["total"].constraints] == [ConstrType.CHECK, ConstrType.NOT_NULL]
    assert cols["total"].type_name.id == "float4"
    table_fk = stmt.constraints[0]
    assert table_fk.kind is ConstrType.FOREIGN
    assert table_fk.name == "orders_customer_fkey"
    assert table_fk.keys == ("customer",)


def test_alter_table():
    stmt = _one(
        """ALTER TABLE ONLY public.t
    ADD CONSTRAINT t_pkey PRIMARY KEY (a, b);"""
    )
    assert isinstance(stmt, AlterTable)
    assert stmt.relation.table_name() == "t"
    (cmd,) = stmt.cmds
    assert cmd.kind is AlterKind.ADD_CONSTRAINT
    assert cmd.constraint.kind is ConstrType.PRIMARY
    assert cmd.constraint.keys == ("a", "b")
    assert statement_key(stmt, cmd, cmd.constraint) == "AlterTable.AlterTableCmd.Constraint"

    stmt = _one("ALTER TABLE t ALTER COLUMN c SET NOT NULL;")
    assert stmt.cmds[0].kind is AlterKind.SET_NOT_NULL
    assert stmt.cmds[0].name == "c"

    stmt = _one("ALTER TABLE ONLY public.t ALTER COLUMN id SET DEFAULT nextval('public.t_id_seq'::regclass);")
    assert stmt.cmds[0].kind is AlterKind.OTHER

    stmt = _one("ALTER TABLE public.t OWNER TO postgres;")
    assert stmt.cmds[0].kind is AlterKind.OTHER


def test_copy_from():
    stmt = _one('COPY public."Artists" ("Id", name) FROM stdin;')
    assert stmt == CopyFrom(RangeVar("Artists", schema="public"), ("Id", "name"))

    stmt = _one("COPY other.t FROM stdin;")
    assert stmt.relation.table_name() == "other.t"
    assert stmt.columns == ()

    assert _one("COPY t FROM '/tmp/data.csv';") == Unhandled("CopyFromFile", "COPY t FROM '/tmp/data.csv';")
    assert _one("COPY t TO stdout;").kind == "CopyTo"


def test_insert():
    stmt = _one("INSERT INTO public.t (a, b, c, d, e) VALUES (1, 'it''s', NULL, -2.5, true), (2, E'x\\ty', 'z'::text, now(), false);")
    assert isinstance(stmt, Insert)
    assert stmt.columns == ("a", "b", "c", "d", "e")
    assert stmt.rows[0] == ("1", "it's", None, "-2.5", "true")
    assert stmt.rows[1][:3] == ("2", "x\ty", "z")
    assert isinstance(stmt.rows[1][3], UnsupportedValue)
    assert stmt.rows[1][4] == "false"

    stmt = _one("INSERT INTO t VALUES (1);")
    assert stmt.columns is None

    assert _one("INSERT INTO t SELECT * FROM u;").kind == "InsertSelect"


def test_standard_strings_keep_backslashes():
    stmt = _one("INSERT INTO t (a) VALUES ('\\x0001beef');")
    assert stmt.rows[0] == ("\\x0001beef",)


def test_set_variable():
    assert _one("SET TIME ZONE 'Australia/Sydney';") == SetVariable("timezone", ("Australia/Sydney",))
    assert _one("SET timezone = 'UTC';") == SetVariable("timezone", ("UTC",))
    assert _one("SET TIME ZONE DEFAULT;") == SetVariable("timezone", ())
    assert _one("SET statement_timeout = 0;") == SetVariable("statement_timeout", ("0",))
    assert _one("SET search_path = '', pg_catalog;").args == ("", "pg_catalog")


def test_unhandled_kinds():
    kinds = [s.kind for s in parse(
        "SELECT pg_catalog.set_config('search_path', '', false);\n"
        "CREATE INDEX idx ON t USING btree (a);\n"
        "CREATE UNIQUE INDEX uidx ON t (b);\n"
        "CREATE SEQUENCE t_id_seq START WITH 1;\n"
        "ALTER SEQUENCE t_id_seq OWNED BY t.id;\n"
        "COMMENT ON TABLE t IS 'x';\n"
    )]
    assert kinds == ["Select", "CreateIndex", "CreateIndex", "CreateSequence", "AlterSequence", "Comment"]


def test_psql_meta_commands():
    stmts = parse("\\connect mydb\nCREATE TABLE t (a int);\n")
    assert [type(s).__name__ for s in stmts] == ["Unhandled", "CreateTable"]
    assert stmts[0].kind == "PsqlCommand"


def test_dollar_quoted_function():
    sql = "CREATE FUNCTION f() RETURNS int AS $$\nbegin; return 1; end;\n$$ LANGUAGE plpgsql;\n"
    (stmt,) = parse(sql)
    assert stmt.kind == "CreateFunction"


def test_comments_only():
    assert parse("--\n-- Name: t; Type: TABLE; Schema: public\n--\n") == []
    assert parse("") == []


@pytest.mark.parametrize(
    "sql",
    [
        "INSERT INTO t (a) VALUES ('unterminated;\n",
        "CREATE TABLE t (\n    a integer;\n",
        "CREATE FUNCTION f() RETURNS int AS $$\nbegin;\n",
        "/* comment that goes on;\n",
        "CREATE TABLE t (a int)",
    ],
)
def test_incomplete_input(sql):
    with pytest.raises(SQLParseError):
        parse(sql)


def test_final_accepts_missing_semicolon():
    (stmt,) = parse("CREATE TABLE t (a int)", final=True)
    assert isinstance(stmt, CreateTable)


def test_escape_outside_unicode():
    stmt = _one("INSERT INTO t (a, b) VALUES (1, E'\\U00110000');")
    assert stmt.rows[0][0] == "1"
    assert stmt.rows[0][1] == UnsupportedValue("E'\\U00110000'")

    stmt = _one("SET TIME ZONE E'\\U00110000';")
    assert isinstance(stmt, Unhandled)

    assert _one("INSERT INTO t (a) VALUES (E'\\U0010FFFF');").rows[0] == ("\U0010ffff",)
