"""PostgreSQL statement parser.

Tokenizing is done with sqlparse's lexer (with PostgreSQL string rules);
statements are then built by a small recursive-descent parser that only
understands the statements a dump conversion cares about. Everything else
becomes `Unhandled`.

`parse` raises `SQLParseError` when the text is not a complete list of
statements, e.g. when it ends inside a string literal or a comment. The
chunker relies on this to find statement boundaries.
"""

from __future__ import annotations

import re
from typing import NamedTuple, Sequence

from sqlparse import keywords
from sqlparse import tokens as T
from sqlparse.lexer import Lexer

from ..errors import SQLParseError
from .nodes import (
    AlterKind,
    AlterTable,
    AlterTableCmd,
    ColumnDef,
    Constraint,
    ConstrType,
    CopyFrom,
    CreateTable,
    Insert,
    RangeVar,
    SetVariable,
    Statement,
    TypeName,
    Unhandled,
    UnsupportedValue,
    Value,
)

# With standard_conforming_strings (the pg_dump default) a backslash is an
# ordinary character in '...' literals. E'...' literals take C-style escapes.
_PG_STRING = r"'(''|[^'])*'"
_PG_ESCAPE_STRING = r"E'(''|\\[\s\S]|[^'\\])*'"


def _build_lexer() -> Lexer:
    lexer = Lexer()
    lexer.default_initialization()
    regex = [(_PG_ESCAPE_STRING, T.String.Single)]
    for rx, ttype in keywords.SQL_REGEX:
        if ttype is T.String.Single:
            rx = _PG_STRING
        regex.append((rx, ttype))
    lexer.set_SQL_REGEX(regex)
    return lexer


_LEXER = _build_lexer()

# sqlparse folds some keyword sequences ("NOT NULL", "PRIMARY KEY",
# "DOUBLE PRECISION", ...) into one token; they are split back into words.
_MULTI_WORD = re.compile(r"[A-Za-z_]+(?:\s+[A-Za-z_]+)+")

_TYPE_IDS = {
    "bool": "bool",
    "boolean": "bool",
    "smallint": "int2",
    "int2": "int2",
    "int": "int4",
    "integer": "int4",
    "int4": "int4",
    "bigint": "int8",
    "int8": "int8",
    "smallserial": "serial",
    "serial2": "serial",
    "serial": "serial",
    "serial4": "serial",
    "bigserial": "bigserial",
    "serial8": "bigserial",
    "real": "float4",
    "float4": "float4",
    "double precision": "float8",
    "float8": "float8",
    "decimal": "numeric",
    "numeric": "numeric",
    "character varying": "varchar",
    "varchar": "varchar",
    "character": "bpchar",
    "char": "bpchar",
    "bpchar": "bpchar",
    "timestamp": "timestamp",
    "timestamptz": "timestamptz",
    "time": "time",
    "timetz": "timetz",
}

_INTERVAL_FIELDS = frozenset(["YEAR", "MONTH", "DAY", "HOUR", "MINUTE", "SECOND", "TO"])

_TABLE_CONSTRAINT_WORDS = frozenset(["CONSTRAINT", "PRIMARY", "UNIQUE", "CHECK", "FOREIGN", "EXCLUDE"])

_COLUMN_CONSTRAINT_WORDS = frozenset(
    ["CONSTRAINT", "NULL", "PRIMARY", "UNIQUE", "CHECK", "REFERENCES", "DEFAULT", "GENERATED", "COLLATE"]
)

_CREATE_MODIFIERS = ("OR", "REPLACE", "GLOBAL", "LOCAL", "TEMPORARY", "TEMP", "UNLOGGED", "UNIQUE")

_ESCAPES = re.compile(r"\\(x[0-9A-Fa-f]{1,2}|u[0-9A-Fa-f]{4}|U[0-9A-Fa-f]{8}|[0-7]{1,3}|[\s\S])")
_SIMPLE_ESCAPES = {"b": "\b", "f": "\f", "n": "\n", "r": "\r", "t": "\t"}


class _Token(NamedTuple):
    ttype: object
    value: str

    def is_word(self) -> bool:
        if self.ttype in T.Name.Placeholder:
            return False
        return self.ttype in T.Keyword or self.ttype in T.Name

    def word(self) -> str | None:
        return self.value.upper() if self.is_word() else None

    def is_punct(self, p: str) -> bool:
        return self.ttype in T.Punctuation and self.value == p

    def is_string(self) -> bool:
        return self.ttype in T.String.Single

    def is_number(self) -> bool:
        return self.ttype in T.Number


class _Malformed(Exception):
    pass


def _significant(tokens: Sequence[_Token]) -> bool:
    return any(not _is_noise(t) for t in tokens)


def _is_noise(t: _Token) -> bool:
    return t.ttype in T.Whitespace or t.ttype in T.Comment


def _words(tokens: Sequence[_Token]) -> list[_Token]:
    out = []
    for t in tokens:
        if _is_noise(t):
            continue
        if not t.is_string() and _MULTI_WORD.fullmatch(t.value):
            out.extend(_Token(T.Keyword, w) for w in t.value.split())
        else:
            out.append(t)
    return out


def _unescape(body: str) -> str:
    def repl(m: re.Match) -> str:
        s = m.group(1)
        if s[0] in "xuU" and len(s) > 1:
            code = int(s[1:], 16)
            if code > 0x10FFFF:
                raise ValueError(f"invalid Unicode escape value \\{s}")
            return chr(code)
        if s[0] in "01234567":
            return chr(int(s, 8))
        return _SIMPLE_ESCAPES.get(s, s)

    return _ESCAPES.sub(repl, body)


def unquote_string(value: str) -> str:
    """Return the text of a '...' or E'...' literal.

    Raises ValueError for an escape naming a code point outside Unicode.
    """
    if value[0] in "eE":
        return _unescape(value[2:-1].replace("''", "'"))
    return value[1:-1].replace("''", "'")


def _string_value(t: _Token, text: str) -> Value:
    try:
        return unquote_string(t.value)
    except ValueError:
        return UnsupportedValue(text)


def _split_statements(raw: list[_Token], final: bool) -> list[list[_Token]]:
    groups = []
    current: list[_Token] = []
    depth = 0
    i = 0
    n = len(raw)
    while i < n:
        t = raw[i]
        if t.ttype is T.Error:
            raise SQLParseError(f"Invalid or unterminated input at {t.value!r}")
        if t.ttype in T.Operator and t.value.endswith("/") and i + 1 < n and raw[i + 1].ttype is T.Wildcard:
            raise SQLParseError("Unterminated comment")
        if t.ttype is T.Command and not _significant(current):
            # psql meta-command (e.g. \connect): runs to end of line.
            j = i
            while j < n and raw[j].ttype is not T.Newline and raw[j].ttype not in T.Comment:
                j += 1
            if j == n and not final:
                raise SQLParseError("Incomplete psql meta-command")
            groups.append(current + raw[i:j])
            current = []
            i = j
            continue
        current.append(t)
        i += 1
        if t.ttype in T.Punctuation:
            if t.value == "(":
                depth += 1
            elif t.value == ")":
                depth -= 1
                if depth < 0:
                    raise SQLParseError("Unbalanced parentheses")
            elif t.value == ";" and depth == 0:
                groups.append(current)
                current = []
    if depth != 0:
        raise SQLParseError("Unbalanced parentheses")
    if _significant(current):
        if not final:
            raise SQLParseError("Incomplete statement")
        groups.append(current)
    return groups


def parse(sql: str, *, final: bool = False) -> list[Statement]:
    """Parse `sql` into statements.

    Unless `final` is set, text after the last ';' must be blank (or only
    comments); otherwise the statement is incomplete and SQLParseError is
    raised.
    """
    raw = [_Token(ttype, value) for ttype, value in _LEXER.get_tokens(sql)]
    statements: list[Statement] = []
    for group in _split_statements(raw, final):
        words = _words(group)
        if words and words[-1].is_punct(";"):
            words.pop()
        if not words:
            continue
        text = "".join(t.value for t in group).strip()
        statements.append(_Parser(words, text).statement())
    return statements


class _Parser:
    def __init__(self, tokens: list[_Token], text: str) -> None:
        self.tokens = tokens
        self.text = text
        self.pos = 0

    # Token access

    def peek(self, k: int = 0) -> _Token | None:
        i = self.pos + k
        return self.tokens[i] if i < len(self.tokens) else None

    def at_end(self) -> bool:
        return self.pos >= len(self.tokens)

    def next(self) -> _Token:
        t = self.peek()
        if t is None:
            raise _Malformed("Unexpected end of statement")
        self.pos += 1
        return t

    def peek_word(self, k: int = 0) -> str | None:
        t = self.peek(k)
        return t.word() if t is not None else None

    def peek_punct(self, p: str) -> bool:
        t = self.peek()
        return t is not None and t.is_punct(p)

    def accept_word(self, *words: str) -> bool:
        if self.peek_word() in words:
            self.pos += 1
            return True
        return False

    def accept_words(self, *seq: str) -> bool:
        if all(self.peek_word(k) == w for k, w in enumerate(seq)):
            self.pos += len(seq)
            return True
        return False

    def expect_word(self, word: str) -> None:
        if not self.accept_word(word):
            raise _Malformed(f"Expected {word}")

    def accept_punct(self, p: str) -> bool:
        if self.peek_punct(p):
            self.pos += 1
            return True
        return False

    def expect_punct(self, p: str) -> None:
        if not self.accept_punct(p):
            raise _Malformed(f"Expected {p!r}")

    def at_element_end(self) -> bool:
        return self.at_end() or self.peek_punct(",") or self.peek_punct(")")

    def skip_parens(self) -> None:
        self.expect_punct("(")
        depth = 1
        while depth:
            t = self.next()
            if t.is_punct("("):
                depth += 1
            elif t.is_punct(")"):
                depth -= 1

    def skip_token(self) -> None:
        if self.peek_punct("("):
            self.skip_parens()
        else:
            self.next()

    def skip_to_element_end(self) -> None:
        while not self.at_element_end():
            self.skip_token()

    # Names

    def ident(self) -> str:
        t = self.next()
        if t.ttype in T.String.Symbol:
            return t.value[1:-1].replace('""', '"')
        if t.is_word():
            return t.value.lower()
        raise _Malformed(f"Expected identifier, found {t.value!r}")

    def qualified_name(self) -> list[str]:
        names = [self.ident()]
        while self.accept_punct("."):
            names.append(self.ident())
        return names

    def range_var(self) -> RangeVar:
        names = self.qualified_name()
        if len(names) == 1:
            return RangeVar(names[0])
        if len(names) == 2:
            return RangeVar(names[1], schema=names[0])
        if len(names) == 3:
            return RangeVar(names[2], schema=names[1], catalog=names[0])
        raise _Malformed("Improper qualified name")

    def ident_list(self) -> tuple[str, ...]:
        self.expect_punct("(")
        names = []
        while True:
            names.append(self.ident())
            # Ordering, opclass and collation words after the name.
            self.skip_to_element_end()
            if self.accept_punct(","):
                continue
            self.expect_punct(")")
            return tuple(names)

    # Statements

    def kind(self) -> str:
        """CamelCase statement kind from the leading words, e.g. "CreateIndex"."""
        first = self.tokens[0]
        if first.ttype is T.Command:
            return "PsqlCommand"
        words = []
        for t in self.tokens:
            w = t.word()
            if w is None:
                break
            if words and words[0] in ("CREATE", "ALTER", "DROP") and w in _CREATE_MODIFIERS:
                continue
            words.append(w)
            if len(words) == 2 or words[0] not in ("CREATE", "ALTER", "DROP"):
                break
        if not words:
            return "Unknown"
        return "".join(w.capitalize() for w in words)

    def unhandled(self, kind: str | None = None) -> Unhandled:
        return Unhandled(kind or self.kind(), self.text)

    def statement(self) -> Statement:
        handlers = {
            "CREATE": self.create,
            "ALTER": self.alter,
            "COPY": self.copy,
            "INSERT": self.insert,
            "SET": self.set_variable,
        }
        handler = handlers.get(self.peek_word())
        if handler is None:
            return self.unhandled()
        try:
            return handler()
        except _Malformed:
            return self.unhandled()

    def create(self) -> Statement:
        self.expect_word("CREATE")
        while self.accept_word(*_CREATE_MODIFIERS):
            pass
        if not self.accept_word("TABLE"):
            return self.unhandled()
        self.accept_words("IF", "NOT", "EXISTS")
        relation = self.range_var()
        if not self.accept_punct("("):
            # CREATE TABLE ... AS / OF / PARTITION OF
            return self.unhandled("CreateTableAs")
        columns = []
        constraints = []
        if not self.accept_punct(")"):
            while True:
                if self.peek_word() in _TABLE_CONSTRAINT_WORDS:
                    constraints.append(self.table_constraint())
                elif self.accept_word("LIKE"):
                    self.skip_to_element_end()
                else:
                    columns.append(self.column_def())
                if self.accept_punct(","):
                    continue
                self.expect_punct(")")
                break
        return CreateTable(relation, tuple(columns), tuple(constraints))

    def column_def(self) -> ColumnDef:
        name = self.ident()
        type_name = self.type_name()
        return ColumnDef(name, type_name, self.column_constraints())

    def type_name(self) -> TypeName:
        names = self.qualified_name()
        if len(names) > 1 and names[0] == "pg_catalog":
            names = names[1:]
        base = ".".join(names)
        if base == "double" and self.accept_word("PRECISION"):
            base = "double precision"
        elif base in ("character", "char") and self.accept_word("VARYING"):
            base = "character varying"
        elif base == "bit" and self.accept_word("VARYING"):
            base = "bit varying"
        mods = self.type_mods()
        if base in ("timestamp", "time"):
            if self.accept_words("WITH", "TIME", "ZONE"):
                base += "tz"
            else:
                self.accept_words("WITHOUT", "TIME", "ZONE")
        elif base == "interval":
            while self.accept_word(*_INTERVAL_FIELDS):
                pass
            mods += self.type_mods()
        bounds = self.array_bounds()
        type_id = _TYPE_IDS.get(base, base)
        if base == "float":
            # float(p) selects a precision, it is not a type modifier.
            type_id = "float4" if mods and mods[0] <= 24 else "float8"
            mods = []
        return TypeName(type_id, tuple(mods), tuple(bounds))

    def type_mods(self) -> list[int]:
        mods: list[int] = []
        if not self.accept_punct("("):
            return mods
        while not self.accept_punct(")"):
            t = self.next()
            if t.ttype in T.Number.Integer:
                mods.append(int(t.value))
            elif t.is_punct("("):
                raise _Malformed("Nested type modifier")
        return mods

    def array_bounds(self) -> list[int]:
        bounds = []
        while True:
            t = self.peek()
            if t is None:
                break
            if t.is_punct("["):
                self.next()
                bounds.append(self.array_bound())
                self.expect_punct("]")
            elif t.ttype in T.Name and t.value.startswith("["):
                # sqlparse lexes "[5]" after a space as a bracketed name.
                self.next()
                inner = t.value[1:-1].strip()
                bounds.append(int(inner) if inner.isdigit() else -1)
            elif self.accept_word("ARRAY"):
                if self.accept_punct("["):
                    bounds.append(self.array_bound())
                    self.expect_punct("]")
                else:
                    bounds.append(-1)
            else:
                break
        return bounds

    def array_bound(self) -> int:
        t = self.peek()
        if t is not None and t.ttype in T.Number.Integer:
            self.next()
            return int(t.value)
        return -1

    def at_column_constraint(self) -> bool:
        w = self.peek_word()
        if w in _COLUMN_CONSTRAINT_WORDS:
            return True
        return w == "NOT" and self.peek_word(1) == "NULL"

    def skip_expr(self) -> None:
        """Skip a DEFAULT or GENERATED expression (at least one token)."""
        self.skip_token()
        while not self.at_element_end() and not self.at_column_constraint():
            self.skip_token()

    def column_constraints(self) -> tuple[Constraint, ...]:
        cons = []
        name = None
        while not self.at_element_end():
            kind = None
            extra = {}
            if self.accept_word("CONSTRAINT"):
                name = self.ident()
                continue
            if self.accept_words("NOT", "NULL"):
                kind = ConstrType.NOT_NULL
            elif self.accept_word("NULL"):
                kind = ConstrType.NULL
            elif self.accept_words("PRIMARY", "KEY"):
                kind = ConstrType.PRIMARY
                self.skip_index_params()
            elif self.accept_word("UNIQUE"):
                kind = ConstrType.UNIQUE
                self.accept_words("NULLS", "NOT", "DISTINCT") or self.accept_words("NULLS", "DISTINCT")
                self.skip_index_params()
            elif self.accept_word("DEFAULT"):
                kind = ConstrType.DEFAULT
                self.skip_expr()
            elif self.accept_word("CHECK"):
                kind = ConstrType.CHECK
                self.skip_parens()
                self.accept_words("NO", "INHERIT")
            elif self.accept_word("REFERENCES"):
                kind = ConstrType.FOREIGN
                extra = self.references()
            elif self.accept_word("GENERATED"):
                kind = ConstrType.OTHER
                self.accept_words("BY", "DEFAULT")
                self.skip_expr()
            elif self.accept_word("COLLATE"):
                self.qualified_name()
                continue
            else:
                # DEFERRABLE, INITIALLY ..., and anything unrecognized.
                self.skip_token()
                continue
            cons.append(Constraint(kind, name=name, **extra))
            name = None
        return tuple(cons)

    def skip_index_params(self) -> None:
        if self.accept_word("INCLUDE"):
            self.skip_parens()
        if self.accept_word("WITH"):
            self.skip_parens()
        if self.accept_words("USING", "INDEX", "TABLESPACE"):
            self.ident()

    def references(self) -> dict:
        refer_table = self.range_var()
        refer_keys: tuple[str, ...] = ()
        if self.peek_punct("("):
            refer_keys = self.ident_list()
        while True:
            if self.accept_word("MATCH"):
                self.next()
            elif self.accept_word("ON"):
                self.next()  # DELETE / UPDATE
                if not (self.accept_words("NO", "ACTION") or self.accept_words("SET", "NULL") or self.accept_words("SET", "DEFAULT")):
                    self.next()  # CASCADE / RESTRICT
                if self.peek_punct("("):
                    self.skip_parens()
            else:
                return {"refer_table": refer_table, "refer_keys": refer_keys}

    def table_constraint(self) -> Constraint:
        name = self.ident() if self.accept_word("CONSTRAINT") else None
        if self.accept_words("PRIMARY", "KEY"):
            c = Constraint(ConstrType.PRIMARY, self.ident_list(), name)
        elif self.accept_word("UNIQUE"):
            self.accept_words("NULLS", "NOT", "DISTINCT") or self.accept_words("NULLS", "DISTINCT")
            keys = self.ident_list() if self.peek_punct("(") else ()
            c = Constraint(ConstrType.UNIQUE, keys, name)
        elif self.accept_word("CHECK"):
            self.skip_parens()
            c = Constraint(ConstrType.CHECK, (), name)
        elif self.accept_words("FOREIGN", "KEY"):
            keys = self.ident_list()
            self.expect_word("REFERENCES")
            c = Constraint(ConstrType.FOREIGN, keys, name, **self.references())
        elif self.accept_words("NOT", "NULL"):
            c = Constraint(ConstrType.NOT_NULL, (self.ident(),), name)
        else:
            c = Constraint(ConstrType.OTHER, (), name)
        # NOT VALID, DEFERRABLE, USING INDEX ... and the like.
        self.skip_to_element_end()
        return c

    def alter(self) -> Statement:
        self.expect_word("ALTER")
        if not self.accept_word("TABLE"):
            return self.unhandled()
        self.accept_words("IF", "EXISTS")
        self.accept_word("ONLY")
        relation = self.range_var()
        t = self.peek()
        if t is not None and t.ttype is T.Wildcard:
            self.next()
        cmds = []
        while not self.at_end():
            cmds.append(self.alter_cmd())
            if not self.accept_punct(","):
                break
        return AlterTable(relation, tuple(cmds))

    def alter_cmd(self) -> AlterTableCmd:
        if self.accept_word("ADD"):
            if self.peek_word() in _TABLE_CONSTRAINT_WORDS:
                return AlterTableCmd(AlterKind.ADD_CONSTRAINT, constraint=self.table_constraint())
        elif self.accept_word("ALTER"):
            self.accept_word("COLUMN")
            col = self.ident()
            if self.accept_words("SET", "NOT", "NULL") and self.at_element_end():
                return AlterTableCmd(AlterKind.SET_NOT_NULL, name=col)
        self.skip_to_element_end()
        return AlterTableCmd(AlterKind.OTHER)

    def copy(self) -> Statement:
        self.expect_word("COPY")
        if self.peek_punct("("):
            return self.unhandled("CopyQuery")
        relation = self.range_var()
        columns: tuple[str, ...] = ()
        if self.peek_punct("("):
            columns = self.ident_list()
        if not self.accept_word("FROM"):
            return self.unhandled("CopyTo")
        if not self.accept_word("STDIN"):
            return self.unhandled("CopyFromFile")
        return CopyFrom(relation, columns)

    def insert(self) -> Statement:
        self.expect_word("INSERT")
        self.expect_word("INTO")
        relation = self.range_var()
        if self.accept_word("AS"):
            self.ident()
        columns = self.ident_list() if self.peek_punct("(") else None
        if self.accept_word("OVERRIDING"):
            self.next()
            self.expect_word("VALUE")
        if not self.accept_word("VALUES"):
            return self.unhandled("InsertSelect")
        rows = []
        while True:
            self.expect_punct("(")
            values: list[Value] = []
            if not self.accept_punct(")"):
                while True:
                    values.append(self.value())
                    if self.accept_punct(","):
                        continue
                    self.expect_punct(")")
                    break
            rows.append(tuple(values))
            if not self.accept_punct(","):
                break
        return Insert(relation, columns, tuple(rows))

    def value(self) -> Value:
        start = self.pos
        while not self.at_element_end():
            self.skip_token()
        toks = self.tokens[start:self.pos]
        text = " ".join(t.value for t in toks)
        for i, t in enumerate(toks):
            if t.is_punct("::"):
                toks = toks[:i]
                break
        if len(toks) == 1:
            t = toks[0]
            if t.is_string():
                return _string_value(t, text)
            if t.is_number():
                return t.value
            w = t.word()
            if w == "NULL":
                return None
            if w in ("TRUE", "FALSE"):
                return w.lower()
        elif len(toks) == 2:
            sign, t = toks
            if sign.ttype in T.Operator and sign.value in ("-", "+") and t.is_number():
                return t.value if sign.value == "+" else "-" + t.value
            if sign.is_word() and t.is_string():
                # Typed literal, e.g. DATE '2020-01-01'.
                return _string_value(t, text)
        return UnsupportedValue(text)

    def set_variable(self) -> Statement:
        self.expect_word("SET")
        self.accept_word("SESSION") or self.accept_word("LOCAL")
        if self.accept_words("TIME", "ZONE"):
            name = "timezone"
        else:
            name = ".".join(self.qualified_name())
            t = self.peek()
            if not self.accept_word("TO") and t is not None and t.value == "=":
                self.next()
        args = []
        while not self.at_end():
            t = self.next()
            w = t.word()
            if t.is_punct(","):
                continue
            if w in ("DEFAULT", "LOCAL"):
                return SetVariable(name, ())
            if t.is_string():
                try:
                    args.append(unquote_string(t.value))
                except ValueError as err:
                    raise _Malformed(str(err)) from err
            elif t.ttype in T.Operator and t.value in ("-", "+") and not self.at_end() and self.peek().is_number():
                n = self.next().value
                args.append(n if t.value == "+" else "-" + n)
            else:
                args.append(t.value)
        return SetVariable(name, tuple(args))
