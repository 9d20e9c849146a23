import datetime

import pytest

from spannerconv.conv import Conv
from spannerconv.postgres.process import process_pg_dump
from spannerconv.reader import Reader


SAMPLE_DUMP = """--
-- PostgreSQL database dump
--

SET statement_timeout = 0;
SET client_encoding = 'UTF8';
SET standard_conforming_strings = on;
SELECT pg_catalog.set_config('search_path', '', false);

SET default_tablespace = '';

--
-- Name: Artists; Type: TABLE; Schema: public; Owner: postgres
--

CREATE TABLE public."Artists" (
    "Id" integer NOT NULL,
    "Name" character varying(255) NOT NULL,
    "Bio" text,
    "Active" boolean NOT NULL,
    "Rating" double precision
);


ALTER TABLE public."Artists" OWNER TO postgres;

--
-- Name: Albums; Type: TABLE; Schema: public; Owner: postgres
--

CREATE TABLE public."Albums" (
    "Id" integer NOT NULL,
    "ArtistId" integer NOT NULL,
    "Title" character varying(255) NOT NULL,
    "Released" date,
    "Price" numeric(10,2)
);


ALTER TABLE public."Albums" OWNER TO postgres;

--
-- Name: plays; Type: TABLE; Schema: public; Owner: postgres
--

CREATE TABLE public.plays (
    album_id bigint,
    played_at timestamp with time zone
);


ALTER TABLE public.plays OWNER TO postgres;

--
-- Data for Name: Artists; Type: TABLE DATA; Schema: public; Owner: postgres
--

COPY public."Artists" ("Id", "Name", "Bio", "Active", "Rating") FROM stdin;
1	The Beatles	Legendary rock band from Liverpool	t	9.5
2	Pink Floyd	\\N	t	9.2
3	Led Zeppelin	Hard rock gods	f	\\N
\\.


--
-- Data for Name: Albums; Type: TABLE DATA; Schema: public; Owner: postgres
--

COPY public."Albums" ("Id", "ArtistId", "Title", "Released", "Price") FROM stdin;
1	1	Abbey Road	1969-09-26	19.99
2	1	Sgt. Pepper's	1967-05-26	18.99
3	2	The Dark Side of the Moon	1973-03-01	21.99
\\.


--
-- Data for Name: plays; Type: TABLE DATA; Schema: public; Owner: postgres
--

COPY public.plays (album_id, played_at) FROM stdin;
1	2019-10-29 05:30:00+10
3	2020-01-01 00:00:00+00
\\.


--
-- Name: Artists Artists_pkey; Type: CONSTRAINT; Schema: public; Owner: postgres
--

ALTER TABLE ONLY public."Artists"
    ADD CONSTRAINT "Artists_pkey" PRIMARY KEY ("Id");


--
-- Name: Albums Albums_pkey; Type: CONSTRAINT; Schema: public; Owner: postgres
--

ALTER TABLE ONLY public."Albums"
    ADD CONSTRAINT "Albums_pkey" PRIMARY KEY ("Id");


--
-- Name: IX_Albums_ArtistId; Type: INDEX; Schema: public; Owner: postgres
--

CREATE INDEX "IX_Albums_ArtistId" ON public."Albums" USING btree ("ArtistId");


--
-- Name: Albums Albums_ArtistId_fkey; Type: FK CONSTRAINT; Schema: public; Owner: postgres
--

ALTER TABLE ONLY public."Albums"
    ADD CONSTRAINT "Albums_ArtistId_fkey" FOREIGN KEY ("ArtistId") REFERENCES public."Artists"("Id");


--
-- PostgreSQL database dump complete
--
"""


class RowCollector:
    """Data sink that keeps every converted row."""

    def __init__(self):
        self.rows = []

    def __call__(self, table, cols, vals):
        self.rows.append((table, list(cols), list(vals)))

    def for_table(self, table):
        return [dict(zip(cols, vals)) for t, cols, vals in self.rows if t == table]


@pytest.fixture
def convert():
    """Run both passes over dump text; returns (conv, collected rows)."""

    def run(text, *, location=datetime.timezone.utc, bad_rows_bytes_limit=None):
        kwargs = {}
        if bad_rows_bytes_limit is not None:
            kwargs["bad_rows_bytes_limit"] = bad_rows_bytes_limit
        conv = Conv(**kwargs)
        conv.set_location(location)
        sink = RowCollector()
        r = Reader.from_string(text)
        conv.set_schema_mode()
        process_pg_dump(conv, r)
        r.reset()
        conv.set_data_mode()
        conv.set_data_sink(sink)
        process_pg_dump(conv, r)
        return conv, sink

    return run


@pytest.fixture
def schema_only():
    """Run the schema pass only."""

    def run(text):
        conv = Conv()
        process_pg_dump(conv, Reader.from_string(text))
        return conv

    return run


@pytest.fixture
def pg_dump_path(tmp_path):
    path = tmp_path / "dump.sql"
    path.write_text(SAMPLE_DUMP, encoding="utf-8")
    return str(path)
