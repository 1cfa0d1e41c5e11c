"""
Crawl Store Schema

Tables for pages, aliases, links and the id allocator, in SQLite and
PostgreSQL dialects.

The frontier is not a table: it is the set of pages with
explored = FALSE AND bugged = FALSE, served by idx_pages_status.
"""

from pathlib import Path

from wikicrawl.db.connection import (
    execute_schema,
    get_connection,
    is_postgres_mode,
    sql_placeholder,
)

SCHEMA_PG = """
CREATE TABLE IF NOT EXISTS pages (
    id BIGINT PRIMARY KEY,
    title TEXT NOT NULL UNIQUE,
    explored BOOLEAN NOT NULL DEFAULT FALSE,
    bugged BOOLEAN NOT NULL DEFAULT FALSE,
    claimed_at DOUBLE PRECISION
);
CREATE INDEX IF NOT EXISTS idx_pages_status ON pages(explored, bugged, id);
CREATE INDEX IF NOT EXISTS idx_pages_title_fts ON pages USING GIN (to_tsvector('simple', title));

CREATE TABLE IF NOT EXISTS alias (
    alias TEXT PRIMARY KEY,
    page_id BIGINT NOT NULL REFERENCES pages(id)
);
CREATE INDEX IF NOT EXISTS idx_alias_page ON alias(page_id);
CREATE INDEX IF NOT EXISTS idx_alias_fts ON alias USING GIN (to_tsvector('simple', alias));

CREATE TABLE IF NOT EXISTS id_sequence (
    name TEXT PRIMARY KEY,
    value BIGINT NOT NULL
);
INSERT INTO id_sequence (name, value) VALUES ('pages', 0) ON CONFLICT DO NOTHING;

CREATE TABLE IF NOT EXISTS store_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""

SCHEMA_SQLITE = """
CREATE TABLE IF NOT EXISTS pages (
    id INTEGER PRIMARY KEY,
    title TEXT NOT NULL UNIQUE,
    explored BOOLEAN NOT NULL DEFAULT FALSE,
    bugged BOOLEAN NOT NULL DEFAULT FALSE,
    claimed_at REAL
);
CREATE INDEX IF NOT EXISTS idx_pages_status ON pages(explored, bugged, id);

CREATE TABLE IF NOT EXISTS alias (
    alias TEXT PRIMARY KEY,
    page_id INTEGER NOT NULL REFERENCES pages(id)
);
CREATE INDEX IF NOT EXISTS idx_alias_page ON alias(page_id);

CREATE VIRTUAL TABLE IF NOT EXISTS pages_fts USING fts5(
    title,
    page_id UNINDEXED,
    tokenize='unicode61'
);
CREATE VIRTUAL TABLE IF NOT EXISTS alias_fts USING fts5(
    alias,
    page_id UNINDEXED,
    tokenize='unicode61'
);

CREATE TABLE IF NOT EXISTS id_sequence (
    name TEXT PRIMARY KEY,
    value INTEGER NOT NULL
);
INSERT OR IGNORE INTO id_sequence (name, value) VALUES ('pages', 0);

CREATE TABLE IF NOT EXISTS store_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

# Edge identity: pair_only keys links by (linker, linked) and keeps the
# first display seen; pair_plus_display keeps one edge per anchor text.
LINKS_PG = {
    "pair_only": """
CREATE TABLE IF NOT EXISTS links (
    seq BIGSERIAL NOT NULL,
    linker BIGINT NOT NULL REFERENCES pages(id),
    linked BIGINT NOT NULL REFERENCES pages(id),
    display TEXT,
    PRIMARY KEY (linker, linked)
);
CREATE INDEX IF NOT EXISTS idx_links_linker_seq ON links(linker, seq);
CREATE INDEX IF NOT EXISTS idx_links_linked_seq ON links(linked, seq);
CREATE INDEX IF NOT EXISTS idx_links_display_fts ON links USING GIN (to_tsvector('simple', COALESCE(display, '')))
""",
    "pair_plus_display": """
CREATE TABLE IF NOT EXISTS links (
    seq BIGSERIAL NOT NULL,
    linker BIGINT NOT NULL REFERENCES pages(id),
    linked BIGINT NOT NULL REFERENCES pages(id),
    display TEXT NOT NULL DEFAULT '',
    PRIMARY KEY (linker, linked, display)
);
CREATE INDEX IF NOT EXISTS idx_links_linker_seq ON links(linker, seq);
CREATE INDEX IF NOT EXISTS idx_links_linked_seq ON links(linked, seq);
CREATE INDEX IF NOT EXISTS idx_links_display_fts ON links USING GIN (to_tsvector('simple', COALESCE(display, '')))
""",
}

LINKS_SQLITE = {
    "pair_only": """
CREATE TABLE IF NOT EXISTS links (
    linker INTEGER NOT NULL REFERENCES pages(id),
    linked INTEGER NOT NULL REFERENCES pages(id),
    display TEXT,
    PRIMARY KEY (linker, linked)
);
CREATE INDEX IF NOT EXISTS idx_links_linked ON links(linked);
CREATE VIRTUAL TABLE IF NOT EXISTS links_fts USING fts5(
    display,
    linker UNINDEXED,
    linked UNINDEXED,
    tokenize='unicode61'
);
""",
    "pair_plus_display": """
CREATE TABLE IF NOT EXISTS links (
    linker INTEGER NOT NULL REFERENCES pages(id),
    linked INTEGER NOT NULL REFERENCES pages(id),
    display TEXT NOT NULL DEFAULT '',
    PRIMARY KEY (linker, linked, display)
);
CREATE INDEX IF NOT EXISTS idx_links_linked ON links(linked);
CREATE VIRTUAL TABLE IF NOT EXISTS links_fts USING fts5(
    display,
    linker UNINDEXED,
    linked UNINDEXED,
    tokenize='unicode61'
);
""",
}


def init_core_schema(db_path: str) -> None:
    """Create pages, alias, id_sequence and store_meta if missing."""
    if not is_postgres_mode():
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    con = get_connection(db_path)
    try:
        execute_schema(con, SCHEMA_SQLITE, SCHEMA_PG)
    finally:
        con.close()


def init_links_schema(db_path: str, edge_identity: str) -> None:
    """
    Create the links table for the given edge identity.

    Raises:
        RuntimeError: if the store was created with another edge identity
    """
    init_core_schema(db_path)

    ph = sql_placeholder()
    con = get_connection(db_path)
    try:
        cur = con.cursor()
        cur.execute(
            f"INSERT INTO store_meta (key, value) VALUES ('edge_identity', {ph})"
            " ON CONFLICT DO NOTHING",
            (edge_identity,),
        )
        con.commit()
        cur.execute("SELECT value FROM store_meta WHERE key = 'edge_identity'")
        stored = cur.fetchone()[0]
        cur.close()

        if stored != edge_identity:
            raise RuntimeError(
                f"Store {db_path} was created with edge identity '{stored}', "
                f"cannot open it with '{edge_identity}'."
            )

        execute_schema(con, LINKS_SQLITE[edge_identity], LINKS_PG[edge_identity])
    finally:
        con.close()
