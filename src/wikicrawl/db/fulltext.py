"""
Full-Text Query Helpers

SQLite keeps FTS5 side tables (pages_fts, alias_fts, links_fts) written by
the components next to their rows; PostgreSQL uses GIN indexes over
to_tsvector('simple', ...) and needs no side tables.
"""

import re

_TOKEN = re.compile(r"\w+", re.UNICODE)


def fts_query(text: str) -> str:
    """
    Turn free text into an FTS5 MATCH expression.

    Every word becomes a quoted term and terms are ANDed, so user input
    cannot inject FTS5 operators. Returns "" when there is nothing to match.
    """
    tokens = _TOKEN.findall(text or "")
    return " ".join(f'"{token}"' for token in tokens)
