"""
Alias Index

Maps alternate names (redirects, lowercased link targets) to one canonical
page id. Mappings are immutable once written.
"""

import logging
from typing import Iterable

from wikicrawl.core.errors import (
    ConflictError,
    DanglingReferenceError,
    DuplicateKeyError,
    NotFoundError,
)
from wikicrawl.core.utils import iter_chunks, normalize_key
from wikicrawl.db.connection import (
    execute_insert,
    get_connection,
    is_postgres_mode,
    sql_placeholder,
    sql_placeholders,
    store_retry,
    write_transaction,
)
from wikicrawl.db.fulltext import fts_query
from wikicrawl.db.page_store import IN_CHUNK_SIZE, existing_page_ids
from wikicrawl.db.schema import init_core_schema

logger = logging.getLogger(__name__)


class AliasIndex:
    """Alias -> page id storage."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        init_core_schema(self.db_path)

    def _lookup(self, alias: str) -> int | None:
        ph = sql_placeholder()
        con = get_connection(self.db_path)
        try:
            cur = con.cursor()
            cur.execute(f"SELECT page_id FROM alias WHERE alias = {ph}", (alias,))
            row = cur.fetchone()
            cur.close()
            return row[0] if row else None
        finally:
            con.close()

    @staticmethod
    def _check_same(alias: str, existing: int, page_id: int) -> None:
        if existing != page_id:
            raise ConflictError(alias, existing, page_id)

    @store_retry
    def add_alias(self, alias: str, page_id: int) -> bool:
        """
        Map an alias to a page.

        Returns:
            True if the mapping was created, False if it already existed

        Raises:
            ConflictError: alias already maps to a different page
            DanglingReferenceError: page does not exist
        """
        alias = normalize_key(alias)

        existing = self._lookup(alias)
        if existing is not None:
            self._check_same(alias, existing, page_id)
            return False

        ph = sql_placeholder()
        con = get_connection(self.db_path)
        try:
            try:
                with write_transaction(con) as cur:
                    if not existing_page_ids(cur, [page_id]):
                        raise DanglingReferenceError([page_id])
                    execute_insert(
                        cur,
                        f"INSERT INTO alias (alias, page_id) VALUES ({ph}, {ph})",
                        (alias, page_id),
                    )
                    if not is_postgres_mode():
                        cur.execute(
                            "INSERT INTO alias_fts (alias, page_id) VALUES (?, ?)",
                            (alias, page_id),
                        )
            except DuplicateKeyError:
                # Another writer added this alias first
                pass
            else:
                logger.debug(f"Alias {alias!r} -> {page_id}")
                return True
        finally:
            con.close()

        existing = self._lookup(alias)
        if existing is None:
            raise DanglingReferenceError([page_id])
        self._check_same(alias, existing, page_id)
        return False

    @store_retry
    def resolve(self, alias: str) -> int:
        """Return the page id for an alias, or raise NotFoundError."""
        page_id = self._lookup(normalize_key(alias))
        if page_id is None:
            raise NotFoundError(f"unknown alias {alias!r}")
        return page_id

    @store_retry
    def resolve_many(self, aliases: Iterable[str]) -> dict[str, int]:
        """
        Resolve several aliases at once.

        Returns:
            Mapping of normalized alias -> page id, for known aliases only
        """
        keys = sorted({normalize_key(a) for a in aliases})
        result: dict[str, int] = {}
        if not keys:
            return result

        con = get_connection(self.db_path)
        try:
            cur = con.cursor()
            for chunk in iter_chunks(keys, IN_CHUNK_SIZE):
                cur.execute(
                    "SELECT alias, page_id FROM alias"
                    f" WHERE alias IN ({sql_placeholders(len(chunk))})",
                    tuple(chunk),
                )
                result.update({row[0]: row[1] for row in cur.fetchall()})
            cur.close()
            return result
        finally:
            con.close()

    @store_retry
    def aliases_for(self, page_id: int) -> list[str]:
        """All aliases of one page, sorted."""
        ph = sql_placeholder()
        con = get_connection(self.db_path)
        try:
            cur = con.cursor()
            cur.execute(
                f"SELECT alias FROM alias WHERE page_id = {ph} ORDER BY alias",
                (page_id,),
            )
            result = [row[0] for row in cur.fetchall()]
            cur.close()
            return result
        finally:
            con.close()

    @store_retry
    def search(self, query: str, limit: int = 20) -> list[tuple[str, int]]:
        """Full-text search over aliases. Returns (alias, page id) pairs."""
        match = fts_query(query)
        if not match:
            return []

        ph = sql_placeholder()
        con = get_connection(self.db_path)
        try:
            cur = con.cursor()
            if is_postgres_mode():
                cur.execute(
                    f"""
                    SELECT alias, page_id FROM alias
                    WHERE to_tsvector('simple', alias) @@ plainto_tsquery('simple', {ph})
                    ORDER BY alias
                    LIMIT {ph}
                    """,
                    (query, limit),
                )
            else:
                cur.execute(
                    """
                    SELECT alias, page_id FROM alias_fts
                    WHERE alias_fts MATCH ?
                    ORDER BY rank
                    LIMIT ?
                    """,
                    (match, limit),
                )
            result = [(row[0], row[1]) for row in cur.fetchall()]
            cur.close()
            return result
        finally:
            con.close()

    @store_retry
    def count(self) -> int:
        con = get_connection(self.db_path)
        try:
            cur = con.cursor()
            cur.execute("SELECT COUNT(*) FROM alias")
            result = cur.fetchone()[0]
            cur.close()
            return result
        finally:
            con.close()
