"""
Page Store - Canonical Page Identity

Single source of truth for page identity (unique id, unique canonical key)
and crawl status (explored / bugged).
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from wikicrawl.core.errors import DuplicateKeyError, IdentityConflictError, NotFoundError
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
from wikicrawl.db.schema import init_core_schema

logger = logging.getLogger(__name__)

# Upper bound of ids bound into one IN (...) clause
IN_CHUNK_SIZE = 500


@dataclass
class Page:
    id: int
    key: str
    explored: bool = False
    bugged: bool = False

    def __str__(self) -> str:
        title = self.key.replace('"', '\\"')
        return f'{{ "id": {self.id}, "title": "{title}" }}'


def _row_to_page(row: tuple) -> Page:
    return Page(id=row[0], key=row[1], explored=bool(row[2]), bugged=bool(row[3]))


def existing_page_ids(cur: Any, ids: Iterable[int]) -> set[int]:
    """Return the subset of `ids` present in pages, using an open cursor."""
    found: set[int] = set()
    for chunk in iter_chunks(sorted(set(ids)), IN_CHUNK_SIZE):
        cur.execute(
            f"SELECT id FROM pages WHERE id IN ({sql_placeholders(len(chunk))})",
            tuple(chunk),
        )
        found.update(row[0] for row in cur.fetchall())
    return found


class IdAllocator:
    """
    Issues page ids for pages created without an external id.

    Backed by a one-row counter in id_sequence, bumped inside the inserting
    transaction. Never issues an id at or below the largest stored page id,
    so ids supplied by callers (e.g. Wikipedia curids) are not reused.
    """

    def __init__(self, name: str = "pages"):
        self.name = name

    def allocate(self, cur: Any) -> int:
        ph = sql_placeholder()
        if is_postgres_mode():
            cur.execute(
                f"""
                UPDATE id_sequence
                SET value = GREATEST(value, (SELECT COALESCE(MAX(id), 0) FROM pages)) + 1
                WHERE name = {ph}
                RETURNING value
                """,
                (self.name,),
            )
            return cur.fetchone()[0]

        cur.execute(
            f"""
            UPDATE id_sequence
            SET value = MAX(value, (SELECT COALESCE(MAX(id), 0) FROM pages)) + 1
            WHERE name = {ph}
            """,
            (self.name,),
        )
        cur.execute(f"SELECT value FROM id_sequence WHERE name = {ph}", (self.name,))
        return cur.fetchone()[0]


class PageStore:
    """
    Canonical page storage.

    Pages are created on first discovery, never deleted, and only change
    through status transitions:
    - explored: page fetched and its links recorded
    - bugged: page could not be fetched or parsed
    """

    def __init__(self, db_path: str, allocator: IdAllocator | None = None):
        self.db_path = db_path
        self.allocator = allocator or IdAllocator()
        init_core_schema(self.db_path)

    def _id_for_key(self, key: str) -> int | None:
        ph = sql_placeholder()
        con = get_connection(self.db_path)
        try:
            cur = con.cursor()
            cur.execute(f"SELECT id FROM pages WHERE title = {ph}", (key,))
            row = cur.fetchone()
            cur.close()
            return row[0] if row else None
        finally:
            con.close()

    @staticmethod
    def _check_identity(key: str, stored_id: int, page_id: int | None) -> None:
        if page_id is not None and page_id != stored_id:
            raise IdentityConflictError(
                f"key {key!r} is stored as page {stored_id}, not {page_id}"
            )

    @store_retry
    def upsert(self, key: str, page_id: int | None = None) -> tuple[int, bool]:
        """
        Get or create the page for a canonical key.

        Args:
            key: Page title or URL (normalized before lookup)
            page_id: External id to use if the page is created

        Returns:
            (page id, True if this call created the page)

        Raises:
            IdentityConflictError: key stored under another id, or id taken
                by another key
        """
        key = normalize_key(key)

        existing = self._id_for_key(key)
        if existing is not None:
            self._check_identity(key, existing, page_id)
            return existing, False

        con = get_connection(self.db_path)
        try:
            try:
                with write_transaction(con) as cur:
                    new_id = page_id if page_id is not None else self.allocator.allocate(cur)
                    ph = sql_placeholder()
                    execute_insert(
                        cur,
                        f"INSERT INTO pages (id, title) VALUES ({ph}, {ph})",
                        (new_id, key),
                    )
                    if not is_postgres_mode():
                        cur.execute(
                            "INSERT INTO pages_fts (title, page_id) VALUES (?, ?)",
                            (key, new_id),
                        )
            except DuplicateKeyError:
                # Lost a creation race, or the id belongs to another key
                pass
            else:
                logger.debug(f"Created page {new_id}: {key}")
                return new_id, True
        finally:
            con.close()

        winner = self._id_for_key(key)
        if winner is None:
            raise IdentityConflictError(
                f"page id {page_id} already belongs to another key, cannot store {key!r}"
            )
        self._check_identity(key, winner, page_id)
        return winner, False

    def _set_flag(self, page_id: int, column: str) -> None:
        ph = sql_placeholder()
        con = get_connection(self.db_path)
        try:
            with write_transaction(con) as cur:
                cur.execute(
                    f"UPDATE pages SET {column} = TRUE, claimed_at = NULL WHERE id = {ph}",
                    (page_id,),
                )
                updated = cur.rowcount
        finally:
            con.close()
        if updated == 0:
            raise NotFoundError(f"page {page_id} not found")

    @store_retry
    def mark_explored(self, page_id: int) -> None:
        """Mark a page explored and drop its claim. Idempotent."""
        self._set_flag(page_id, "explored")

    @store_retry
    def mark_bugged(self, page_id: int) -> None:
        """Mark a page bugged and drop its claim. Idempotent."""
        self._set_flag(page_id, "bugged")

    @store_retry
    def get(self, page_id: int) -> Page:
        ph = sql_placeholder()
        con = get_connection(self.db_path)
        try:
            cur = con.cursor()
            cur.execute(
                f"SELECT id, title, explored, bugged FROM pages WHERE id = {ph}",
                (page_id,),
            )
            row = cur.fetchone()
            cur.close()
        finally:
            con.close()
        if row is None:
            raise NotFoundError(f"page {page_id} not found")
        return _row_to_page(row)

    @store_retry
    def get_by_key(self, key: str) -> Page:
        key = normalize_key(key)
        ph = sql_placeholder()
        con = get_connection(self.db_path)
        try:
            cur = con.cursor()
            cur.execute(
                f"SELECT id, title, explored, bugged FROM pages WHERE title = {ph}",
                (key,),
            )
            row = cur.fetchone()
            cur.close()
        finally:
            con.close()
        if row is None:
            raise NotFoundError(f"no page with key {key!r}")
        return _row_to_page(row)

    @store_retry
    def get_many(self, page_ids: Iterable[int]) -> dict[int, Page]:
        """Fetch several pages at once. Unknown ids are left out."""
        result: dict[int, Page] = {}
        con = get_connection(self.db_path)
        try:
            cur = con.cursor()
            for chunk in iter_chunks(sorted(set(page_ids)), IN_CHUNK_SIZE):
                cur.execute(
                    "SELECT id, title, explored, bugged FROM pages"
                    f" WHERE id IN ({sql_placeholders(len(chunk))})",
                    tuple(chunk),
                )
                for row in cur.fetchall():
                    result[row[0]] = _row_to_page(row)
            cur.close()
            return result
        finally:
            con.close()

    @store_retry
    def missing(self, page_ids: Iterable[int]) -> set[int]:
        """Return the ids that have no page."""
        wanted = set(page_ids)
        if not wanted:
            return set()
        con = get_connection(self.db_path)
        try:
            cur = con.cursor()
            found = existing_page_ids(cur, wanted)
            cur.close()
            return wanted - found
        finally:
            con.close()

    def exists(self, page_id: int) -> bool:
        return not self.missing([page_id])

    @store_retry
    def list_pages(self, limit: int = 100, offset: int = 0) -> list[Page]:
        """Full page listing ordered by id."""
        ph = sql_placeholder()
        con = get_connection(self.db_path)
        try:
            cur = con.cursor()
            cur.execute(
                f"""
                SELECT id, title, explored, bugged FROM pages
                ORDER BY id ASC
                LIMIT {ph} OFFSET {ph}
                """,
                (limit, offset),
            )
            result = [_row_to_page(row) for row in cur.fetchall()]
            cur.close()
            return result
        finally:
            con.close()

    @store_retry
    def search(self, query: str, limit: int = 20) -> list[Page]:
        """Full-text search over page keys."""
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
                    SELECT id, title, explored, bugged FROM pages
                    WHERE to_tsvector('simple', title) @@ plainto_tsquery('simple', {ph})
                    ORDER BY id ASC
                    LIMIT {ph}
                    """,
                    (query, limit),
                )
            else:
                cur.execute(
                    """
                    SELECT p.id, p.title, p.explored, p.bugged
                    FROM pages_fts f JOIN pages p ON p.id = f.page_id
                    WHERE pages_fts MATCH ?
                    ORDER BY f.rank
                    LIMIT ?
                    """,
                    (match, limit),
                )
            result = [_row_to_page(row) for row in cur.fetchall()]
            cur.close()
            return result
        finally:
            con.close()

    @store_retry
    def status_counts(self) -> dict[str, int]:
        """Count pages by status."""
        con = get_connection(self.db_path)
        try:
            cur = con.cursor()
            cur.execute(
                """
                SELECT COUNT(*),
                       COALESCE(SUM(CASE WHEN explored THEN 1 ELSE 0 END), 0),
                       COALESCE(SUM(CASE WHEN bugged THEN 1 ELSE 0 END), 0)
                FROM pages
                """
            )
            total, explored, bugged = cur.fetchone()
            cur.close()
            return {"pages": total, "explored": explored, "bugged": bugged}
        finally:
            con.close()

    def count(self) -> int:
        return self.status_counts()["pages"]
