"""
Frontier - Pages Waiting To Be Explored

The frontier is derived from page status, not stored separately: a page is
in it while explored = FALSE AND bugged = FALSE. A page enters the frontier
the moment PageStore.upsert commits it.

Workers take pages with next(), which claims them: claimed_at is stamped in
the same transaction that selects them, so no page is handed to two
workers at once. Claims end when the page is completed, marked bugged or
released; claims older than the claim timeout are treated as abandoned.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterable, Iterator

from wikicrawl.core.config import settings
from wikicrawl.core.utils import iter_chunks
from wikicrawl.db.connection import (
    get_connection,
    is_postgres_mode,
    sql_placeholder,
    sql_placeholders,
    store_retry,
    write_transaction,
)
from wikicrawl.db.page_store import IN_CHUNK_SIZE, PageStore

logger = logging.getLogger(__name__)


@dataclass
class FrontierEntry:
    page_id: int
    key: str
    bugged: bool
    claimed: bool


class Frontier:
    """
    Crawl frontier over a PageStore.

    Order is ascending page id, which keeps crawl order reproducible and
    resumable across restarts.
    """

    def __init__(self, pages: PageStore, claim_timeout: float | None = None):
        self.pages = pages
        self.db_path = pages.db_path
        self.claim_timeout = (
            settings.CRAWL_CLAIM_TIMEOUT_SEC if claim_timeout is None else claim_timeout
        )

    def _claim_cutoff(self, now: float) -> float:
        """Claims stamped before this instant are abandoned."""
        if self.claim_timeout <= 0:
            # Claims never expire
            return float("-inf")
        return now - self.claim_timeout

    @store_retry
    def next(self, batch_size: int = 1) -> list[int]:
        """
        Claim up to `batch_size` unexplored, non-bugged pages.

        Returns:
            Claimed page ids, ascending
        """
        if batch_size <= 0:
            return []

        now = time.time()
        cutoff = self._claim_cutoff(now)
        ph = sql_placeholder()

        con = get_connection(self.db_path)
        try:
            with write_transaction(con) as cur:
                if is_postgres_mode():
                    cur.execute(
                        f"""
                        UPDATE pages SET claimed_at = {ph}
                        WHERE id IN (
                            SELECT id FROM pages
                            WHERE explored = FALSE AND bugged = FALSE
                              AND (claimed_at IS NULL OR claimed_at < {ph})
                            ORDER BY id ASC
                            LIMIT {ph}
                            FOR UPDATE SKIP LOCKED
                        )
                        RETURNING id
                        """,
                        (now, cutoff, batch_size),
                    )
                    ids = sorted(row[0] for row in cur.fetchall())
                else:
                    cur.execute(
                        f"""
                        SELECT id FROM pages
                        WHERE explored = FALSE AND bugged = FALSE
                          AND (claimed_at IS NULL OR claimed_at < {ph})
                        ORDER BY id ASC
                        LIMIT {ph}
                        """,
                        (cutoff, batch_size),
                    )
                    ids = [row[0] for row in cur.fetchall()]
                    if ids:
                        cur.execute(
                            f"UPDATE pages SET claimed_at = {ph}"
                            f" WHERE id IN ({sql_placeholders(len(ids))})",
                            (now, *ids),
                        )
        finally:
            con.close()

        if ids:
            logger.debug(f"Claimed {len(ids)} pages: {ids}")
        return ids

    @store_retry
    def release_many(self, page_ids: Iterable[int]) -> int:
        """
        Hand claimed pages back to the frontier (worker cancelled, timed out
        or crashed). Pages already explored or bugged are unaffected.

        Returns:
            Number of claims dropped
        """
        ids = sorted(set(page_ids))
        if not ids:
            return 0

        released = 0
        con = get_connection(self.db_path)
        try:
            with write_transaction(con) as cur:
                for chunk in iter_chunks(ids, IN_CHUNK_SIZE):
                    cur.execute(
                        "UPDATE pages SET claimed_at = NULL"
                        f" WHERE id IN ({sql_placeholders(len(chunk))})"
                        " AND claimed_at IS NOT NULL",
                        tuple(chunk),
                    )
                    released += cur.rowcount
        finally:
            con.close()

        if released:
            logger.info(f"Released {released} claimed pages: {ids}")
        return released

    def release(self, page_id: int) -> bool:
        return self.release_many([page_id]) > 0

    @contextmanager
    def lease(self, batch_size: int = 1) -> Iterator[list[int]]:
        """
        Claim pages for the duration of a block.

        On exit, however the block ends, every page it did not complete or
        mark bugged goes back to the frontier.
        """
        ids = self.next(batch_size)
        try:
            yield ids
        finally:
            # Finished pages already dropped their claim
            self.release_many(ids)

    def complete(self, page_id: int) -> None:
        """Page explored: it leaves the frontier for good."""
        self.pages.mark_explored(page_id)

    def mark_bugged(self, page_id: int) -> None:
        """
        Page could not be fetched or parsed. It leaves future next() results
        without being explored; requeue_bugged() brings it back.
        """
        self.pages.mark_bugged(page_id)

    @store_retry
    def requeue_bugged(self) -> int:
        """
        Put bugged pages back in the frontier for a retry pass. Pages that
        are both bugged and explored stay out.

        Returns:
            Number of pages requeued
        """
        con = get_connection(self.db_path)
        try:
            with write_transaction(con) as cur:
                cur.execute(
                    "UPDATE pages SET bugged = FALSE, claimed_at = NULL"
                    " WHERE bugged = TRUE AND explored = FALSE"
                )
                count = cur.rowcount
        finally:
            con.close()
        logger.info(f"Requeued {count} bugged pages")
        return count

    @store_retry
    def recover_stale_claims(self) -> int:
        """
        Drop every claim. Called at startup to recover from crashes.

        Returns:
            Number of pages recovered
        """
        con = get_connection(self.db_path)
        try:
            with write_transaction(con) as cur:
                cur.execute(
                    "UPDATE pages SET claimed_at = NULL WHERE claimed_at IS NOT NULL"
                )
                count = cur.rowcount
        finally:
            con.close()
        return count

    @store_retry
    def peek(self, limit: int = 10, include_bugged: bool = False) -> list[FrontierEntry]:
        """View frontier entries by ascending id without claiming them."""
        ph = sql_placeholder()
        status = "explored = FALSE" if include_bugged else "explored = FALSE AND bugged = FALSE"
        cutoff = self._claim_cutoff(time.time())

        con = get_connection(self.db_path)
        try:
            cur = con.cursor()
            cur.execute(
                f"""
                SELECT id, title, bugged,
                       CASE WHEN claimed_at IS NOT NULL AND claimed_at >= {ph}
                            THEN 1 ELSE 0 END
                FROM pages
                WHERE {status}
                ORDER BY id ASC
                LIMIT {ph}
                """,
                (cutoff, limit),
            )
            result = [
                FrontierEntry(
                    page_id=row[0],
                    key=row[1],
                    bugged=bool(row[2]),
                    claimed=bool(row[3]),
                )
                for row in cur.fetchall()
            ]
            cur.close()
            return result
        finally:
            con.close()

    @store_retry
    def size(self) -> int:
        """Number of pages waiting, claimed or not."""
        con = get_connection(self.db_path)
        try:
            cur = con.cursor()
            cur.execute(
                "SELECT COUNT(*) FROM pages WHERE explored = FALSE AND bugged = FALSE"
            )
            result = cur.fetchone()[0]
            cur.close()
            return result
        finally:
            con.close()

    @store_retry
    def claimed_count(self) -> int:
        """Number of frontier pages currently held by a live claim."""
        ph = sql_placeholder()
        cutoff = self._claim_cutoff(time.time())
        con = get_connection(self.db_path)
        try:
            cur = con.cursor()
            cur.execute(
                f"""
                SELECT COUNT(*) FROM pages
                WHERE explored = FALSE AND bugged = FALSE
                  AND claimed_at IS NOT NULL AND claimed_at >= {ph}
                """,
                (cutoff,),
            )
            result = cur.fetchone()[0]
            cur.close()
            return result
        finally:
            con.close()

    @store_retry
    def contains(self, page_id: int) -> bool:
        """True if the page is unexplored and not bugged."""
        ph = sql_placeholder()
        con = get_connection(self.db_path)
        try:
            cur = con.cursor()
            cur.execute(
                f"""
                SELECT 1 FROM pages
                WHERE id = {ph} AND explored = FALSE AND bugged = FALSE
                """,
                (page_id,),
            )
            result = cur.fetchone() is not None
            cur.close()
            return result
        finally:
            con.close()
