"""
Link Graph

Directed edges between pages, optionally labeled with the anchor text used.
Edges are append-only; duplicate writes are no-ops.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator

from wikicrawl.core.config import settings
from wikicrawl.core.errors import DanglingReferenceError, NotFoundError, PathNotFoundError
from wikicrawl.core.utils import iter_chunks
from wikicrawl.db.connection import (
    get_connection,
    is_postgres_mode,
    sql_placeholder,
    sql_placeholders,
    store_retry,
    write_transaction,
)
from wikicrawl.db.fulltext import fts_query
from wikicrawl.db.page_store import IN_CHUNK_SIZE, existing_page_ids
from wikicrawl.db.schema import init_links_schema

logger = logging.getLogger(__name__)

# Linker ids per query while searching paths
PATH_CHUNK_SIZE = 8192


class EdgeIdentity(str, Enum):
    """What makes two links the same edge."""

    PAIR_ONLY = "pair_only"
    PAIR_PLUS_DISPLAY = "pair_plus_display"


@dataclass(frozen=True)
class Edge:
    linker: int
    linked: int
    display: str | None = None


@dataclass(frozen=True)
class PathStep:
    """One page on a path, with the anchor text that led to it."""

    page_id: int
    title: str
    display: str | None = None


class EdgeSequence:
    """
    Lazy view over the edges leaving or entering one page.

    Rows are read in insertion order, one page of `page_size` at a time.
    Iterating again restarts from the first edge.
    """

    def __init__(self, graph: "LinkGraph", page_id: int, direction: str, page_size: int = 500):
        self.graph = graph
        self.page_id = page_id
        self.direction = direction
        self.page_size = page_size

    def __iter__(self) -> Iterator[Edge]:
        after = 0
        while True:
            rows = self.graph._edge_rows(self.page_id, self.direction, after, self.page_size)
            for seq, linker, linked, display in rows:
                yield Edge(linker, linked, self.graph._from_stored(display))
            if len(rows) < self.page_size:
                return
            after = rows[-1][0]

    def __repr__(self) -> str:
        return f"EdgeSequence(page_id={self.page_id}, direction={self.direction!r})"


class LinkGraph:
    """
    Link storage.

    With EdgeIdentity.PAIR_ONLY there is one edge per (linker, linked) and
    the first display text recorded is kept. With PAIR_PLUS_DISPLAY each
    distinct display text is its own edge; a missing display is stored as ''.
    """

    def __init__(self, db_path: str, edge_identity: EdgeIdentity | str | None = None):
        self.db_path = db_path
        self.edge_identity = EdgeIdentity(edge_identity or settings.CRAWL_EDGE_IDENTITY)
        init_links_schema(self.db_path, self.edge_identity.value)

    @property
    def _seq(self) -> str:
        return "seq" if is_postgres_mode() else "rowid"

    def _to_stored(self, display: str | None) -> str | None:
        if display is not None:
            display = display.strip()
        if self.edge_identity is EdgeIdentity.PAIR_PLUS_DISPLAY:
            return display or ""
        return display or None

    @staticmethod
    def _from_stored(display: str | None) -> str | None:
        return display or None

    def add_edge(self, linker: int, linked: int, display: str | None = None) -> bool:
        """
        Record a link. Self-loops are allowed.

        Returns:
            True if a new edge was stored, False if it already existed

        Raises:
            DanglingReferenceError: an endpoint is not a stored page
        """
        return self.add_edges([(linker, linked, display)]) == 1

    @store_retry
    def add_edges(self, edges: Iterable[tuple[int, int, str | None]]) -> int:
        """
        Record several links in one transaction.

        All endpoints are checked first; if any is missing nothing is written.

        Returns:
            Number of new edges stored
        """
        rows = [(linker, linked, self._to_stored(display)) for linker, linked, display in edges]
        if not rows:
            return 0

        endpoints = {r[0] for r in rows} | {r[1] for r in rows}
        ph = sql_placeholder()
        added = 0

        con = get_connection(self.db_path)
        try:
            with write_transaction(con) as cur:
                missing = endpoints - existing_page_ids(cur, endpoints)
                if missing:
                    raise DanglingReferenceError(missing)

                for linker, linked, display in rows:
                    cur.execute(
                        f"""
                        INSERT INTO links (linker, linked, display)
                        VALUES ({ph}, {ph}, {ph})
                        ON CONFLICT DO NOTHING
                        """,
                        (linker, linked, display),
                    )
                    if cur.rowcount > 0:
                        added += 1
                        if display and not is_postgres_mode():
                            cur.execute(
                                "INSERT INTO links_fts (display, linker, linked) VALUES (?, ?, ?)",
                                (display, linker, linked),
                            )
        finally:
            con.close()

        logger.debug(f"Stored {added}/{len(rows)} edges")
        return added

    @store_retry
    def _edge_rows(self, page_id: int, direction: str, after: int, limit: int) -> list[tuple]:
        column = "linker" if direction == "out" else "linked"
        ph = sql_placeholder()
        con = get_connection(self.db_path)
        try:
            cur = con.cursor()
            cur.execute(
                f"""
                SELECT {self._seq}, linker, linked, display FROM links
                WHERE {column} = {ph} AND {self._seq} > {ph}
                ORDER BY {self._seq} ASC
                LIMIT {ph}
                """,
                (page_id, after, limit),
            )
            result = cur.fetchall()
            cur.close()
            return result
        finally:
            con.close()

    def outbound_edges(self, page_id: int) -> EdgeSequence:
        """Edges leaving a page, in insertion order."""
        return EdgeSequence(self, page_id, "out")

    def inbound_edges(self, page_id: int) -> EdgeSequence:
        """Edges entering a page ("what links here"), in insertion order."""
        return EdgeSequence(self, page_id, "in")

    @store_retry
    def _outbound_of(self, linker_ids: list[int]) -> list[tuple]:
        con = get_connection(self.db_path)
        try:
            cur = con.cursor()
            cur.execute(
                f"""
                SELECT linker, linked, display FROM links
                WHERE linker IN ({sql_placeholders(len(linker_ids))})
                ORDER BY {self._seq} ASC
                """,
                tuple(linker_ids),
            )
            result = cur.fetchall()
            cur.close()
            return result
        finally:
            con.close()

    @store_retry
    def _titles(self, page_ids: Iterable[int]) -> dict[int, str]:
        con = get_connection(self.db_path)
        try:
            cur = con.cursor()
            titles: dict[int, str] = {}
            for chunk in iter_chunks(sorted(set(page_ids)), IN_CHUNK_SIZE):
                cur.execute(
                    f"SELECT id, title FROM pages WHERE id IN ({sql_placeholders(len(chunk))})",
                    tuple(chunk),
                )
                titles.update({row[0]: row[1] for row in cur.fetchall()})
            cur.close()
            return titles
        finally:
            con.close()

    def shortest_path(
        self, start: int, end: int, max_depth: int | None = None
    ) -> list[PathStep]:
        """
        Find a shortest chain of stored links from `start` to `end`.

        Breadth-first, depth by depth. The first time a page is reached is
        on one of the shortest paths to it, so only that parent is kept.

        Raises:
            NotFoundError: start or end is not a stored page
            PathNotFoundError: end is not reachable from start
        """
        titles = self._titles([start, end])
        for page_id in (start, end):
            if page_id not in titles:
                raise NotFoundError(f"page {page_id} not found")

        if start == end:
            return [PathStep(start, titles[start])]

        parents: dict[int, tuple[int, str | None]] = {start: (start, None)}
        layer = [start]
        depth = 0
        found = False

        while layer and not found:
            if max_depth is not None and depth >= max_depth:
                break
            depth += 1
            logger.info(f"Exploring depth {depth} ({len(layer)} pages)")
            next_layer: list[int] = []
            for chunk in iter_chunks(layer, PATH_CHUNK_SIZE):
                for linker, linked, display in self._outbound_of(chunk):
                    if linked in parents:
                        continue
                    parents[linked] = (linker, self._from_stored(display))
                    next_layer.append(linked)
                    if linked == end:
                        found = True
                        break
                if found:
                    break
            layer = next_layer

        if not found:
            raise PathNotFoundError(f"no path from page {start} to page {end}")

        # Backtrack from end to start
        chain: list[tuple[int, str | None]] = []
        current = end
        while current != start:
            parent, display = parents[current]
            chain.append((current, display))
            current = parent
        chain.append((start, None))
        chain.reverse()

        titles = self._titles(page_id for page_id, _ in chain)
        return [PathStep(page_id, titles[page_id], display) for page_id, display in chain]

    @store_retry
    def search_display(self, query: str, limit: int = 20) -> list[Edge]:
        """Full-text search over anchor texts."""
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
                    SELECT linker, linked, display FROM links
                    WHERE to_tsvector('simple', COALESCE(display, ''))
                          @@ plainto_tsquery('simple', {ph})
                    ORDER BY seq ASC
                    LIMIT {ph}
                    """,
                    (query, limit),
                )
            else:
                cur.execute(
                    """
                    SELECT linker, linked, display FROM links_fts
                    WHERE links_fts MATCH ?
                    ORDER BY rank
                    LIMIT ?
                    """,
                    (match, limit),
                )
            result = [Edge(row[0], row[1], row[2]) for row in cur.fetchall()]
            cur.close()
            return result
        finally:
            con.close()

    @store_retry
    def count(self) -> int:
        con = get_connection(self.db_path)
        try:
            cur = con.cursor()
            cur.execute("SELECT COUNT(*) FROM links")
            result = cur.fetchone()[0]
            cur.close()
            return result
        finally:
            con.close()
