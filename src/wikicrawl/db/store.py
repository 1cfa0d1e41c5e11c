"""
Crawl Store

Bundles the page store, alias index, link graph and frontier over one
database so callers open everything with a single call.
"""

import logging
from dataclasses import dataclass

from wikicrawl.core.config import settings
from wikicrawl.core.errors import NotFoundError
from wikicrawl.core.utils import normalize_key
from wikicrawl.db.alias_index import AliasIndex
from wikicrawl.db.frontier import Frontier
from wikicrawl.db.link_graph import EdgeIdentity, LinkGraph
from wikicrawl.db.page_store import Page, PageStore
from wikicrawl.models.stats import CrawlStats

logger = logging.getLogger(__name__)


@dataclass
class CrawlStore:
    db_path: str
    pages: PageStore
    aliases: AliasIndex
    links: LinkGraph
    frontier: Frontier

    def seed(self, key: str, page_id: int | None = None) -> tuple[int, bool]:
        """
        Add a starting page to the frontier.

        The lowercased key is registered as an alias of the page, the same
        form link targets take, so links to the seed resolve without a
        title lookup.

        Returns:
            (page id, True if the page was created)
        """
        page_id, created = self.pages.upsert(key, page_id)
        self.aliases.add_alias(normalize_key(key).lower(), page_id)
        if created:
            logger.info(f"Seeded page {page_id}: {normalize_key(key)}")
        return page_id, created

    def lookup(self, name: str) -> Page:
        """
        Find a page by canonical key, falling back to aliases.

        Raises:
            NotFoundError: neither a key nor an alias matches
        """
        try:
            return self.pages.get_by_key(name)
        except NotFoundError:
            pass
        return self.pages.get(self.aliases.resolve(name))

    def stats(self) -> CrawlStats:
        counts = self.pages.status_counts()
        return CrawlStats(
            pages=counts["pages"],
            explored=counts["explored"],
            bugged=counts["bugged"],
            frontier=self.frontier.size(),
            claimed=self.frontier.claimed_count(),
            aliases=self.aliases.count(),
            links=self.links.count(),
        )


def open_store(
    db_path: str | None = None,
    edge_identity: EdgeIdentity | str | None = None,
    claim_timeout: float | None = None,
) -> CrawlStore:
    """
    Open (and create if needed) a crawl store.

    Args:
        db_path: SQLite file; ignored when DATABASE_URL is set
        edge_identity: Link identity; must match the one the store was
            created with
        claim_timeout: Seconds after which a frontier claim is abandoned

    Raises:
        RuntimeError: store was created with another edge identity
    """
    db_path = db_path or settings.DB_PATH
    pages = PageStore(db_path)
    store = CrawlStore(
        db_path=db_path,
        pages=pages,
        aliases=AliasIndex(db_path),
        links=LinkGraph(db_path, edge_identity),
        frontier=Frontier(pages, claim_timeout),
    )
    logger.info(
        f"Opened crawl store {db_path} (edges: {store.links.edge_identity.value})"
    )
    return store
