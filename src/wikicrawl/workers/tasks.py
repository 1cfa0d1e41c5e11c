"""
Background Crawler Tasks

Worker loop that claims pages from the frontier, explores them and records
the discovered pages, aliases and links.
"""

import asyncio
import logging

import aiohttp

from wikicrawl.core.config import settings
from wikicrawl.core.errors import ConflictError, FetchError, IdentityConflictError
from wikicrawl.core.log import setup_logging
from wikicrawl.core.utils import normalize_key
from wikicrawl.db.store import CrawlStore, open_store
from wikicrawl.services.wikipedia import fetch_links, lookup_title

logger = logging.getLogger(__name__)


async def _find_page(
    session: aiohttp.ClientSession, target: str, lookup_sem: asyncio.Semaphore
) -> tuple[str, tuple[int, str] | None]:
    async with lookup_sem:
        try:
            return target, await lookup_title(session, target)
        except FetchError as e:
            logger.warning(f"Can't find page for link {target!r}: {e}")
            return target, None


def _register(store: CrawlStore, target: str, found_id: int, title: str) -> tuple[int, bool]:
    """Store a page found by title lookup and alias the link target to it."""
    if store.pages.exists(found_id):
        # Found again under another link target
        page_id, created = found_id, False
    else:
        page_id, created = store.pages.upsert(title, found_id)

    try:
        store.aliases.add_alias(target, page_id)
    except ConflictError as e:
        # Another worker aliased this target first; keep its mapping
        logger.warning(str(e))
        page_id = e.existing_page_id
    return page_id, created


async def process_page(
    session: aiohttp.ClientSession,
    store: CrawlStore,
    page_id: int,
    lookup_sem: asyncio.Semaphore,
) -> bool:
    """
    Explore one claimed page: fetch, extract links, resolve targets,
    record pages, aliases and edges, then mark the page explored.

    Returns:
        True if the page was explored, False if it was marked bugged
    """
    page = store.pages.get(page_id)
    logger.info(f"Exploring Page {page}")

    try:
        links = await fetch_links(session, page)
    except FetchError as e:
        logger.warning(f"Exploring Page {page} failed: {e}")
        store.frontier.mark_bugged(page_id)
        return False

    if not links:
        store.frontier.mark_bugged(page_id)
        return False

    keys = {normalize_key(link.target) for link in links}
    known = store.aliases.resolve_many(keys)
    unknown = sorted(keys - known.keys())
    logger.info(f"Found {len(keys)} links ({len(known)} old pages) in Page {page}")

    new_pages = 0
    if unknown:
        found = await asyncio.gather(
            *(_find_page(session, target, lookup_sem) for target in unknown)
        )
        for target, hit in found:
            if hit is None:
                continue
            linked_id, created = _register(store, target, *hit)
            known[target] = linked_id
            new_pages += created

    edges = []
    for link in links:
        linked_id = known.get(normalize_key(link.target))
        if linked_id is not None:
            edges.append((page_id, linked_id, link.display))
    added = store.links.add_edges(edges)

    store.frontier.complete(page_id)
    logger.info(
        f"Explored Page {page}: {new_pages} new pages, {added} new links"
    )
    return True


def _record_failure(store: CrawlStore, attempts: dict[int, int], page_id: int) -> None:
    """Release the page for another try, or mark it bugged after too many."""
    count = attempts.get(page_id, 0) + 1
    if count >= settings.CRAWL_MAX_ATTEMPTS:
        logger.warning(f"Marking page {page_id} bugged after {count} failed attempts")
        attempts.pop(page_id, None)
        store.frontier.mark_bugged(page_id)
    else:
        attempts[page_id] = count
        store.frontier.release(page_id)


async def worker_loop(
    store: CrawlStore | None = None,
    concurrency: int | None = None,
    stop_event: asyncio.Event | None = None,
):
    """
    Main crawler worker loop.

    Args:
        store: Crawl store to work on. If None, the store is opened from
            settings and logging is set up under LOG_DIR for this run
        concurrency: Number of pages explored at once
        stop_event: When set, workers finish their current page and stop

    Runs until the frontier is empty and no page is in flight, or until
    stop_event is set.
    """
    if store is None:
        setup_logging(settings.LOG_DIR, settings.LOG_LEVEL)
        store = open_store()
    concurrency = concurrency or settings.CRAWL_EXPLORING_PAGES
    stop_event = stop_event or asyncio.Event()

    logger.info(f"Worker loop started with concurrency={concurrency}")

    # Recover claims left by a previous crash
    recovered = store.frontier.recover_stale_claims()
    if recovered:
        logger.info(f"Recovered {recovered} claimed pages back to the frontier")

    logger.info(store.stats().summary())

    lookup_sem = asyncio.Semaphore(settings.CRAWL_NEW_PAGES)
    attempts: dict[int, int] = {}
    explored = 0

    async def worker(n: int):
        nonlocal explored
        while not stop_event.is_set():
            ids = store.frontier.next(1)
            if not ids:
                if store.frontier.claimed_count() == 0:
                    logger.info(f"Worker {n}: frontier is empty")
                    return
                # Other workers may still discover pages
                await asyncio.sleep(settings.CRAWL_IDLE_SLEEP_SEC)
                continue

            page_id = ids[0]
            try:
                await asyncio.wait_for(
                    process_page(session, store, page_id, lookup_sem),
                    timeout=settings.CRAWL_PAGE_TIMEOUT_SEC,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    f"Page {page_id} timed out after {settings.CRAWL_PAGE_TIMEOUT_SEC}s"
                )
                _record_failure(store, attempts, page_id)
            except asyncio.CancelledError:
                store.frontier.release(page_id)
                raise
            except IdentityConflictError:
                logger.critical(f"Page identity broken while exploring page {page_id}")
                store.frontier.release(page_id)
                raise
            except Exception as e:
                logger.error(f"Unexpected error processing page {page_id}: {e}", exc_info=True)
                _record_failure(store, attempts, page_id)
            else:
                attempts.pop(page_id, None)
                explored += 1
                if explored % settings.CRAWL_STATS_EVERY == 0:
                    logger.info(store.stats().summary())

    connector = aiohttp.TCPConnector(
        limit_per_host=concurrency + settings.CRAWL_NEW_PAGES,
        ttl_dns_cache=300,
        enable_cleanup_closed=True,
    )

    async with aiohttp.ClientSession(
        headers={"User-Agent": settings.CRAWL_USER_AGENT}, connector=connector
    ) as session:
        tasks = [asyncio.create_task(worker(n)) for n in range(concurrency)]
        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            logger.info("Worker loop cancelled")
            raise
        except Exception as e:
            logger.error(f"Worker loop error: {e}", exc_info=True)
            raise
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    logger.info(store.stats().summary())
    logger.info("Worker loop stopped")
