"""
Wikipedia Client

Fetches article pages by id, extracts their /wiki/ links, and resolves
link targets to (page id, title) through the MediaWiki search API.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from urllib.parse import quote, unquote

import aiohttp
from bs4 import BeautifulSoup
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
    wait_incrementing,
)

from wikicrawl.core.config import settings
from wikicrawl.core.errors import FetchError
from wikicrawl.core.utils import normalize_key
from wikicrawl.db.page_store import Page

logger = logging.getLogger(__name__)

WIKIMEDIA_ERROR_MARKER = "<title>Wikimedia Error</title>"

# Longest search string the API handles reliably
API_MAX_QUERY_LENGTH = 98

# Link targets in these namespaces are not articles
NAMESPACES = (
    "média:",
    "spécial:",
    "discussion:",
    "utilisateur:",
    "discussion utilisateur:",
    "wikipédia:",
    "discussion wikipédia:",
    "fichier:",
    "discussion fichier:",
    "mediawiki:",
    "discussion mediawiki:",
    "modèle:",
    "discussion modèle:",
    "aide:",
    "discussion aide:",
    "catégorie:",
    "discussion catégorie:",
    "portail:",
    "discussion portail:",
    "projet:",
    "discussion projet:",
    "référence:",
    "discussion référence:",
    "timedtext:",
    "timedtext talk:",
    "module:",
    "discussion module:",
    "sujet:",
)

_WG_TITLE = re.compile(r'"wgTitle":\s*"((?:[^"\\]|\\.)*)"')
_WG_ARTICLE_ID = re.compile(r'"wgArticleId":\s*([0-9]+)')


class WikimediaError(FetchError):
    """Wikipedia answered with its overload error page. Worth retrying."""


@dataclass(frozen=True)
class WikiLink:
    """A /wiki/ link: lowercased canonical target and its anchor text."""

    target: str
    display: str | None = None


def extract_wiki_links(html: str) -> list[WikiLink]:
    """
    Extract article links from a Wikipedia page.

    Targets are percent-decoded, stripped of their fragment and lowercased.
    Namespaced targets and subpages are skipped. Duplicate
    (target, display) pairs are kept once, in document order.
    """
    soup = BeautifulSoup(html, "html.parser")
    seen: set[WikiLink] = set()
    links: list[WikiLink] = []

    for a in soup.select('a[href^="/wiki/"]'):
        href = a.get("href")
        if isinstance(href, list):
            href = href[0] if href else None
        if not href:
            continue

        raw_target = unquote(href[len("/wiki/"):].split("#", 1)[0])
        if not raw_target or "/" in raw_target:
            continue
        try:
            target = normalize_key(raw_target).lower()
        except ValueError:
            continue
        if target.startswith(NAMESPACES):
            continue

        display = a.get_text(" ", strip=True) or None
        link = WikiLink(target, display)
        if link not in seen:
            seen.add(link)
            links.append(link)

    return links


async def _get_text(
    session: aiohttp.ClientSession, url: str, params: dict | None = None
) -> str:
    """GET a Wikipedia URL and return the body, raising WikimediaError on overload."""
    try:
        async with session.get(
            url,
            params=params,
            timeout=aiohttp.ClientTimeout(total=settings.CRAWL_TIMEOUT_SEC),
            allow_redirects=True,
        ) as resp:
            body = await resp.text()
            status = resp.status
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise FetchError(f"Network error for {url}: {e}") from e

    if WIKIMEDIA_ERROR_MARKER in body or status in (429, 502, 503, 504):
        raise WikimediaError(f"Wikimedia error (HTTP {status}) for {url}")
    if status != 200:
        raise FetchError(f"HTTP error {status} for {url}")
    return body


@retry(
    retry=retry_if_exception_type(WikimediaError),
    stop=stop_after_attempt(settings.WIKI_MAX_RETRIES),
    wait=wait_fixed(settings.WIKI_RETRY_COOLDOWN_SEC),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def _fetch_article(session: aiohttp.ClientSession, page_id: int) -> str:
    return await _get_text(session, f"{settings.WIKI_BASE_URL}/", {"curid": page_id})


async def fetch_links(session: aiohttp.ClientSession, page: Page) -> list[WikiLink]:
    """
    Fetch an article by id and return its outbound article links.

    Raises:
        FetchError: page could not be fetched after retries
    """
    html = await _fetch_article(session, page.id)

    # Parsing is CPU bound
    loop = asyncio.get_running_loop()
    links = await loop.run_in_executor(None, extract_wiki_links, html)

    if not links:
        logger.warning(f"No links found in Page {page}")
    return links


@retry(
    retry=retry_if_exception_type(WikimediaError),
    stop=stop_after_attempt(settings.WIKI_MAX_RETRIES),
    wait=wait_incrementing(start=settings.WIKI_RETRY_COOLDOWN_SEC, increment=1),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def _search_api(session: aiohttp.ClientSession, query: str) -> tuple[int, str] | None:
    """First search hit as (page id, title), or None when the API finds nothing."""
    params = {
        "action": "query",
        "format": "json",
        "list": "search",
        "utf8": "1",
        "formatversion": "2",
        "srnamespace": "0",
        "srlimit": "1",
        "srsearch": query,
    }
    body = await _get_text(session, f"{settings.WIKI_BASE_URL}/w/api.php", params)
    if not body.lstrip().startswith("{"):
        raise WikimediaError(f"Search API answered with a non-JSON body for {query!r}")

    data = json.loads(body)
    hits = data.get("query", {}).get("search", [])
    if not data.get("batchcomplete") or not hits:
        return None
    return int(hits[0]["pageid"]), hits[0]["title"]


@retry(
    retry=retry_if_exception_type(WikimediaError),
    stop=stop_after_attempt(settings.WIKI_MAX_RETRIES),
    wait=wait_fixed(settings.WIKI_RETRY_COOLDOWN_SEC),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def _search_web(session: aiohttp.ClientSession, target: str) -> tuple[int, str]:
    """Resolve a target through the search page, reading its embedded page config."""
    url = f"{settings.WIKI_BASE_URL}/wiki/Spécial:Recherche/{quote(target, safe='')}"
    body = await _get_text(session, url)

    title_match = _WG_TITLE.search(body)
    id_match = _WG_ARTICLE_ID.search(body)
    if not title_match or not id_match:
        raise FetchError(f"No page config in search page for {target!r}")

    page_id = int(id_match.group(1))
    if page_id == 0:
        raise FetchError(f"No article found for {target!r}")
    title = json.loads(f'"{title_match.group(1)}"')
    return page_id, title


async def lookup_title(session: aiohttp.ClientSession, target: str) -> tuple[int, str]:
    """
    Resolve a link target to the article it points at.

    Returns:
        (page id, canonical title)

    Raises:
        FetchError: no article found, or Wikipedia unreachable after retries
    """
    # Escape search wildcards
    query = target.replace("*", "\\*")

    if len(query) <= API_MAX_QUERY_LENGTH:
        hit = await _search_api(session, query)
        if hit is not None:
            return hit
        logger.debug(f"Search API can't find {target!r}, trying the search page")

    return await _search_web(session, target)
