"""
Wikipedia Client Tests

Link extraction and title lookup against mocked aiohttp sessions.
"""

import json

import aiohttp
import pytest
from unittest.mock import AsyncMock, MagicMock

from wikicrawl.core.errors import FetchError
from wikicrawl.db.page_store import Page
from wikicrawl.services.wikipedia import (
    WikiLink,
    WikimediaError,
    extract_wiki_links,
    fetch_links,
    lookup_title,
)

ARTICLE_HTML = """
<html><body>
  <a href="/wiki/Paris">Paris</a>
  <a href="/wiki/Paris">capitale</a>
  <a href="/wiki/Paris#Histoire">Paris</a>
  <a href="/wiki/Tour_Eiffel">la tour</a>
  <a href="/wiki/%C3%8Ele-de-France">Île-de-France</a>
  <a href="/wiki/Cat%C3%A9gorie:France">Catégorie</a>
  <a href="/wiki/Fichier:Flag.svg">drapeau</a>
  <a href="/wiki/Discussion_utilisateur:Bob">Bob</a>
  <a href="/wiki/Paris/Sous-page">sous-page</a>
  <a href="https://en.wikipedia.org/wiki/France">France</a>
  <a href="/w/index.php?title=France">edit</a>
  <a href="/wiki/Lyon"><img src="lyon.png"></a>
</body></html>
"""

ERROR_HTML = "<html><head><title>Wikimedia Error</title></head></html>"

WEB_SEARCH_HTML = (
    '<script>RLCONF={"wgTitle":"Tour \\"Eiffel\\"","wgCurRevisionId":1,'
    '"wgArticleId":4641,"wgRevisionId":1};</script>'
)


def _session(*bodies, status=200):
    """Session whose successive GETs return the given bodies."""
    session = MagicMock()
    response = AsyncMock()
    response.status = status
    response.text = AsyncMock(side_effect=list(bodies))
    session.get.return_value.__aenter__.return_value = response
    return session


def _api_body(*hits):
    return json.dumps(
        {
            "batchcomplete": True,
            "query": {"search": [{"ns": 0, "title": t, "pageid": i} for t, i in hits]},
        }
    )


class TestExtractWikiLinks:
    """Test article link extraction."""

    def test_extracts_article_links(self):
        """Targets are decoded, lowercased and deduped on (target, display)."""
        assert extract_wiki_links(ARTICLE_HTML) == [
            WikiLink("paris", "Paris"),
            WikiLink("paris", "capitale"),
            WikiLink("tour eiffel", "la tour"),
            WikiLink("île-de-france", "Île-de-France"),
            WikiLink("lyon", None),
        ]

    def test_no_links(self):
        """Pages without article links give an empty list."""
        assert extract_wiki_links("<html><body><p>vide</p></body></html>") == []

    def test_escapes_decoded_once(self):
        """An escaped percent sign in an href stays a literal percent."""
        html = '<a href="/wiki/Taux_50%2541">taux</a>'
        assert extract_wiki_links(html) == [WikiLink("taux 50%41", "taux")]


class TestFetchLinks:
    """Test fetching an article by id."""

    @pytest.mark.asyncio
    async def test_fetch(self):
        """The article is fetched by curid and its links extracted."""
        session = _session(ARTICLE_HTML)
        links = await fetch_links(session, Page(id=1095, key="France"))

        assert WikiLink("tour eiffel", "la tour") in links
        args, kwargs = session.get.call_args
        assert kwargs["params"] == {"curid": 1095}

    @pytest.mark.asyncio
    async def test_retries_wikimedia_error(self):
        """Overload error pages are retried."""
        session = _session(ERROR_HTML, ARTICLE_HTML)
        links = await fetch_links(session, Page(id=1095, key="France"))

        assert links
        assert session.get.call_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self):
        """Persistent overload surfaces as a FetchError."""
        session = _session(*[ERROR_HTML] * 10)
        with pytest.raises(WikimediaError):
            await fetch_links(session, Page(id=1095, key="France"))

    @pytest.mark.asyncio
    async def test_http_error_not_retried(self):
        """Client errors fail at once."""
        session = _session("not found", status=404)
        with pytest.raises(FetchError):
            await fetch_links(session, Page(id=1095, key="France"))
        assert session.get.call_count == 1

    @pytest.mark.asyncio
    async def test_network_error(self):
        """Connection failures become FetchError."""
        session = MagicMock()
        session.get.side_effect = aiohttp.ClientError("connection reset")
        with pytest.raises(FetchError):
            await fetch_links(session, Page(id=1095, key="France"))


class TestLookupTitle:
    """Test link target resolution."""

    @pytest.mark.asyncio
    async def test_api_hit(self):
        """The first search hit gives id and title."""
        session = _session(_api_body(("Paris", 681159)))
        assert await lookup_title(session, "paris") == (681159, "Paris")

        args, kwargs = session.get.call_args
        assert args[0].endswith("/w/api.php")
        assert kwargs["params"]["srsearch"] == "paris"
        assert kwargs["params"]["srlimit"] == "1"

    @pytest.mark.asyncio
    async def test_api_error_page_retried(self):
        """Non-JSON answers from the API are retried."""
        session = _session(ERROR_HTML, _api_body(("Paris", 681159)))
        assert await lookup_title(session, "paris") == (681159, "Paris")
        assert session.get.call_count == 2

    @pytest.mark.asyncio
    async def test_web_fallback_when_api_empty(self):
        """Empty API results fall back to the search page."""
        session = _session(_api_body(), WEB_SEARCH_HTML)
        assert await lookup_title(session, "tour eiffel") == (4641, 'Tour "Eiffel"')
        assert session.get.call_count == 2

    @pytest.mark.asyncio
    async def test_long_query_goes_to_web(self):
        """Queries too long for the API use the search page directly."""
        session = _session(WEB_SEARCH_HTML)
        assert await lookup_title(session, "x" * 120) == (4641, 'Tour "Eiffel"')

        args, _ = session.get.call_args
        assert "/wiki/Sp" in args[0]
        assert session.get.call_count == 1

    @pytest.mark.asyncio
    async def test_no_article(self):
        """A search page for no article is a FetchError."""
        body = '"wgTitle":"Recherche","wgArticleId":0,'
        session = _session(_api_body(), body)
        with pytest.raises(FetchError):
            await lookup_title(session, "zzzz")
