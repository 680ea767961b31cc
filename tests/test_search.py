import asyncio

import httpx
import pytest

from content_refresher.errors import FetchFailed
from content_refresher.search import ReferenceFinder, SearchClient, is_blocked
from content_refresher.settings import SearchSettings

ORGANIC = [
    {"link": "https://www.who.int/report", "title": "WHO report"},
    {"link": "https://www.reddit.com/r/travel", "title": "Reddit thread"},
    {"link": "https://example.com/own-post", "title": "Our own post"},
    {"link": "https://dead.org/page", "title": "Dead link"},
    {"link": "https://www.who.int/report", "title": "WHO report (dupe)"},
]


def make_finder(handler, max_references=12):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    search = SearchClient(SearchSettings(api_key="k"), client)
    return ReferenceFinder(search, site_url="https://example.com", max_references=max_references, current_year=2026)


def handler(request):
    if request.method == "POST":
        assert request.headers["X-API-KEY"] == "k"
        return httpx.Response(200, json={"organic": ORGANIC})
    if request.url.host == "dead.org":
        return httpx.Response(404)
    assert request.headers["Range"] == "bytes=0-1024"
    return httpx.Response(206)


def test_find_keeps_only_reachable_outside_sources():
    refs = asyncio.run(make_finder(handler).find("budget travel"))
    assert [(r.url, r.source) for r in refs] == [("https://www.who.int/report", "who.int")]


def test_search_failure_yields_nothing():
    def down(request):
        return httpx.Response(500, text="oops")

    assert asyncio.run(make_finder(down).find("budget travel")) == []


def test_unconfigured_client():
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    assert not SearchClient(SearchSettings(api_key=""), client).configured


def test_blocklist():
    assert is_blocked("reddit.com")
    assert not is_blocked("who.int")


def test_unreadable_search_reply_yields_nothing():
    def html_reply(request):
        return httpx.Response(200, text="<html>captcha</html>", headers={"Content-Type": "text/html"})

    assert asyncio.run(make_finder(html_reply).find("budget travel")) == []


def test_unreadable_search_reply_is_fetch_failed():
    def wrong_shape(request):
        return httpx.Response(200, json={"organic": "none"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(wrong_shape))
    with pytest.raises(FetchFailed):
        asyncio.run(SearchClient(SearchSettings(api_key="k"), client).search("q"))
