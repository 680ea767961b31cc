# content_refresher/search.py

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from .errors import FetchFailed, FetchTimeout, NetworkError
from .models import Reference
from .settings import SearchSettings
from .utils.text import domain_of

logger = logging.getLogger(__name__)

BROWSER_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

BLOCKED_DOMAINS = [
    "reddit.com", "quora.com", "twitter.com", "facebook.com", "instagram.com", "tiktok.com",
    "youtube.com", "vimeo.com", "pinterest.com", "tumblr.com",
    "amazon.com", "ebay.com", "walmart.com", "etsy.com",
    "tripadvisor.com", "yelp.com",
    "researchgate.net", "academia.edu",
    "scribd.com", "slideshare.net", "issuu.com", "yumpu.com",
    "medium.com", "linkedin.com",
]


def is_blocked(domain: str) -> bool:
    return any(b in domain for b in BLOCKED_DOMAINS)


class SearchClient:
    """Serper-compatible web search plus a cheap reachability probe."""

    def __init__(self, settings: SearchSettings, client: httpx.AsyncClient):
        self.settings = settings
        self.client = client

    @property
    def configured(self) -> bool:
        return bool(self.settings.api_key)

    async def search(self, query: str) -> List[Dict[str, Any]]:
        try:
            r = await self.client.post(
                self.settings.endpoint,
                headers={"X-API-KEY": self.settings.api_key, "Content-Type": "application/json"},
                json={"q": query, "num": self.settings.results_per_query},
                timeout=30.0,
            )
        except httpx.TimeoutException as e:
            raise FetchTimeout(f"search timed out: {query[:60]}") from e
        except httpx.HTTPError as e:
            raise FetchFailed(f"search failed: {e}") from e
        if r.status_code >= 400:
            raise FetchFailed(f"search -> {r.status_code}: {r.text[:200]}")
        try:
            organic = (r.json() or {}).get("organic") or []
        except (ValueError, AttributeError) as e:
            raise FetchFailed(f"search returned an unreadable reply: {e}") from e
        if not isinstance(organic, list):
            raise FetchFailed(f"search returned unexpected 'organic': {type(organic).__name__}")
        return [o for o in organic if isinstance(o, dict)]

    async def verify_reachable(self, url: str) -> bool:
        """True only for a 2xx answer to a GET bounded to the first 1 KB."""
        if not url or not url.startswith("http"):
            return False
        try:
            r = await self.client.get(
                url,
                headers={"User-Agent": BROWSER_UA, "Range": "bytes=0-1024"},
                timeout=self.settings.verify_timeout,
                follow_redirects=True,
            )
        except httpx.HTTPError as e:
            logger.debug("Reachability check failed for %s: %s", url, e)
            return False
        return 200 <= r.status_code < 300


class ReferenceFinder:
    """Search for authoritative sources on a topic and keep only the ones that answer."""

    def __init__(
        self,
        search: SearchClient,
        *,
        site_url: str = "",
        max_references: int = 12,
        current_year: Optional[int] = None,
    ):
        self.search = search
        self.site_domain = domain_of(site_url) if site_url else ""
        self.max_references = max_references
        self.current_year = current_year or datetime.now().year

    def _queries(self, topic: str) -> List[str]:
        y = self.current_year
        return [
            f'{topic} "research" "data" "statistics" {y} -site:youtube.com -site:pinterest.com -site:quora.com',
            f'{topic} "report" "study" "findings" {y - 1}..{y} -site:youtube.com',
            f"{topic} definitive guide",
        ]

    async def find(self, topic: str) -> List[Reference]:
        found: List[Reference] = []
        seen = set()
        for query in self._queries(topic):
            if len(found) >= self.max_references:
                break
            try:
                results = await self.search.search(query)
            except NetworkError as e:
                logger.warning("Reference search failed for %r: %s", query[:60], e)
                continue

            candidates = []
            for item in results:
                link = item.get("link") or ""
                domain = domain_of(link)
                if not link or link in seen or not domain:
                    continue
                seen.add(link)
                if is_blocked(domain) or (self.site_domain and domain == self.site_domain):
                    logger.debug("Skipping reference candidate %s", domain)
                    continue
                candidates.append((item, domain))

            checks = await asyncio.gather(*(self.search.verify_reachable(i["link"]) for i, _ in candidates))
            for (item, domain), ok in zip(candidates, checks):
                if ok and len(found) < self.max_references:
                    found.append(Reference(url=item["link"], title=item.get("title") or domain, source=domain))

        logger.info("Verified %d reference(s) for %r", len(found), topic[:60])
        return found
