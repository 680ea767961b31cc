# content_refresher/wordpress_client.py

import logging
import re
from typing import Any, Dict, Optional, Tuple

import httpx
from bs4 import BeautifulSoup

from .errors import BackendError, NetworkError
from .models import Page
from .network import ResilientFetcher
from .settings import WordPressSettings

logger = logging.getLogger(__name__)

API_DISCOVERY_RE = re.compile(r"/(\d+)/?$")
SHORTLINK_RE = re.compile(r"[?&]p=(\d+)")
BODY_POSTID_RE = re.compile(r"postid-(\d+)")

CRAWL_NOISE = "nav, header, footer, aside, script, style, form, noscript, .sidebar, .comments, #comments"
CRAWL_CONTENT = ("main", "article", ".entry-content")


def backend_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return f"HTTP {resp.status_code}: {resp.text[:300]}"


def discover_post_id_in_html(html: str) -> Optional[int]:
    """
    Resource id from a public page: REST discovery link, then ?p= shortlink,
    then the postid-N body class.
    """
    soup = BeautifulSoup(html or "", "html.parser")

    for link in soup.find_all("link", href=True):
        rels = link.get("rel") or []
        is_api = "https://api.w.org/" in rels
        is_json_alt = "alternate" in rels and (link.get("type") or "").lower() == "application/json"
        if is_api or is_json_alt:
            m = API_DISCOVERY_RE.search(link["href"])
            if m:
                return int(m.group(1))

    shortlink = soup.find("link", rel="shortlink", href=True)
    if shortlink:
        m = SHORTLINK_RE.search(shortlink["href"])
        if m:
            return int(m.group(1))

    body = soup.find("body")
    if body is not None:
        m = BODY_POSTID_RE.search(" ".join(body.get("class") or []))
        if m:
            return int(m.group(1))
    return None


class WordPressClient:
    """
    WordPress REST calls (Application Password auth), all routed through the
    shared ResilientFetcher so they respect the backend cooldown gate.
    """

    def __init__(self, settings: WordPressSettings, fetcher: ResilientFetcher):
        self.settings = settings
        self.fetcher = fetcher
        self.api_base_url = settings.api_base_url
        self._auth = httpx.BasicAuth(settings.username, settings.app_password)

    # ------------------ WP Request Helper ------------------------------------
    async def _wp_request(
        self,
        method: str,
        endpoint: str,
        *,
        json_body: Any = None,
        content: Optional[bytes] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """endpoint: absolute or relative to api_base_url"""
        url = endpoint if endpoint.startswith("http") else f"{self.api_base_url}/{endpoint.lstrip('/')}"
        kwargs: Dict[str, Any] = {"params": params, "headers": {"User-Agent": self.settings.user_agent, **(headers or {})}}
        if json_body is not None:
            kwargs["json"] = json_body
        if content is not None:
            kwargs["content"] = content
        resp = await self.fetcher.request(method, url, auth=self._auth, **kwargs)
        if resp.status_code == 404:
            logger.error(f"WP {method} {url} -> 404 (rest_no_route?). Body: {resp.text[:300]}")
        return resp

    # ------------------ Lookups ----------------------------------------------
    async def find_post_id_by_slug(self, slug: str) -> Optional[int]:
        if not slug:
            return None
        r = await self._wp_request("GET", "posts", params={"slug": slug, "_fields": "id", "status": "any"})
        if r.status_code >= 400:
            logger.warning("Slug lookup for %r failed: %s", slug, backend_message(r))
            return None
        try:
            data = r.json()
            if isinstance(data, list) and data and isinstance(data[0], dict) and data[0].get("id"):
                return int(data[0]["id"])
        except (ValueError, TypeError) as e:
            logger.warning("Slug lookup for %r returned an unreadable reply: %s", slug, e)
        return None

    async def discover_post_id(self, page_url: str) -> Optional[int]:
        if not page_url or not page_url.startswith("http"):
            return None
        try:
            r = await self.fetcher.get(page_url, headers={"User-Agent": self.settings.user_agent}, follow_redirects=True)
        except NetworkError as e:
            logger.info("Discovery fetch failed for %s: %s", page_url, e)
            return None
        if r.status_code >= 400:
            logger.info("Discovery fetch for %s -> %s", page_url, r.status_code)
            return None
        post_id = discover_post_id_in_html(r.text)
        logger.debug("Discovered post id %s for %s", post_id, page_url)
        return post_id

    # ------------------ Writes -----------------------------------------------
    async def upload_media(
        self, filename: str, file_bytes: bytes, content_type: str = "image/jpeg"
    ) -> Tuple[Optional[int], Optional[str]]:
        """Upload a media file and return (media_id, source_url); (None, None) on failure."""
        headers = {
            "Content-Type": content_type,
            "Content-Disposition": f'attachment; filename="{filename}"',
        }
        try:
            r = await self._wp_request("POST", "media", content=file_bytes, headers=headers)
        except NetworkError as e:
            logger.error(f"Media upload error: {e}")
            return None, None
        if r.status_code >= 400:
            logger.error(f"Media upload failed: {r.status_code} {backend_message(r)}")
            return None, None
        try:
            data = r.json()
            media_id = int(data["id"])
            source_url = data.get("source_url") or (data.get("guid") or {}).get("rendered")
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            logger.error(f"Media upload returned an unreadable reply ({r.status_code}): {e}")
            return None, None
        return media_id, source_url

    async def save_post(self, payload: Dict[str, Any], post_id: Optional[int] = None) -> Dict[str, Any]:
        """PUT to an existing post id, else POST a new one. Non-2xx raises BackendError."""
        if post_id:
            r = await self._wp_request("PUT", f"posts/{post_id}", json_body=payload)
        else:
            r = await self._wp_request("POST", "posts", json_body=payload)
        if r.status_code >= 400:
            raise BackendError(backend_message(r), status_code=r.status_code)
        try:
            data = r.json()
        except ValueError as e:
            raise BackendError(
                f"Unreadable reply from {r.request.method} {r.request.url}: {e}", status_code=r.status_code
            ) from e
        if not isinstance(data, dict):
            raise BackendError(f"Unexpected reply shape: {type(data).__name__}", status_code=r.status_code)
        return data

    # ------------------ Reads ------------------------------------------------
    async def fetch_raw_content(self, page: Page) -> Optional[str]:
        """Editable source via the REST API, else the crawled public page."""
        if page.slug:
            try:
                r = await self._wp_request("GET", "posts", params={"slug": page.slug, "context": "edit"})
                data = r.json() if r.status_code < 400 else None
                if isinstance(data, list) and data:
                    content = data[0].get("content") or {}
                    raw = content.get("raw") or content.get("rendered")
                    if raw:
                        return raw
            except (NetworkError, ValueError, TypeError, AttributeError) as e:
                logger.warning("REST fetch for %s failed (%s); crawling instead", page.slug, e)
        return await self.smart_crawl(page.url or page.id)

    async def smart_crawl(self, url: str) -> Optional[str]:
        if not url or not url.startswith("http"):
            return None
        try:
            r = await self.fetcher.get(url, headers={"User-Agent": self.settings.user_agent}, follow_redirects=True)
        except NetworkError as e:
            logger.warning("Crawl failed for %s: %s", url, e)
            return None
        if r.status_code >= 400:
            return None
        soup = BeautifulSoup(r.text, "html.parser")
        for el in soup.select(CRAWL_NOISE):
            el.decompose()
        for selector in CRAWL_CONTENT:
            node = soup.select_one(selector)
            if node is not None:
                return node.decode_contents().strip()
        body = soup.find("body")
        return (body.decode_contents() if body is not None else str(soup)).strip()
