# content_refresher/publisher.py

import base64
import binascii
import logging
import re
from typing import Any, Callable, Dict, Optional, Tuple

from .enhancements import apply_surgical_snippets
from .errors import PostNotFound, PublishError
from .models import ContentItem, ItemKind, PublishResult
from .utils.text import is_url_like, last_path_segment
from .wordpress_client import WordPressClient

logger = logging.getLogger(__name__)

BASE64_IMG_RE = re.compile(r'<img[^>]+src="(data:image/(?:jpeg|png|webp);base64,([^"]+))"[^>]*>')


class Publisher:
    """
    Map a ContentItem to its remote post and create or update it.

    Refresh items must resolve to an existing post (discovery link, then slug
    search, then the URL's last path segment); otherwise PostNotFound. New items
    become updates when their slug already exists.
    """

    def __init__(
        self,
        wordpress: WordPressClient,
        *,
        post_status: str = "publish",
        on_progress: Optional[Callable[[str], None]] = None,
    ):
        self.wp = wordpress
        self.post_status = post_status
        self._progress = on_progress or (lambda msg: None)

    def _say(self, msg: str) -> None:
        logger.info(msg)
        self._progress(msg)

    async def resolve_post_id(self, item: ContentItem, source_url: str = "") -> Optional[int]:
        slug = item.generated.slug if item.generated else ""

        if item.kind is not ItemKind.REFRESH:
            return await self.wp.find_post_id_by_slug(slug)

        post_id = await self.wp.discover_post_id(source_url)
        if post_id:
            self._say(f"Resolved post {post_id} from page markup")
            return post_id

        post_id = await self.wp.find_post_id_by_slug(slug)
        if post_id:
            self._say(f"Resolved post {post_id} by slug {slug!r}")
            return post_id

        fallback = last_path_segment(source_url)
        if fallback and fallback != slug:
            post_id = await self.wp.find_post_id_by_slug(fallback)
            if post_id:
                self._say(f"Resolved post {post_id} by URL slug {fallback!r}")
                return post_id

        raise PostNotFound(f"Could not find original post for {source_url or slug!r}")

    async def upload_inline_images(self, html: str, slug: str) -> Tuple[str, Optional[int]]:
        """Host base64 images; returns (rewritten html, first uploaded media id)."""
        first_media: Optional[int] = None
        for i, m in enumerate(list(BASE64_IMG_RE.finditer(html))):
            data_uri, b64 = m.group(1), m.group(2)
            try:
                raw = base64.b64decode(b64)
            except (binascii.Error, ValueError) as e:
                logger.warning("Skipping undecodable inline image %d: %s", i, e)
                continue
            media_id, url = await self.wp.upload_media(f"{slug}-{i}.jpg", raw, "image/jpeg")
            if not media_id or not url:
                continue
            html = html.replace(data_uri, url, 1)
            if first_media is None:
                first_media = media_id
        return html, first_media

    def body_for(self, item: ContentItem) -> str:
        """Full rewrites publish as-is; snippet refreshes are spliced into the source body."""
        gen = item.generated
        if item.kind is ItemKind.NEW or gen.is_full_rewrite:
            return gen.html_body
        if gen.surgical_snippets:
            return apply_surgical_snippets(item.source_content or "", gen.surgical_snippets)
        raise PublishError(f"Refresh of {item.id} has neither a full rewrite nor section snippets")

    def build_payload(self, item: ContentItem, html: str) -> Dict[str, Any]:
        gen = item.generated
        payload: Dict[str, Any] = {
            "content": html + (gen.structured_data_schema or ""),
            "status": self.post_status,
            "meta": {},
        }
        # an empty description would wipe the one already stored
        if gen.meta_description:
            payload["meta"]["_yoast_wpseo_metadesc"] = gen.meta_description
        if gen.title and not is_url_like(gen.title):
            payload["title"] = gen.title
            payload["meta"]["_yoast_wpseo_title"] = gen.title
        if item.kind is ItemKind.NEW:
            payload["slug"] = gen.slug
        return payload

    async def publish(self, item: ContentItem, source_url: str = "") -> PublishResult:
        if item.generated is None:
            raise PublishError(f"Item {item.id} has no generated content")
        gen = item.generated
        body = self.body_for(item)

        post_id = await self.resolve_post_id(item, source_url)
        html, first_media = await self.upload_inline_images(body, gen.slug)

        payload = self.build_payload(item, html)
        if first_media and not post_id:
            payload["featured_media"] = first_media

        data = await self.wp.save_post(payload, post_id)
        link = data.get("link")
        saved_id = data.get("id") or post_id
        verb = "Updated" if post_id else "Created"
        self._say(f"{verb} post {saved_id}: {link or gen.slug}")
        return PublishResult(success=True, message=f"{verb} post {saved_id}", link=link, post_id=saved_id)
