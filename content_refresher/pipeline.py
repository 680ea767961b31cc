# content_refresher/pipeline.py

import logging
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from .completeness import CompletenessValidator
from .critic import CriticState, critic_loop
from .enhancements import (
    add_internal_links,
    build_article_schema,
    filter_low_quality_links,
    fix_alt_text,
    inject_schema,
    optimize_title_meta,
    title_needs_optimization,
)
from .errors import ContentRefresherError, NetworkError, PublishError
from .generation import generate_json
from .ledger import Ledger
from .models import ContentItem, GeneratedContent, ItemKind, Page
from .protection import parse_html, protect, restore
from .publisher import Publisher
from .sanitizer import remove_shortcodes, sanitize, strip_generated_references
from .settings import SchedulerSettings
from .staleness import needs_update
from .utils.text import last_path_segment
from .wordpress_client import WordPressClient

logger = logging.getLogger(__name__)


class PageOutcome(str, Enum):
    SKIPPED_LOCKED = "skipped_locked"
    SKIPPED_SHORT = "skipped_short"      # transient: ledger untouched
    UP_TO_DATE = "up_to_date"
    NO_CHANGES = "no_changes"            # lock released
    PUBLISHED = "published"
    PUBLISH_FAILED = "publish_failed"
    ABORTED = "aborted"


class PageOptimizer:
    """
    Per-page maintenance pipeline:
    fetch → staleness gate → lock → clean → protect → rewrite → completeness →
    critic → enhancements → restore → publish → ledger commit / backoff.
    """

    def __init__(
        self,
        *,
        ledger: Ledger,
        wordpress: WordPressClient,
        publisher: Publisher,
        generator,
        validator: CompletenessValidator,
        settings: Optional[SchedulerSettings] = None,
        site_name: str = "",
        on_progress: Optional[Callable[[str], None]] = None,
    ):
        self.ledger = ledger
        self.wordpress = wordpress
        self.publisher = publisher
        self.generator = generator
        self.validator = validator
        self.settings = settings or SchedulerSettings()
        self.site_name = site_name
        self._progress = on_progress or (lambda msg: None)

    def _say(self, msg: str) -> None:
        logger.info(msg)
        self._progress(msg)

    # ------------------------------------------------------------------ steps
    def _recently_processed(self, page: Page) -> bool:
        if page.is_priority:
            return self.ledger.priority_recent(page.url or page.id)
        return self.ledger.is_locked(page.identity)

    async def _semantic_keywords(self, title: str) -> List[str]:
        try:
            data = await generate_json(self.generator, "semantic_keyword_generator", [title, None])
        except ContentRefresherError as e:
            self._say(f"Keyword extraction failed: {e}")
            return []
        raw = data.get("semanticKeywords", []) if isinstance(data, dict) else []
        keywords = [str(k.get("keyword", "")) if isinstance(k, dict) else str(k) for k in raw]
        return [k for k in keywords if k]

    async def _rewrite(self, html: str, title: str, keywords: Sequence[str]) -> Optional[str]:
        out = await self.generator.generate("content_rewriter", [html, title, list(keywords), None], "html")
        if out and len(out) > self.settings.min_rewrite_chars:
            return sanitize(out)
        self._say("Rewrite returned empty or too-short output; keeping original body")
        return None

    async def _title_meta(self, page: Page, excerpt: str, keywords: Sequence[str]) -> Tuple[str, str]:
        if not title_needs_optimization(page.title, self.settings.rules):
            return "", ""
        try:
            result = await optimize_title_meta(self.generator, page.title or "Untitled", excerpt, keywords)
        except ContentRefresherError as e:
            self._say(f"Title/meta optimisation failed: {e}")
            return "", ""
        if result is None:
            return "", ""
        self._say(f"Optimised title: {result[0]!r}")
        return result

    # --------------------------------------------------------------- pipeline
    async def optimize(self, page: Page, catalog: Sequence[Page] = ()) -> PageOutcome:
        if not page.identity:
            self._say("Invalid page (missing id and url)")
            return PageOutcome.ABORTED
        if self._recently_processed(page):
            self._say(f"Skipping {page.url or page.id}: processed recently or backing off")
            return PageOutcome.SKIPPED_LOCKED
        title = page.title or "Untitled"
        self._say(f"Target: {title} ({page.age_in_days} days old) {page.url or page.id}")

        raw = await self.wordpress.fetch_raw_content(page)
        if not raw or len(raw) < self.settings.min_content_chars:
            self._say(f"Content too short ({len(raw or '')} chars); will retry later")
            return PageOutcome.SKIPPED_SHORT

        verdict = needs_update(raw, page, self.settings.rules)
        if not verdict.should_update:
            self.ledger.mark_processed(page)
            self._say(f"Fresh: {verdict.reason}; skipping")
            return PageOutcome.UP_TO_DATE

        self._say(f"Update needed: {verdict.reason}")
        self.ledger.lock(page)

        html = strip_generated_references(raw)
        html, removed = remove_shortcodes(html)
        if removed:
            self._say(f"Removed {removed} shortcode(s)")

        tree, protected = protect(parse_html(html))
        self._say(f"Protected {len(protected)} element(s)")

        changes = 0
        keywords = await self._semantic_keywords(title)
        rewritten = await self._rewrite(str(tree), title, keywords)
        if rewritten:
            tree = parse_html(rewritten)
            changes += 1
            changes += len(await self.validator.ensure(tree, title))
            outcome = await critic_loop(str(tree), self.generator)
            if outcome.state is CriticState.REPAIRED:
                tree = parse_html(outcome.html)
                changes += 1

        new_title, new_meta = await self._title_meta(page, tree.get_text(" ", strip=True), keywords)
        if new_title:
            changes += 1

        if "application/ld+json" not in raw:
            schema = build_article_schema(
                new_title or title, description=new_meta, url=page.url, site_name=self.site_name
            )
            inject_schema(tree, schema)
            changes += 1
            self._say("Added structured data")

        dropped = filter_low_quality_links(tree)
        if dropped:
            changes += 1
            self._say(f"Removed {dropped} low-quality internal link(s)")

        try:
            linked = await add_internal_links(self.generator, tree, catalog, page)
        except ContentRefresherError as e:
            linked = 0
            self._say(f"Internal linking failed: {e}")
        if linked:
            changes += 1
            self._say(f"Added {linked} internal link(s)")

        try:
            alts = await fix_alt_text(self.generator, tree, title)
        except ContentRefresherError as e:
            alts = 0
            self._say(f"Alt text optimisation failed: {e}")
        if alts:
            changes += 1
            self._say(f"Updated {alts} image alt text(s)")

        if changes == 0:
            self.ledger.release(page)
            self._say("No changes produced; lock released")
            return PageOutcome.NO_CHANGES

        body = restore(str(tree), protected)
        slug = last_path_segment(page.url or page.id) or page.slug
        if not slug:
            self._say("No slug available for page; publish skipped")
            return PageOutcome.ABORTED

        item = ContentItem(
            id=page.identity,
            kind=ItemKind.REFRESH,
            source_content=raw,
            title=title,
            generated=GeneratedContent(
                title=new_title or page.title,
                slug=slug,
                meta_description=new_meta,
                html_body=body,
                is_full_rewrite=True,
            ),
        )
        try:
            result = await self.publisher.publish(item, page.url or page.id)
        except (PublishError, NetworkError) as e:
            count = self.ledger.record_failure(page.identity)
            self._say(f"Publish failed ({count} consecutive): {e}")
            return PageOutcome.PUBLISH_FAILED

        self.ledger.commit_success(page.identity)
        self._say(f"Published: {result.link or result.message}")
        return PageOutcome.PUBLISHED
