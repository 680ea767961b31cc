# content_refresher/engine.py

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from .completeness import CompletenessValidator, SectionWriter
from .ledger import Ledger
from .models import EngineContext
from .pipeline import PageOptimizer
from .publisher import Publisher
from .queue_builder import build_queue
from .search import ReferenceFinder, SearchClient
from .settings import SchedulerSettings
from .wordpress_client import WordPressClient

logger = logging.getLogger(__name__)


class MaintenanceEngine:
    """
    Single-worker maintenance loop.

    Each iteration rebuilds the queue from the current context and runs the per-page
    pipeline on its head. ``stop()`` is honoured between iterations only; an in-flight
    page always runs to completion.
    """

    def __init__(
        self,
        ledger: Ledger,
        wordpress: WordPressClient,
        generation,
        search: Optional[SearchClient] = None,
        on_progress: Optional[Callable[[str], None]] = None,
        settings: Optional[SchedulerSettings] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        *,
        site_name: str = "",
        post_status: str = "publish",
    ):
        self.ledger = ledger
        self.wordpress = wordpress
        self.generation = generation
        self.search = search
        self.settings = settings or SchedulerSettings()
        self.site_name = site_name
        self.post_status = post_status
        self._progress = on_progress or (lambda msg: None)
        self._sleep = sleep
        self.running = False
        self.context = EngineContext()

    def _say(self, msg: str) -> None:
        logger.info(msg)
        self._progress(msg)

    def _optimizer(self) -> PageOptimizer:
        references = None
        if self.search is not None and self.search.configured:
            references = ReferenceFinder(
                self.search,
                site_url=self.context.site_url,
                max_references=self.search.settings.max_references,
                current_year=int(self.settings.rules.target_year),
            )
        validator = CompletenessValidator(SectionWriter(self.generation, references), on_progress=self._progress)
        return PageOptimizer(
            ledger=self.ledger,
            wordpress=self.wordpress,
            publisher=Publisher(self.wordpress, post_status=self.post_status, on_progress=self._progress),
            generator=self.generation,
            validator=validator,
            settings=self.settings,
            site_name=self.site_name,
            on_progress=self._progress,
        )

    def update_context(self, ctx: EngineContext) -> None:
        self.context = ctx
        self._say(f"Context updated: {len(ctx.pages)} page(s), {len(ctx.priority_urls)} priority URL(s)")

    def stop(self) -> None:
        if self.running:
            self._say("Stop requested; finishing current page")
        self.running = False

    async def start(self, ctx: EngineContext) -> None:
        if self.running:
            self._say("Engine already running")
            return
        if self.generation is None:
            self._say("Stopped: no generation client configured")
            return
        if not ctx.pages and ctx.site_url:
            self._say("Stopped: page catalog is empty; crawl the sitemap first")
            return

        self.context = ctx
        self.running = True
        self._say("Maintenance engine started")
        try:
            while self.running:
                await self._iterate()
        finally:
            self.running = False
            self._say("Maintenance engine stopped")

    async def _iterate(self) -> None:
        try:
            ctx = self.context
            queue = build_queue(
                ctx.pages,
                self.ledger,
                priority_urls=ctx.priority_urls,
                priority_only=ctx.priority_only,
                excluded_urls=ctx.excluded_urls,
                excluded_categories=ctx.excluded_categories,
                on_progress=self._progress,
            )
            if not queue:
                self._say(f"All pages up to date; sleeping {self.settings.idle_sleep:.0f}s")
                await self._sleep(self.settings.idle_sleep)
                return

            page = queue[0]
            self._say(f"Queue: {len(queue)} page(s) pending")
            try:
                outcome = await self._optimizer().optimize(page, ctx.pages)
            except Exception as e:
                logger.exception("Page %s failed", page.identity)
                self._say(f"Error processing {page.url or page.id}: {e}")
                await self._sleep(self.settings.page_error_sleep)
                return

            logger.debug("Page %s finished: %s", page.identity, outcome.value)
            self._say(f"Cooling down for {self.settings.success_sleep:.0f}s")
            await self._sleep(self.settings.success_sleep)
        except Exception as e:
            logger.exception("Maintenance loop error")
            self._say(f"Loop error: {e}")
            await self._sleep(self.settings.loop_error_sleep)
