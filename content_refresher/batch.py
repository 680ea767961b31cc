# content_refresher/batch.py
#
# Bounded-concurrency bulk jobs. Independent of the single-page maintenance loop.

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Sequence, TypeVar

from .critic import critic_loop
from .errors import ContentRefresherError
from .generation import generate_json
from .models import ContentItem, GeneratedContent, ItemKind, Page
from .sanitizer import sanitize
from .utils.text import strip_html

logger = logging.getLogger(__name__)

T = TypeVar("T")

UPDATE_PRIORITIES = ("Critical", "High", "Medium", "Healthy")
ANALYSIS_EXCERPT_CHARS = 8000


async def process_concurrently(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[Any]],
    concurrency: int = 1,
    on_progress: Optional[Callable[[int, int], None]] = None,
    should_stop: Optional[Callable[[], bool]] = None,
) -> int:
    """
    Drain ``items`` with ``concurrency`` asyncio workers.

    ``should_stop`` is polled before each item; a worker exception is logged and
    counted without cancelling the others. Returns the number of failed items.
    """
    queue: "asyncio.Queue[T]" = asyncio.Queue()
    for item in items:
        queue.put_nowait(item)
    total = queue.qsize()
    state = {"completed": 0, "failed": 0}

    async def run() -> None:
        while not queue.empty():
            if should_stop is not None and should_stop():
                return
            item = queue.get_nowait()
            try:
                await worker(item)
            except Exception:
                state["failed"] += 1
                logger.exception("Batch worker failed on %r", item)
            state["completed"] += 1
            if on_progress is not None:
                on_progress(state["completed"], total)

    await asyncio.gather(*(run() for _ in range(max(1, int(concurrency)))))
    if state["failed"]:
        logger.warning("Batch finished with %d/%d failure(s)", state["failed"], total)
    return state["failed"]


# -----------------------------------------------------------------------------
# Page health analysis
# -----------------------------------------------------------------------------
@dataclass
class PageAnalysis:
    page: Page
    health_score: int
    update_priority: str
    justification: str


def _analysis_from(page: Page, data: Any) -> PageAnalysis:
    data = data if isinstance(data, dict) else {}
    try:
        score = max(0, min(100, int(float(data.get("healthScore", 0)))))
    except (TypeError, ValueError):
        score = 0
    priority = str(data.get("updatePriority") or "")
    if priority not in UPDATE_PRIORITIES:
        priority = "Medium"
    return PageAnalysis(page, score, priority, str(data.get("justification") or ""))


async def analyze_pages(
    pages: Sequence[Page],
    generator,
    *,
    fetch_html: Callable[[Page], Awaitable[Optional[str]]],
    concurrency: int = 3,
    on_progress: Optional[Callable[[int, int], None]] = None,
    should_stop: Optional[Callable[[], bool]] = None,
) -> List[PageAnalysis]:
    """Score every page with the health_analyzer prompt. Pages that fail are left out."""
    results: List[PageAnalysis] = []

    async def analyze(page: Page) -> None:
        html = await fetch_html(page)
        if not html:
            logger.info("No content for %s; analysis skipped", page.url or page.id)
            return
        excerpt = strip_html(html)[:ANALYSIS_EXCERPT_CHARS]
        data = await generate_json(generator, "health_analyzer", [page.title, page.age_in_days, excerpt])
        results.append(_analysis_from(page, data))

    await process_concurrently(pages, analyze, concurrency, on_progress, should_stop)
    return results


# -----------------------------------------------------------------------------
# New article generation
# -----------------------------------------------------------------------------
def slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", (text or "").lower()).strip("-")


async def generate_item(item: ContentItem, generator) -> ContentItem:
    keywords = item.source_content or item.title
    data = await generate_json(generator, "article_writer", [item.title, keywords])
    if not isinstance(data, dict) or not data.get("content"):
        raise ContentRefresherError(f"article_writer returned no content for {item.title!r}")

    outcome = await critic_loop(sanitize(str(data["content"])), generator)
    title = str(data.get("title") or item.title).strip()
    item.generated = GeneratedContent(
        title=title,
        slug=slugify(str(data.get("slug") or "")) or slugify(title),
        meta_description=str(data.get("metaDescription") or "").strip(),
        html_body=outcome.html,
        is_full_rewrite=True,
    )
    return item


async def generate_items(
    items: Sequence[ContentItem],
    generator,
    *,
    concurrency: int = 2,
    on_progress: Optional[Callable[[int, int], None]] = None,
    should_stop: Optional[Callable[[], bool]] = None,
) -> List[ContentItem]:
    """Fill ``generated`` for each New item; returns the ones that succeeded."""
    done: List[ContentItem] = []

    async def generate(item: ContentItem) -> None:
        if item.kind is not ItemKind.NEW:
            logger.info("Skipping %s item %s in bulk generation", item.kind.value, item.id)
            return
        done.append(await generate_item(item, generator))

    await process_concurrently(items, generate, concurrency, on_progress, should_stop)
    return done
