# content_refresher/queue_builder.py

import logging
import sys
from typing import Callable, Iterable, List, Optional

from .ledger import Ledger
from .models import Page

logger = logging.getLogger(__name__)

# priority pages always sort ahead of any real age
PRIORITY_AGE = sys.maxsize


def _excluded(page: Page, excluded_urls: Iterable[str], excluded_categories: Iterable[str]) -> Optional[str]:
    page_url = page.url or page.id
    for ex in excluded_urls:
        if ex and (page_url == ex or page_url.startswith(ex)):
            return f"URL match: {ex}"
    for pattern in excluded_categories:
        if not pattern:
            continue
        if page_url.startswith(pattern):
            return f"category URL match: {pattern}"
        for cat in page.categories:
            if cat and (cat == pattern or cat in pattern):
                return f"category slug match: {pattern}"
    return None


def build_queue(
    pages: Iterable[Page],
    ledger: Ledger,
    *,
    priority_urls: Iterable[str] = (),
    priority_only: bool = False,
    excluded_urls: Iterable[str] = (),
    excluded_categories: Iterable[str] = (),
    on_progress: Optional[Callable[[str], None]] = None,
) -> List[Page]:
    """
    Ordered work list: fresh priority URLs first (input order), then eligible catalog
    pages by descending age. Ties keep catalog order.
    """
    say = on_progress or (lambda msg: None)
    excluded_urls = list(excluded_urls or [])
    excluded_categories = list(excluded_categories or [])

    priority: List[Page] = []
    priority_set = set()
    for raw in priority_urls or []:
        url = (raw or "").strip()
        if not url or url in priority_set:
            continue
        priority_set.add(url)
        if ledger.priority_recent(url):
            logger.info("Priority URL recently processed: %s", url)
            continue
        priority.append(Page(id=url, url=url, title=url, age_in_days=PRIORITY_AGE, is_priority=True))
    if priority:
        say(f"Priority queue: {len(priority)} URL(s)")

    if priority_only:
        return priority

    candidates: List[Page] = []
    seen = set()
    for page in pages:
        if not page.url and not page.id:
            msg = f"Skipping page without URL and ID (title: {page.title or 'Unknown'!r})"
            logger.warning(msg)
            say(msg)
            continue
        if page.identity in seen or page.identity in priority_set or page.url in priority_set:
            continue
        seen.add(page.identity)
        reason = _excluded(page, excluded_urls, excluded_categories)
        if reason:
            logger.info("Excluded %s (%s)", page.url or page.id, reason)
            continue
        if ledger.is_locked(page.identity):
            continue
        candidates.append(page)

    # sorted() is stable, so equal ages keep catalog order
    return priority + sorted(candidates, key=lambda p: p.age_in_days, reverse=True)
