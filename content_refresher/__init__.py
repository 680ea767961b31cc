"""
content_refresher: keeps an existing WordPress catalog fresh.

A single-worker loop picks the stalest eligible page, rewrites it through the
generation API with images, tables and embeds shielded from the model, grades and
repairs the draft, and publishes it back, with a persistent ledger guarding
against duplicate work and hammering a failing page. Bulk health analysis and
new-article generation run separately with bounded concurrency.
"""

from .batch import PageAnalysis, analyze_pages, generate_items, process_concurrently
from .engine import MaintenanceEngine
from .models import ContentItem, EngineContext, GeneratedContent, ItemKind, Page, PublishResult

__version__ = "0.1.0"

__all__ = [
    "ContentItem",
    "EngineContext",
    "GeneratedContent",
    "ItemKind",
    "MaintenanceEngine",
    "Page",
    "PageAnalysis",
    "PublishResult",
    "analyze_pages",
    "generate_items",
    "process_concurrently",
]
