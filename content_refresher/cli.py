# content_refresher/cli.py

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from .batch import PageAnalysis, analyze_pages
from .engine import MaintenanceEngine
from .errors import ConfigError, ContentRefresherError
from .generation import GenerationClient
from .generation_cache import GenerationCache
from .ledger import Ledger, SqliteStore
from .logging_setup import setup_logging
from .models import EngineContext, Page
from .network import CooldownGate, ResilientFetcher
from .runlock import RunLock
from .search import SearchClient
from .settings import DEFAULT_SETTINGS_PATH, Settings, load_settings
from .utils.jsonc import load_jsonc
from .wordpress_client import WordPressClient

logger = logging.getLogger(__name__)


def _parse_bool(v: Optional[str]) -> bool:
    return str(v or "").strip().lower() in ("1", "true", "yes", "on")


def load_pages(path: Path) -> List[Page]:
    """Catalog file: a JSON(C) list of page objects, or {"pages": [...]}."""
    if not path.exists():
        raise ConfigError(f"Page catalog not found: {path}")
    raw = load_jsonc(path)
    if isinstance(raw, dict):
        raw = raw.get("pages")
    if not isinstance(raw, list):
        raise ConfigError(f"Page catalog must be a list of pages: {path}")
    return [Page.from_dict(p) for p in raw if isinstance(p, dict)]


def build_context(settings: Settings, pages: List[Page], args: argparse.Namespace) -> EngineContext:
    return EngineContext(
        pages=pages,
        priority_urls=list(args.priority_url or settings.priority_urls),
        priority_only=bool(args.priority_only or settings.priority_only),
        excluded_urls=list(settings.excluded_urls),
        excluded_categories=list(settings.excluded_categories),
        site_url=settings.wordpress.url,
    )


async def run_engine(settings: Settings, ctx: EngineContext) -> None:
    sched = settings.scheduler
    timeout = httpx.Timeout(settings.wordpress.request_timeout, connect=10.0)
    async with httpx.AsyncClient(timeout=timeout) as http:
        with SqliteStore(settings.ledger_path) as store:
            ledger = Ledger(
                store,
                cooldown_seconds=sched.cooldown_seconds,
                retry_window_seconds=sched.retry_window_seconds,
                fail_escalation_threshold=sched.fail_escalation_threshold,
            )
            fetcher = ResilientFetcher(
                http,
                CooldownGate(),
                timeout=settings.wordpress.request_timeout,
                proxy_template=settings.wordpress.proxy_template,
            )
            wordpress = WordPressClient(settings.wordpress, fetcher)
            search = SearchClient(settings.search, http) if settings.search.api_key else None

            cache = None
            generation = None
            if settings.generation.api_key:
                cache = GenerationCache(
                    settings.generation.cache_path,
                    default_ttl=settings.generation.cache_ttl_seconds,
                    ttl_jitter_fraction=settings.generation.cache_ttl_jitter,
                )
                generation = GenerationClient(settings.generation, cache=cache, current_year=sched.rules.target_year)

            engine = MaintenanceEngine(
                ledger,
                wordpress,
                generation,
                search=search,
                settings=sched,
                site_name=settings.site_name,
                post_status=settings.wordpress.post_status,
            )
            loop = asyncio.get_running_loop()
            try:
                loop.add_signal_handler(signal.SIGINT, engine.stop)
                loop.add_signal_handler(signal.SIGTERM, engine.stop)
            except (NotImplementedError, RuntimeError):
                logger.debug("Signal handlers unavailable; Ctrl-C will cancel the run")

            try:
                await engine.start(ctx)
            finally:
                if generation is not None:
                    logger.info("Token usage: %s", generation.token_usage)
                    await generation.aclose()
                if cache is not None:
                    logger.info("Generation cache: %s", cache.stats())
                    cache.close()


def analysis_report(results: List[PageAnalysis]) -> List[Dict[str, Any]]:
    """Worst pages first."""
    ordered = sorted(results, key=lambda a: (a.health_score, a.page.identity))
    return [
        {
            "url": a.page.url or a.page.id,
            "title": a.page.title,
            "healthScore": a.health_score,
            "updatePriority": a.update_priority,
            "justification": a.justification,
        }
        for a in ordered
    ]


def write_report(report: List[Dict[str, Any]], output: Optional[Path]) -> None:
    text = json.dumps(report, ensure_ascii=False, indent=2)
    if output is None:
        print(text)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text + "\n", encoding="utf-8")
    logger.info("Wrote %d page analyses to %s", len(report), output)


async def run_analysis(settings: Settings, pages: List[Page], concurrency: int) -> List[PageAnalysis]:
    if not settings.generation.api_key:
        raise ConfigError("Page analysis needs a generation API key (OPENAI_API_KEY).")
    timeout = httpx.Timeout(settings.wordpress.request_timeout, connect=10.0)
    async with httpx.AsyncClient(timeout=timeout) as http:
        fetcher = ResilientFetcher(
            http,
            CooldownGate(),
            timeout=settings.wordpress.request_timeout,
            proxy_template=settings.wordpress.proxy_template,
        )
        wordpress = WordPressClient(settings.wordpress, fetcher)
        cache = GenerationCache(
            settings.generation.cache_path,
            default_ttl=settings.generation.cache_ttl_seconds,
            ttl_jitter_fraction=settings.generation.cache_ttl_jitter,
        )
        generation = GenerationClient(settings.generation, cache=cache)

        def progress(done: int, total: int) -> None:
            logger.info("Analyzed %d/%d", done, total)

        try:
            return await analyze_pages(
                pages,
                generation,
                fetch_html=wordpress.fetch_raw_content,
                concurrency=concurrency,
                on_progress=progress,
            )
        finally:
            logger.info("Token usage: %s", generation.token_usage)
            await generation.aclose()
            cache.close()


def parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(prog="content-refresher", description="Keep published WordPress pages fresh.")
    sub = ap.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the maintenance loop until interrupted")
    run.add_argument("--config", type=Path, default=DEFAULT_SETTINGS_PATH, help="Path to settings.json (JSONC)")
    run.add_argument("--pages", type=Path, required=True, help="Path to the page catalog JSON")
    run.add_argument(
        "--priority-url",
        action="append",
        default=None,
        help="URL to process ahead of the catalog (repeatable; overrides queue.priority_urls)",
    )
    run.add_argument("--priority-only", action="store_true", help="Process priority URLs only")
    run.add_argument("--debug", action="store_true", help="Verbose logging")

    analyze = sub.add_parser("analyze", help="Score every catalog page and write a health report")
    analyze.add_argument("--config", type=Path, default=DEFAULT_SETTINGS_PATH, help="Path to settings.json (JSONC)")
    analyze.add_argument("--pages", type=Path, required=True, help="Path to the page catalog JSON")
    analyze.add_argument("--concurrency", type=int, default=3, help="Pages analyzed at once")
    analyze.add_argument("--output", type=Path, default=None, help="Write the JSON report here instead of stdout")
    analyze.add_argument("--debug", action="store_true", help="Verbose logging")
    return ap.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)
    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging(settings.log_dir, logging.DEBUG if args.debug else logging.INFO)

    lock_path = Path(os.getenv("LOCK_FILE") or settings.log_dir / "content_refresher.lock")
    lock_ttl = int(os.getenv("LOCK_TTL_MIN", str(24 * 60)))
    try:
        pages = load_pages(args.pages)
        if args.command == "analyze":
            results = asyncio.run(run_analysis(settings, pages, args.concurrency))
            write_report(analysis_report(results), args.output)
            return
        ctx = build_context(settings, pages, args)
        with RunLock(lock_path, ttl_minutes=lock_ttl, force=_parse_bool(os.getenv("LOCK_FORCE"))):
            asyncio.run(run_engine(settings, ctx))
    except SystemExit as se:
        logger.error(str(se))
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except ContentRefresherError as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
