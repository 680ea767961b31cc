# content_refresher/settings.py

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from dotenv import find_dotenv, load_dotenv

from .errors import ConfigError
from .utils.jsonc import load_jsonc

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = Path("config/settings.json")


@dataclass
class WordPressSettings:
    url: str = ""
    username: str = ""
    app_password: str = ""
    post_status: str = "publish"
    request_timeout: float = 45.0
    # "{url}" is replaced by the percent-encoded target; empty disables the proxy fallback
    proxy_template: str = "https://corsproxy.io/?{url}"
    user_agent: str = "ContentRefresher/1.0"

    @property
    def api_base_url(self) -> str:
        return f"{self.url.rstrip('/')}/wp-json/wp/v2"


@dataclass
class GenerationSettings:
    api_key: str = ""
    model: str = "gpt-4o-mini"
    base_url: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 4096
    max_attempts: int = 5
    cache_path: Path = Path("cache/generation_cache.sqlite3")
    cache_ttl_seconds: float = 3600.0
    cache_ttl_jitter: float = 0.1


@dataclass
class SearchSettings:
    api_key: str = ""
    endpoint: str = "https://google.serper.dev/search"
    results_per_query: int = 20
    verify_timeout: float = 8.0
    max_references: int = 12


@dataclass
class StalenessRules:
    target_year: str = field(default_factory=lambda: str(datetime.now().year))
    superseded_years: List[str] = field(default_factory=lambda: [str(y) for y in range(2020, datetime.now().year)])
    max_single_word_links: int = 2
    min_external_links: int = 8
    min_internal_links: int = 5
    min_words: int = 1200
    title_power_words: List[str] = field(
        default_factory=lambda: ["ultimate", "complete", "guide", "best", "top", "proven"]
    )
    max_age_days: int = 60
    fluff_phrases: List[str] = field(
        default_factory=lambda: [
            "in this article",
            "in this post",
            "without further ado",
            "at the end of the day",
            "the fact of the matter",
        ]
    )


@dataclass
class SchedulerSettings:
    success_sleep: float = 15.0
    page_error_sleep: float = 5.0
    loop_error_sleep: float = 10.0
    idle_sleep: float = 60.0
    cooldown_seconds: float = 24 * 3600.0
    retry_window_seconds: float = 30 * 60.0
    fail_escalation_threshold: int = 3
    min_content_chars: int = 300
    min_rewrite_chars: int = 500
    rules: StalenessRules = field(default_factory=StalenessRules)


@dataclass
class Settings:
    wordpress: WordPressSettings
    generation: GenerationSettings = field(default_factory=GenerationSettings)
    search: SearchSettings = field(default_factory=SearchSettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    ledger_path: Path = Path("cache/ledger.sqlite3")
    log_dir: Path = Path("logs")
    site_name: str = ""
    priority_urls: List[str] = field(default_factory=list)
    priority_only: bool = False
    excluded_urls: List[str] = field(default_factory=list)
    excluded_categories: List[str] = field(default_factory=list)


def _pick(section: Dict[str, Any], cls, **overrides) -> Any:
    """Build a dataclass from the keys of ``section`` it knows about."""
    known = {k: v for k, v in (section or {}).items() if k in cls.__dataclass_fields__}
    known.update({k: v for k, v in overrides.items() if v not in (None, "")})
    return cls(**known)


def settings_from_dict(raw: Dict[str, Any]) -> Settings:
    wp_raw = raw.get("wordpress") or {}
    wordpress = _pick(
        wp_raw,
        WordPressSettings,
        app_password=os.getenv("WP_APP_PASSWORD") or wp_raw.get("application_password"),
    )
    missing = [k for k in ("url", "username") if not getattr(wordpress, k)]
    if missing:
        raise ConfigError(f"Missing required keys in 'wordpress' config: {missing}")
    if not wordpress.app_password:
        raise ConfigError(
            "WordPress application password not set. Define WP_APP_PASSWORD env var "
            "or add 'application_password' under 'wordpress' in settings.json."
        )

    gen_raw = dict(raw.get("generation") or {})
    if "cache_path" in gen_raw:
        gen_raw["cache_path"] = Path(gen_raw["cache_path"])
    generation = _pick(gen_raw, GenerationSettings, api_key=os.getenv("OPENAI_API_KEY") or gen_raw.get("api_key"))

    search_raw = raw.get("search") or {}
    search = _pick(search_raw, SearchSettings, api_key=os.getenv("SERPER_API_KEY") or search_raw.get("api_key"))

    sched_raw = dict(raw.get("scheduler") or {})
    rules = _pick(sched_raw.pop("rules", None) or {}, StalenessRules)
    scheduler = _pick(sched_raw, SchedulerSettings, rules=rules)

    queue_raw = raw.get("queue") or {}
    return Settings(
        wordpress=wordpress,
        generation=generation,
        search=search,
        scheduler=scheduler,
        ledger_path=Path(raw.get("ledger_path") or "cache/ledger.sqlite3"),
        log_dir=Path(raw.get("log_dir") or "logs"),
        site_name=str(raw.get("site_name") or ""),
        priority_urls=list(queue_raw.get("priority_urls") or []),
        priority_only=bool(queue_raw.get("priority_only", False)),
        excluded_urls=list(queue_raw.get("excluded_urls") or []),
        excluded_categories=list(queue_raw.get("excluded_categories") or []),
    )


def load_settings(path: Union[str, Path] = DEFAULT_SETTINGS_PATH) -> Settings:
    """
    Load .env, then the JSONC settings file (comments, trailing commas, "${ENV}" values).
    """
    load_dotenv(find_dotenv(usecwd=True))
    cfg_path = Path(path)
    if not cfg_path.exists():
        raise ConfigError(f"Config not found: {cfg_path}")
    raw = load_jsonc(cfg_path)
    if not isinstance(raw, dict):
        raise ConfigError(f"Config root must be an object: {cfg_path}")
    settings = settings_from_dict(raw)
    logger.info("Loaded settings from %s (site=%s)", cfg_path, settings.wordpress.url)
    return settings
