# content_refresher/models.py

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Page:
    """A published page as read from the catalog. Identity is ``id``, falling back to ``url``."""
    id: str = ""
    url: str = ""
    title: str = ""
    slug: str = ""
    last_modified: Optional[str] = None
    age_in_days: int = 0
    is_priority: bool = False
    categories: tuple = ()

    @property
    def identity(self) -> str:
        return self.id or self.url

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Page":
        cats = data.get("categories") or ()
        cats = tuple(c.get("slug", "") if isinstance(c, dict) else str(c) for c in cats)
        return cls(
            id=str(data.get("id") or ""),
            url=str(data.get("url") or ""),
            title=str(data.get("title") or ""),
            slug=str(data.get("slug") or ""),
            last_modified=data.get("lastModified") or data.get("last_modified"),
            age_in_days=int(data.get("ageInDays", data.get("age_in_days", data.get("daysOld", 0))) or 0),
            is_priority=bool(data.get("isPriority", data.get("is_priority", False))),
            categories=cats,
        )


class ItemKind(str, Enum):
    NEW = "new"
    REFRESH = "refresh"


@dataclass
class GeneratedContent:
    title: str
    slug: str
    meta_description: str = ""
    html_body: str = ""
    structured_data_schema: str = ""
    is_full_rewrite: bool = False
    surgical_snippets: Optional[Dict[str, str]] = None


@dataclass
class ContentItem:
    id: str
    kind: ItemKind
    source_content: Optional[str] = None
    generated: Optional[GeneratedContent] = None
    title: str = ""


@dataclass
class Reference:
    url: str
    title: str
    source: str


@dataclass
class Grade:
    score: int
    issues: List[str] = field(default_factory=list)


@dataclass
class PublishResult:
    success: bool
    message: str
    link: Optional[str] = None
    post_id: Optional[int] = None


@dataclass
class EngineContext:
    """Everything the scheduler needs to build its queue. Swapped whole via ``update_context``."""
    pages: List[Page] = field(default_factory=list)
    priority_urls: List[str] = field(default_factory=list)
    priority_only: bool = False
    excluded_urls: List[str] = field(default_factory=list)
    excluded_categories: List[str] = field(default_factory=list)
    site_url: str = ""
