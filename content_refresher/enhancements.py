# content_refresher/enhancements.py
#
# Best-effort page improvements applied after the rewrite. Each helper returns the
# number of changes it made so the pipeline can tell a no-op from real work.

import json
import logging
import random
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup, NavigableString

from .generation import generate_json
from .models import Page
from .settings import StalenessRules

logger = logging.getLogger(__name__)

GENERIC_ANCHORS = [
    "health benefits", "click here", "read more", "learn more", "find out", "see here",
    "check out", "benefits", "tips", "guide", "review",
]
GENERIC_ALTS = {"image", "photo", "picture"}

MIN_INTERNAL_LINKS = 6
MAX_NEW_LINKS = 12
MAX_ALT_IMAGES = 10


# -----------------------------------------------------------------------------
# Structured data
# -----------------------------------------------------------------------------
def build_article_schema(
    title: str, description: str = "", url: str = "", site_name: str = "", modified: Optional[str] = None
) -> Dict[str, Any]:
    modified = modified or datetime.now(timezone.utc).isoformat()
    schema: Dict[str, Any] = {
        "@context": "https://schema.org",
        "@type": "Article",
        "headline": title,
        "dateModified": modified,
    }
    if description:
        schema["description"] = description
    if url:
        schema["mainEntityOfPage"] = {"@type": "WebPage", "@id": url}
    if site_name:
        schema["author"] = {"@type": "Organization", "name": site_name}
        schema["publisher"] = {"@type": "Organization", "name": site_name}
    return schema


def inject_schema(tree: BeautifulSoup, schema: Dict[str, Any]) -> None:
    script = tree.new_tag("script", type="application/ld+json")
    script.string = json.dumps(schema, ensure_ascii=False)
    tree.append(script)


# -----------------------------------------------------------------------------
# Partial (snippet) updates
# -----------------------------------------------------------------------------
SNIPPET_KEYS = ("intro", "key_takeaways", "faq", "conclusion", "references")
CLOSING_HEADING_RE = re.compile(r"conclusion|final|summary", re.IGNORECASE)
MIN_REFERENCES_SNIPPET_CHARS = 50


def _wrap(tree: BeautifulSoup, fragment: str, css_class: str):
    div = tree.new_tag("div", attrs={"class": css_class})
    for node in list(BeautifulSoup(fragment, "html.parser").contents):
        div.append(node)
    return div


def apply_surgical_snippets(html: str, snippets: Dict[str, str]) -> str:
    """
    Splice generated sections into the existing body instead of replacing it.

    intro goes first, key takeaways before the first <h2> (old takeaway boxes are
    dropped), faq before a closing heading, conclusion at the end, and references
    replace any existing references block.
    """
    tree = BeautifulSoup(html or "", "html.parser")
    snippets = {k: v for k, v in (snippets or {}).items() if k in SNIPPET_KEYS and v}

    if snippets.get("key_takeaways"):
        for box in tree.select('[class*="takeaway"]'):
            if box.decomposed:
                continue
            h3 = box.find("h3")
            if h3 is not None and "takeaway" in h3.get_text().lower():
                box.decompose()

    if snippets.get("intro"):
        tree.insert(0, _wrap(tree, snippets["intro"], "sota-intro-section"))

    if snippets.get("key_takeaways"):
        box = _wrap(tree, snippets["key_takeaways"], "sota-takeaways-section")
        first_h2 = tree.find("h2")
        if first_h2 is not None:
            first_h2.insert_before(box)
        else:
            tree.append(box)

    if snippets.get("faq"):
        box = _wrap(tree, snippets["faq"], "sota-faq-section")
        closing = next((h for h in tree.find_all(["h2", "h3"]) if CLOSING_HEADING_RE.search(h.get_text())), None)
        if closing is not None:
            closing.insert_before(box)
        else:
            tree.append(box)

    if snippets.get("conclusion"):
        tree.append(_wrap(tree, snippets["conclusion"], "sota-conclusion-section"))

    refs = snippets.get("references", "")
    if len(refs.strip()) > MIN_REFERENCES_SNIPPET_CHARS:
        for old in tree.select('[class*="references-section"]'):
            if not old.decomposed:
                old.decompose()
        tree.append(_wrap(tree, refs, "sota-references-wrapper"))

    return str(tree)


# -----------------------------------------------------------------------------
# Title / meta
# -----------------------------------------------------------------------------
def title_needs_optimization(title: str, rules: StalenessRules) -> bool:
    t = (title or "").lower()
    return not t or rules.target_year not in t or not any(w in t for w in rules.title_power_words)


async def optimize_title_meta(
    generator, title: str, excerpt: str, keywords: Sequence[str]
) -> Optional[Tuple[str, str]]:
    data = await generate_json(generator, "optimize_title_meta", [title, excerpt[:1000], list(keywords) or [title]])
    if isinstance(data, dict) and data.get("title"):
        return str(data["title"]).strip(), str(data.get("metaDescription") or "").strip()
    return None


# -----------------------------------------------------------------------------
# Internal links
# -----------------------------------------------------------------------------
def _internal_links(tree: BeautifulSoup) -> List[Any]:
    return [a for a in tree.find_all("a") if a.get("href") and not a["href"].startswith("http")]


def is_low_quality_anchor(anchor: str) -> bool:
    words = anchor.split()
    low = anchor.lower()
    return (
        len(words) <= 1
        or len(anchor) < 8
        or (len(words) == 2 and any(g in low for g in GENERIC_ANCHORS))
    )


def filter_low_quality_links(tree: BeautifulSoup) -> int:
    """Unwrap relative links with one-word, very short or generic anchors."""
    removed = 0
    for a in _internal_links(tree):
        if is_low_quality_anchor(a.get_text(" ", strip=True)):
            a.unwrap()
            removed += 1
    return removed


def _link_first_occurrence(tree: BeautifulSoup, anchor: str, href: str, title: str) -> bool:
    pattern = re.compile(rf"\b{re.escape(anchor)}\b", re.IGNORECASE)
    for s in tree.find_all(string=True):
        # plain text only: skips comments, CDATA and anything already linked
        if type(s) is not NavigableString or s.find_parent(["a", "script", "style", "h1", "h2", "h3"]):
            continue
        text = str(s)
        m = pattern.search(text)
        if not m:
            continue
        link = tree.new_tag("a", href=href, title=title)
        link["class"] = "internal-link"
        link.string = m.group(0)
        before, after = text[: m.start()], text[m.end():]
        nodes = ([NavigableString(before)] if before else []) + [link] + ([NavigableString(after)] if after else [])
        s.replace_with(*nodes)
        return True
    return False


async def add_internal_links(generator, tree: BeautifulSoup, pages: Sequence[Page], current: Page) -> int:
    """Ask for contextual links to other catalog pages until 6-12 internal links exist."""
    existing = len(_internal_links(tree))
    others = [p for p in pages if p.slug and p.title and p.identity != current.identity][:50]
    if existing >= MIN_INTERNAL_LINKS or not others:
        return 0

    listing = "\n".join(f"- {p.title} (slug: {p.slug})" for p in others)
    suggestions = await generate_json(generator, "generate_internal_links", [str(tree), listing])
    if not isinstance(suggestions, list):
        return 0

    by_slug = {p.slug: p for p in others}
    target = min(MAX_NEW_LINKS, MIN_INTERNAL_LINKS + random.randint(0, 6))
    needed = max(0, target - existing)
    added = 0
    for sug in suggestions:
        if added >= needed:
            break
        if not isinstance(sug, dict):
            continue
        page = by_slug.get(str(sug.get("targetSlug") or ""))
        anchor = str(sug.get("anchorText") or "").strip()
        if page is None or not anchor:
            continue
        if len(anchor.split()) < 3 and len(anchor) < 15:
            continue
        if _link_first_occurrence(tree, anchor, page.url or page.id, page.title):
            added += 1
    return added


# -----------------------------------------------------------------------------
# Image alt text
# -----------------------------------------------------------------------------
def _needs_alt(alt: str) -> bool:
    return not alt or len(alt) < 10 or alt.lower() in GENERIC_ALTS


async def fix_alt_text(generator, tree: BeautifulSoup, title: str) -> int:
    images = [img for img in tree.find_all("img") if _needs_alt(img.get("alt") or "")][:MAX_ALT_IMAGES]
    if not images:
        return 0
    described = [
        {
            "src": img.get("src") or "",
            "currentAlt": img.get("alt") or "MISSING",
            "context": (img.parent.get_text(" ", strip=True) if img.parent else "")[:150] or "No surrounding context",
        }
        for img in images
    ]
    data = await generate_json(generator, "optimize_image_alt_text", [described, title])
    if not isinstance(data, list):
        return 0
    updated = 0
    for opt in data:
        if not isinstance(opt, dict):
            continue
        try:
            idx = int(opt.get("imageIndex"))
        except (TypeError, ValueError):
            continue
        alt = str(opt.get("altText") or "").strip()
        if 0 <= idx < len(images) and len(alt) > 5:
            images[idx]["alt"] = alt
            updated += 1
    return updated
