# content_refresher/completeness.py

import html
import logging
import re
from enum import Enum
from typing import Callable, List, Optional, Sequence

from bs4 import BeautifulSoup, Tag

from .errors import ContentRefresherError
from .generation import generate_json
from .models import Reference
from .protection import PLACEHOLDER_RE, has_protected_references
from .search import ReferenceFinder

logger = logging.getLogger(__name__)

FAQ_RE = re.compile(r"FAQ|Frequently Asked Questions", re.IGNORECASE)
CONCLUSION_RE = re.compile(r"Conclusion|Final Thoughts|Wrapping Up", re.IGNORECASE)
REFERENCES_RE = re.compile(r"References|Further Reading|Sources|Bibliography", re.IGNORECASE)
REFERENCES_HEADING_RE = re.compile(r"References|Further Reading|Sources|Bibliography|Verified", re.IGNORECASE)

VERIFIED_REFERENCES_CLASS = "sota-references-section"
SECTION_STOP_TAGS = {"h1", "h2", "h3", "footer"}
MAX_REFERENCES = 12


class SectionKind(str, Enum):
    FAQ = "faq"
    CONCLUSION = "conclusion"
    REFERENCES = "references"


# -----------------------------------------------------------------------------
# Fragment rendering
# -----------------------------------------------------------------------------
def render_faq(faqs: Sequence[dict]) -> str:
    items = []
    for faq in faqs:
        q = html.escape(str(faq.get("question") or "").strip())
        a = html.escape(str(faq.get("answer") or "").strip())
        if q and a:
            items.append(f"<details><summary>{q}</summary><p>{a}</p></details>")
    if not items:
        return ""
    return "<h2>Frequently Asked Questions</h2>" + "".join(items)


def render_conclusion(text: str) -> str:
    paras = [p.strip() for p in re.split(r"\n\s*\n|\n", text or "") if p.strip()]
    if not paras:
        return ""
    body = "".join(f"<p>{html.escape(p)}</p>" for p in paras)
    return f'<h2>Conclusion</h2><div class="conclusion">{body}</div>'


def render_references(refs: Sequence[Reference]) -> str:
    if not refs:
        return ""
    items = "".join(
        f'<li><a href="{html.escape(r.url, quote=True)}" target="_blank" rel="noopener noreferrer">'
        f"{html.escape(r.title)}</a> <span>({html.escape(r.source)})</span></li>"
        for r in refs[:MAX_REFERENCES]
    )
    return f'<div class="{VERIFIED_REFERENCES_CLASS}"><h2>References &amp; Further Reading</h2><ul>{items}</ul></div>'


class SectionWriter:
    """generate(sectionKind, title, context) -> HTML fragment ("" when there is nothing to add)."""

    def __init__(self, generator, references: Optional[ReferenceFinder] = None):
        self.generator = generator
        self.references = references

    @property
    def can_reference(self) -> bool:
        return self.references is not None and getattr(self.references.search, "configured", True)

    async def generate(self, kind: SectionKind, title: str, context: str = "") -> str:
        if kind is SectionKind.FAQ:
            faqs = await generate_json(self.generator, "faq_section", [title, context])
            return render_faq(faqs if isinstance(faqs, list) else [])
        if kind is SectionKind.CONCLUSION:
            text = await self.generator.generate("conclusion_section", [title, context], "text")
            return render_conclusion(text)
        if not self.can_reference:
            return ""
        return render_references(await self.references.find(title))


# -----------------------------------------------------------------------------
# Validator
# -----------------------------------------------------------------------------
def _find_heading(tree: BeautifulSoup, pattern: re.Pattern) -> Optional[Tag]:
    for h in tree.find_all(["h2", "h3"]):
        if pattern.search(h.get_text(" ")):
            return h
    return None


def _references_placeholder(tree: BeautifulSoup):
    for s in tree.find_all(string=PLACEHOLDER_RE):
        if has_protected_references(str(s)):
            return s
    return None


def _insert(tree: BeautifulSoup, fragment: str, anchor=None) -> None:
    nodes = list(BeautifulSoup(fragment, "html.parser").contents)
    for node in nodes:
        node.extract()
        if anchor is not None:
            anchor.insert_before(node)
        else:
            tree.append(node)


def _remove_section(heading: Tag) -> None:
    sib = heading.find_next_sibling()
    while sib is not None and sib.name not in SECTION_STOP_TAGS:
        nxt = sib.find_next_sibling()
        sib.decompose()
        sib = nxt
    heading.decompose()


class CompletenessValidator:
    """
    Ensure FAQ, Conclusion and verified References sections exist.

    FAQ goes before a Conclusion heading, Conclusion before a References heading
    (or the protected references block); otherwise both are appended. A references
    section without the verified marker is removed and regenerated; with no
    reference capability it is removed and nothing replaces it.
    """

    def __init__(self, writer: SectionWriter, on_progress: Optional[Callable[[str], None]] = None):
        self.writer = writer
        self._progress = on_progress or (lambda msg: None)

    def _say(self, msg: str) -> None:
        logger.info(msg)
        self._progress(msg)

    async def _add(self, kind: SectionKind, tree: BeautifulSoup, title: str, anchor=None) -> bool:
        context = PLACEHOLDER_RE.sub(" ", tree.get_text(" "))[:1500]
        try:
            fragment = await self.writer.generate(kind, title, context)
        except ContentRefresherError as e:
            self._say(f"Could not add {kind.value} section: {e}")
            return False
        if not fragment:
            self._say(f"No {kind.value} content produced; section skipped")
            return False
        _insert(tree, fragment, anchor)
        self._say(f"Added {kind.value} section")
        return True

    async def ensure(self, tree: BeautifulSoup, title: str) -> List[SectionKind]:
        added: List[SectionKind] = []
        text = PLACEHOLDER_RE.sub(" ", tree.get_text(" "))

        if not FAQ_RE.search(text):
            if await self._add(SectionKind.FAQ, tree, title, anchor=_find_heading(tree, CONCLUSION_RE)):
                added.append(SectionKind.FAQ)

        if not CONCLUSION_RE.search(text):
            anchor = _find_heading(tree, REFERENCES_HEADING_RE) or _references_placeholder(tree)
            if await self._add(SectionKind.CONCLUSION, tree, title, anchor=anchor):
                added.append(SectionKind.CONCLUSION)

        verified = tree.select_one(f".{VERIFIED_REFERENCES_CLASS}") is not None or has_protected_references(str(tree))
        if verified:
            logger.debug("Verified references already present")
            return added

        stale = _find_heading(tree, REFERENCES_HEADING_RE)
        if stale is not None:
            self._say("Removing unverified references section")
            _remove_section(stale)
        if not self.writer.can_reference:
            self._say("No reference search configured; references skipped")
            return added
        if await self._add(SectionKind.REFERENCES, tree, title):
            added.append(SectionKind.REFERENCES)
        return added
