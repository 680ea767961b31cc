# content_refresher/protection.py
"""
Reversible placeholder substitution for markup the rewrite step must not touch.

``protect`` swaps images, embeds, raw-HTML/code blocks, tables and existing verified
reference blocks for opaque ``__PROTECTED_<KIND>_<n>__`` text tokens and returns the
token -> original-markup map. ``restore`` puts every fragment back and refuses
(``ProtectionMismatch``) when a token went missing, was duplicated, or was invented.
"""

import logging
import re
from typing import Dict, List, Tuple

from bs4 import BeautifulSoup, NavigableString, Tag

from .errors import ProtectionMismatch

logger = logging.getLogger(__name__)

ProtectedElementMap = Dict[str, str]

# Applied in this order; the counter is shared so tokens are unique across kinds.
PROTECTION_RULES: List[Tuple[str, str]] = [
    ("IMAGE", "img, figure.wp-block-image"),
    ("VIDEO", 'iframe[src*="youtube"], iframe[src*="vimeo"], .wp-block-embed'),
    ("HTML", ".wp-block-html, .wp-block-custom-html, pre, code"),
    ("TABLE", "table:not(.sota-comparison-table), figure.wp-block-table"),
    ("REFERENCES", ".sota-references-section"),
]

PLACEHOLDER_RE = re.compile(r"__PROTECTED_(?:IMAGE|VIDEO|HTML|TABLE|REFERENCES)_\d+__")
REFERENCES_PLACEHOLDER_RE = re.compile(r"__PROTECTED_REFERENCES_\d+__")


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def _attached(el: Tag, root: BeautifulSoup) -> bool:
    # an element inside an already-protected subtree is detached from root
    return any(parent is root for parent in el.parents)


def protect(tree: BeautifulSoup) -> Tuple[BeautifulSoup, ProtectedElementMap]:
    """Replace protected subtrees in place. Returns (tree, token map in insertion order)."""
    protected: ProtectedElementMap = {}
    counter = 0
    for kind, selector in PROTECTION_RULES:
        for el in tree.select(selector):
            if not _attached(el, tree):
                continue
            token = f"__PROTECTED_{kind}_{counter}__"
            counter += 1
            protected[token] = str(el)
            el.replace_with(NavigableString(token))
    logger.debug("Protected %d element(s)", len(protected))
    return tree, protected


def restore(html: str, protected: ProtectedElementMap) -> str:
    """
    Put every protected fragment back exactly once.

    Tokens are restored newest-first so a fragment that captured an older token
    (an image inside a table) reintroduces it before it is looked up.
    """
    missing: List[str] = []
    for token in reversed(list(protected)):
        hits = html.count(token)
        if hits == 0:
            missing.append(token)
            continue
        if hits > 1:
            # leftovers are reported below as unexpected
            html = html.replace(token, protected[token], 1)
            continue
        html = html.replace(token, protected[token])

    unexpected = PLACEHOLDER_RE.findall(html)
    if missing or unexpected:
        raise ProtectionMismatch(missing=list(reversed(missing)), unexpected=unexpected)
    return html


def has_protected_references(html_or_text: str) -> bool:
    return bool(REFERENCES_PLACEHOLDER_RE.search(html_or_text or ""))
