# content_refresher/sanitizer.py

import re
from typing import List, Pattern, Tuple

_I = re.IGNORECASE

# Ordered (pattern, replacement, count) rules. count=0 replaces every match.
FENCE_RULES: List[Tuple[Pattern[str], str, int]] = [
    (re.compile(r"^```html\s*", _I), "", 1),
    (re.compile(r"^```\s*"), "", 1),
    (re.compile(r"```\s*$"), "", 1),
]

SANITIZE_RULES: List[Tuple[Pattern[str], str, int]] = [
    # duplicate H1 / title injections
    (re.compile(r"^\s*<h1.*?>.*?</h1>", _I | re.DOTALL), "", 1),
    (re.compile(r"^\s*Title:.*?(\n|<br\s*/?>)", _I), "", 1),
    # signatures and meta garbage
    (re.compile(r"Protocol Active: v\d+\.\d+", _I), "", 0),
    (re.compile(r"REF: GUTF-Protocol-[a-z0-9]+", _I), "", 0),
    (re.compile(r"Lead Data Scientist[\s\S]*?Latest Data Audit.*?(</p>|<br\s*/?>|\n)", _I), "", 0),
    (re.compile(r"Verification Fact-Checked", _I), "", 0),
    (re.compile(r"Methodology Peer-Reviewed", _I), "", 0),
    (re.compile(r"Verified References", _I), "", 0),
    (re.compile(r"Trusted References", _I), "", 0),
]

# A references heading (keyword inside the heading's own text) and what follows it, up to an
# <hr>, a closing </div> at the end, a <footer> or the next heading. Sections holding media
# never match.
GENERATED_REFERENCES_RE = re.compile(
    r"(?:<hr[^>]*>\s*)?"
    r"<h([23])[^>]*>(?:[^<]|<(?!/h\1)[^>]*>)*?"
    r"(?:References|Further Reading|Bibliography|Verified (?:References|Sources)|Sources|External Resources)"
    r"(?:[^<]|<(?!/h\1)[^>]*>)*</h\1>"
    r"(?:(?!<(?:img|figure|picture|iframe|video|embed|object|h[1-6])\b)[\s\S])*?"
    r"(?:<hr[^>]*>|</div>\s*$|(?=<footer)|(?=<h[1-6]\b))",
    _I,
)

SHORTCODE_PATTERNS: List[Pattern[str]] = [
    re.compile(r"\[bulkimporter_image[^\]]*\]", _I),
    re.compile(r"\[gallery[^\]]*\]", _I),
    re.compile(r"\[caption[^\]]*\].*?\[/caption\]", _I | re.DOTALL),
    re.compile(r"\[embed[^\]]*\].*?\[/embed\]", _I | re.DOTALL),
    re.compile(r"\[video[^\]]*\]", _I),
    re.compile(r"\[audio[^\]]*\]", _I),
    re.compile(r"\[wp_[^\]]*\]", _I),
    re.compile(r"\[/?[a-zA-Z_][^\]]*\]"),
]


def _apply(rules: List[Tuple[Pattern[str], str, int]], text: str) -> str:
    for pattern, repl, count in rules:
        text = pattern.sub(repl, text, count=count)
    return text


def sanitize(html: str) -> str:
    """Strip fences, duplicate titles and signature junk from generated HTML."""
    if not html:
        return ""
    clean = _apply(FENCE_RULES, html).strip()
    return _apply(SANITIZE_RULES, clean).strip()


def strip_generated_references(html: str) -> str:
    """Drop one model-written references section; verified sections are re-added later."""
    if not html:
        return html
    return GENERATED_REFERENCES_RE.sub("", html, count=1)


def remove_shortcodes(html: str) -> Tuple[str, int]:
    removed = 0
    for pattern in SHORTCODE_PATTERNS:
        html, n = pattern.subn("", html)
        removed += n
    return html, removed
