# content_refresher/utils/text.py
import re
from urllib.parse import urlsplit, urlparse

_HTML_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")
_WORD_RE = re.compile(r"\b\w+\b")


def strip_html(text_or_html: str) -> str:
    """Very light tag stripper and whitespace normalizer."""
    if not text_or_html:
        return ""
    txt = _HTML_TAG_RE.sub(" ", text_or_html)
    txt = txt.replace("&nbsp;", " ")
    return _WS_RE.sub(" ", txt).strip()


def word_count(text_or_html: str) -> int:
    return len(_WORD_RE.findall(strip_html(text_or_html)))


def norm_domain(d: str) -> str:
    d = (d or "").lower().strip()
    if d.startswith("www."):
        d = d[4:]
    return d


def domain_of(url: str) -> str:
    try:
        return norm_domain(urlparse(url).netloc)
    except ValueError:
        return ""


def last_path_segment(url: str) -> str:
    """'https://site/a/b-c/' -> 'b-c'. Empty when the URL has no path or is not absolute."""
    try:
        parts = urlsplit(url or "")
    except ValueError:
        return ""
    if not parts.scheme or not parts.netloc:
        return ""
    segments = [p for p in parts.path.split("/") if p]
    return segments[-1] if segments else ""


def is_url_like(text: str) -> bool:
    t = (text or "").strip().lower()
    return t.startswith("http") or "www." in t
