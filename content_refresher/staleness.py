# content_refresher/staleness.py

import re
from dataclasses import dataclass
from typing import Optional

from .models import Page
from .settings import StalenessRules
from .utils.text import word_count

SHORTCODE_MARKER_RE = re.compile(r"\[bulkimporter_image|\[gallery|\[wp_", re.IGNORECASE)
ONE_WORD_LINK_RE = re.compile(r"<a[^>]*>(\w+)</a>")
EXTERNAL_LINK_RE = re.compile(r'<a[^>]*href="http[^"]*"[^>]*>')
ANY_LINK_RE = re.compile(r"<a[^>]+href=[^>]*>")


@dataclass(frozen=True)
class StalenessVerdict:
    should_update: bool
    reason: str


def _check(html: str, page: Page, rules: StalenessRules) -> Optional[str]:
    text = html.lower()

    if SHORTCODE_MARKER_RE.search(html):
        return "Contains broken shortcodes"

    if rules.target_year not in text:
        return f"Missing {rules.target_year} freshness signals"

    for year in rules.superseded_years:
        if str(year) in text:
            return f"Contains outdated year {year}"

    one_word = len(ONE_WORD_LINK_RE.findall(html))
    if one_word > rules.max_single_word_links:
        return f"{one_word} low-quality one-word links"

    has_takeaways = "key takeaway" in text or "at a glance" in text
    has_faq = "faq" in text or "frequently asked" in text
    has_conclusion = "conclusion" in text or "final thoughts" in text
    if not (has_takeaways and has_faq and has_conclusion):
        return "Missing key sections (Key Takeaways/FAQ/Conclusion)"

    external = len(EXTERNAL_LINK_RE.findall(html))
    if "sota-references-section" not in html or external < rules.min_external_links:
        return f"Insufficient external references ({external}/{rules.min_external_links})"

    internal = len(ANY_LINK_RE.findall(html)) - external
    if internal < rules.min_internal_links:
        return f"Insufficient internal links ({internal}/{rules.min_internal_links})"

    if "application/ld+json" not in html:
        return "Missing structured data"

    words = word_count(html)
    if words < rules.min_words:
        return f"Thin content ({words}/{rules.min_words} words)"

    title = (page.title or "").lower()
    power_words = list(rules.title_power_words) + [rules.target_year]
    if not any(w in title for w in power_words):
        return "Weak title"

    if page.age_in_days and page.age_in_days > rules.max_age_days:
        return f"Content is {page.age_in_days} days old"

    if any(f in text for f in rules.fluff_phrases):
        return "Contains filler phrases"

    return None


def needs_update(html: str, page: Page, rules: Optional[StalenessRules] = None) -> StalenessVerdict:
    """Cheap gate before any generation call. The first failing check is the reason."""
    reason = _check(html or "", page, rules or StalenessRules())
    if reason is None:
        return StalenessVerdict(False, "Content is up to date")
    return StalenessVerdict(True, reason)
