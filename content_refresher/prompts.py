# content_refresher/prompts.py
#
# Prompt templates keyed by prompt id. Positional arguments fill {0}, {1}, ...;
# non-string arguments are rendered as JSON. Override any template through
# settings["prompts"] (see GenerationClient).

import json
from typing import Any, Dict, Mapping, Optional, Sequence

SYSTEM_BASE = (
    "You are a senior editor maintaining a published blog. Preserve facts, media placeholders "
    "(tokens like __PROTECTED_IMAGE_0__) and HTML structure exactly; never invent sources. "
    "Return only the requested output, no commentary."
)

FORMAT_HINTS = {
    "json": "Respond with valid JSON only.",
    "html": "Respond with clean HTML body markup only (no <html>, <head> or <body> tags, no code fences).",
    "text": "Respond with plain text only.",
}

PROMPTS: Dict[str, str] = {
    "content_rewriter": (
        "Rewrite and modernise the article below for {current_year}. Title: \"{1}\".\n"
        "Weave in these semantic keywords naturally: {2}.\n"
        "Open with a direct answer, add a short key-takeaways list, fix outdated facts and years, "
        "remove filler phrases. Keep every __PROTECTED_*__ token exactly once and in place.\n\n"
        "ARTICLE HTML:\n{0}"
    ),
    "semantic_keyword_generator": (
        "List 10-20 semantic keywords and entities for an article titled \"{0}\" (audience location: {1}). "
        'Return JSON: {{"semanticKeywords": ["..."]}}'
    ),
    "content_grader": (
        "Grade this article from 0 to 100 for accuracy, helpfulness, structure and freshness. "
        'Return JSON: {{"score": <int>, "issues": ["..."]}}\n\n{0}'
    ),
    "content_repair_agent": (
        "Fix the listed issues in the article. Keep all __PROTECTED_*__ tokens unchanged.\n"
        "ISSUES: {1}\n\nARTICLE HTML:\n{0}"
    ),
    "json_repair": "Repair this into strictly valid JSON. Return the JSON only.\n\n{0}",
    "faq_section": (
        "Generate 5-7 relevant FAQ questions and answers for the article \"{0}\". "
        "Answers 40-60 words, direct, current for {current_year}. Context: {1}\n"
        'Return JSON array: [{{"question": "...", "answer": "..."}}]'
    ),
    "conclusion_section": (
        "Write a 150-200 word conclusion for the article \"{0}\" that recaps key points and gives "
        "clear next steps, current for {current_year}. Context: {1}\n"
        "Return only paragraphs of plain text separated by blank lines, no headings."
    ),
    "optimize_title_meta": (
        "Propose an SEO title (50-60 chars, include {current_year}) and meta description "
        "(140-155 chars) for the article \"{0}\". Keywords: {2}.\nOpening content: {1}\n"
        'Return JSON: {{"title": "...", "metaDescription": "..."}}'
    ),
    "generate_internal_links": (
        "Suggest internal links for the article below using only these site pages:\n{1}\n"
        "Pick anchor phrases (3+ words) that already appear verbatim in the article text.\n"
        'Return JSON array: [{{"anchorText": "...", "targetSlug": "..."}}]\n\nARTICLE HTML:\n{0}'
    ),
    "optimize_image_alt_text": (
        "Write descriptive alt text (8-15 words) for each image of the article \"{1}\".\n"
        "Images (index order): {0}\n"
        'Return JSON array: [{{"imageIndex": <int>, "altText": "..."}}]'
    ),
    "health_analyzer": (
        "Assess how badly this page needs a refresh. Title: \"{0}\". Age: {1} days.\n"
        'Return JSON: {{"healthScore": <0-100>, "updatePriority": "Critical|High|Medium|Healthy", '
        '"justification": "..."}}\n\n{2}'
    ),
    "article_writer": (
        "Write a complete, current ({current_year}) article titled \"{0}\". Keywords: {1}.\n"
        'Return JSON: {{"title": "...", "slug": "...", "metaDescription": "...", "content": "<html body>"}}'
    ),
}


def _render_arg(value: Any) -> str:
    if value is None:
        return "n/a"
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def render_prompt(
    prompt_key: str,
    args: Sequence[Any],
    *,
    templates: Optional[Mapping[str, str]] = None,
    current_year: str = "",
) -> str:
    table = templates or PROMPTS
    if prompt_key not in table:
        raise KeyError(f"Unknown prompt key: {prompt_key}")
    rendered = [_render_arg(a) for a in args]
    # missing trailing args render as n/a so optional inputs can be omitted
    rendered += ["n/a"] * 4
    return table[prompt_key].format(*rendered, current_year=current_year)
