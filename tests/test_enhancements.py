import asyncio
import json

from content_refresher.enhancements import (
    add_internal_links,
    apply_surgical_snippets,
    build_article_schema,
    filter_low_quality_links,
    fix_alt_text,
    inject_schema,
    is_low_quality_anchor,
    title_needs_optimization,
)
from content_refresher.models import Page
from content_refresher.protection import parse_html
from content_refresher.settings import StalenessRules

from conftest import FakeGenerator


def test_schema_injection():
    tree = parse_html("<p>body</p>")
    inject_schema(tree, build_article_schema("Title", "Desc", "https://s/p", "Site", modified="2026-01-01"))
    script = tree.find("script", type="application/ld+json")
    data = json.loads(script.string)
    assert data["headline"] == "Title"
    assert data["publisher"]["name"] == "Site"
    assert data["mainEntityOfPage"]["@id"] == "https://s/p"


def test_title_needs_optimization():
    rules = StalenessRules(target_year="2026")
    assert title_needs_optimization("Travel notes", rules)
    assert title_needs_optimization("The best travel notes", rules)
    assert not title_needs_optimization("The Best Travel Notes for 2026", rules)


class TestLinkFilter:
    def test_low_quality_anchors(self):
        assert is_low_quality_anchor("here")
        assert is_low_quality_anchor("read more")
        assert not is_low_quality_anchor("cheap ferry routes in Greece")

    def test_unwraps_only_weak_internal_links(self):
        tree = parse_html(
            '<p><a href="/x">here</a> and <a href="/y">cheap ferry routes in Greece</a> and '
            '<a href="https://other.org">out</a></p>'
        )
        assert filter_low_quality_links(tree) == 1
        hrefs = [a["href"] for a in tree.find_all("a")]
        assert hrefs == ["/y", "https://other.org"]
        assert "here" in tree.get_text()


class TestInternalLinks:
    CATALOG = [
        Page(id="/cur", url="https://s/cur", slug="cur", title="Current"),
        Page(id="/ferries", url="https://s/ferries", slug="ferries", title="Greek Ferries"),
    ]

    def test_links_first_plain_occurrence(self):
        gen = FakeGenerator(
            {"generate_internal_links": json.dumps([{"anchorText": "island hopping by ferry", "targetSlug": "ferries"}])}
        )
        tree = parse_html(
            "<h2>Island hopping by ferry</h2><p>We love island hopping by ferry in summer.</p>"
            "<p>island hopping by ferry again</p>"
        )
        added = asyncio.run(add_internal_links(gen, tree, self.CATALOG, self.CATALOG[0]))
        assert added == 1
        [link] = tree.find_all("a")
        assert link["href"] == "https://s/ferries"
        assert link.parent.get_text() == "We love island hopping by ferry in summer."
        assert tree.h2.find("a") is None

    def test_unknown_slug_and_short_anchor_ignored(self):
        gen = FakeGenerator(
            {
                "generate_internal_links": json.dumps(
                    [{"anchorText": "ferry", "targetSlug": "ferries"}, {"anchorText": "long enough anchor", "targetSlug": "nope"}]
                )
            }
        )
        tree = parse_html("<p>ferry and long enough anchor</p>")
        assert asyncio.run(add_internal_links(gen, tree, self.CATALOG, self.CATALOG[0])) == 0

    def test_enough_links_already(self):
        gen = FakeGenerator()
        links = "".join(f'<a href="/p{i}">internal link number {i}</a>' for i in range(6))
        tree = parse_html(f"<p>{links}</p>")
        assert asyncio.run(add_internal_links(gen, tree, self.CATALOG, self.CATALOG[0])) == 0
        assert gen.calls == []


def test_alt_text_fixed_for_weak_images():
    gen = FakeGenerator(
        {"optimize_image_alt_text": json.dumps([{"imageIndex": 0, "altText": "Ferry leaving Piraeus at sunrise"}])}
    )
    tree = parse_html(
        '<p>Port<img src="a.jpg" alt="image"></p><img src="b.jpg" alt="A detailed description already">'
    )
    assert asyncio.run(fix_alt_text(gen, tree, "Greek Ferries")) == 1
    assert tree.find("img", src="a.jpg")["alt"] == "Ferry leaving Piraeus at sunrise"
    described = gen.calls[0][1][0]
    assert len(described) == 1 and described[0]["currentAlt"] == "image"


class TestSurgicalSnippets:
    SOURCE = (
        '<div class="key-takeaways-box"><h3>Key Takeaways</h3><ul><li>old</li></ul></div>'
        "<p>Intro</p><h2>First</h2><p>Body</p><h2>Final Thoughts</h2><p>Bye</p>"
        '<div class="sota-references-section"><a href="https://a.org">A</a></div>'
    )

    def test_takeaways_replace_old_box_before_first_h2(self):
        out = apply_surgical_snippets(self.SOURCE, {"key_takeaways": "<h3>Key Takeaways</h3><ul><li>new</li></ul>"})
        assert "old" not in out
        assert out.index("sota-takeaways-section") < out.index("<h2>First</h2>")
        assert out.index("<p>Intro</p>") < out.index("sota-takeaways-section")

    def test_faq_before_closing_heading_and_conclusion_last(self):
        out = apply_surgical_snippets(self.SOURCE, {"faq": "<p>Q?</p>", "conclusion": "<p>The end.</p>"})
        assert out.index("sota-faq-section") < out.index("<h2>Final Thoughts</h2>")
        assert out.endswith('<div class="sota-conclusion-section"><p>The end.</p></div>')

    def test_references_replace_existing_block(self):
        refs = '<h2>References</h2><ul><li><a href="https://b.org/study">A long study title</a></li></ul>'
        out = apply_surgical_snippets(self.SOURCE, {"references": refs})
        assert "https://a.org" not in out
        assert out.endswith(f'<div class="sota-references-wrapper">{refs}</div>')

    def test_short_references_and_unknown_keys_ignored(self):
        out = apply_surgical_snippets(self.SOURCE, {"references": "<p>x</p>", "sidebar": "<p>no</p>"})
        assert out == self.SOURCE
