import asyncio
import json

from content_refresher.batch import analyze_pages, generate_items, process_concurrently, slugify
from content_refresher.models import ContentItem, ItemKind, Page

from conftest import FakeGenerator


class TestProcessConcurrently:
    def test_runs_every_item_with_progress(self):
        seen, progress = [], []

        async def worker(item):
            await asyncio.sleep(0)
            seen.append(item)

        failed = asyncio.run(process_concurrently(range(7), worker, 3, lambda d, t: progress.append((d, t))))
        assert failed == 0
        assert sorted(seen) == list(range(7))
        assert progress[-1] == (7, 7)
        assert [d for d, _ in progress] == list(range(1, 8))

    def test_never_exceeds_concurrency(self):
        state = {"active": 0, "peak": 0}

        async def worker(item):
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
            await asyncio.sleep(0)
            state["active"] -= 1

        asyncio.run(process_concurrently(range(10), worker, 2))
        assert state["peak"] == 2

    def test_failure_does_not_stop_siblings(self):
        done = []

        async def worker(item):
            if item == 2:
                raise ValueError("bad item")
            done.append(item)

        failed = asyncio.run(process_concurrently([1, 2, 3, 4], worker, 2))
        assert failed == 1
        assert sorted(done) == [1, 3, 4]

    def test_should_stop_halts_remaining_items(self):
        done = []

        async def worker(item):
            done.append(item)

        asyncio.run(process_concurrently(range(10), worker, 1, should_stop=lambda: len(done) >= 3))
        assert done == [0, 1, 2]


def test_analyze_pages_scores_each_page():
    def analysis(args):
        score = 20 if args[0] == "Old" else 90
        priority = "Critical" if score < 50 else "Bogus"
        return json.dumps({"healthScore": score, "updatePriority": priority, "justification": "ok"})

    gen = FakeGenerator({"health_analyzer": analysis})
    pages = [Page(id="/old", title="Old", age_in_days=400), Page(id="/new", title="New", age_in_days=3)]

    async def fetch(page):
        return "<p>body</p>" if page.id else None

    results = asyncio.run(analyze_pages(pages, gen, fetch_html=fetch, concurrency=2))
    by_id = {r.page.id: r for r in results}
    assert by_id["/old"].health_score == 20
    assert by_id["/old"].update_priority == "Critical"
    assert by_id["/new"].update_priority == "Medium"
    assert gen.calls[0][1][2] == "body"


def test_generate_items_fills_new_items_only():
    long_body = "<p>" + "Solid paragraph. " * 40 + "</p>"
    gen = FakeGenerator(
        {
            "article_writer": json.dumps(
                {"title": "Packing Light", "slug": "", "metaDescription": "How to pack.", "content": long_body}
            ),
            "content_grader": json.dumps({"score": 92}),
        }
    )
    items = [
        ContentItem(id="1", kind=ItemKind.NEW, title="Packing light", source_content="packing, carry-on"),
        ContentItem(id="2", kind=ItemKind.REFRESH, title="Old post"),
    ]
    done = asyncio.run(generate_items(items, gen))
    assert [i.id for i in done] == ["1"]
    generated = done[0].generated
    assert generated.slug == "packing-light"
    assert generated.meta_description == "How to pack."
    assert generated.html_body == long_body
    assert items[1].generated is None


def test_slugify():
    assert slugify("  Best Tips: 2026 Edition! ") == "best-tips-2026-edition"
