from content_refresher.models import Page
from content_refresher.queue_builder import PRIORITY_AGE, build_queue


def ids(queue):
    return [p.identity for p in queue]


class TestOrdering:
    def test_oldest_first(self, ledger):
        pages = [Page(id="/a", age_in_days=10), Page(id="/b", age_in_days=90)]
        assert ids(build_queue(pages, ledger)) == ["/b", "/a"]

    def test_equal_ages_keep_catalog_order(self, ledger):
        pages = [Page(id="/x", age_in_days=5), Page(id="/y", age_in_days=5), Page(id="/z", age_in_days=7)]
        assert ids(build_queue(pages, ledger)) == ["/z", "/x", "/y"]

    def test_priority_urls_lead_in_input_order(self, ledger):
        pages = [Page(id="/old", age_in_days=900), Page(id="/new", age_in_days=1)]
        queue = build_queue(pages, ledger, priority_urls=["https://s/p2", "https://s/p1"])
        assert ids(queue) == ["https://s/p2", "https://s/p1", "/old", "/new"]
        assert all(p.is_priority and p.age_in_days == PRIORITY_AGE for p in queue[:2])

    def test_priority_only_drops_catalog(self, ledger):
        queue = build_queue([Page(id="/a", age_in_days=3)], ledger, priority_urls=["https://s/p"], priority_only=True)
        assert ids(queue) == ["https://s/p"]

    def test_catalog_copy_of_priority_url_is_not_repeated(self, ledger):
        url = "https://s/p"
        queue = build_queue([Page(id="9", url=url, age_in_days=3)], ledger, priority_urls=[url, url])
        assert ids(queue) == [url]


class TestEligibility:
    def test_recent_priority_url_skipped(self, ledger):
        url = "https://s/p"
        ledger.lock(Page(id=url, url=url, is_priority=True))
        assert build_queue([], ledger, priority_urls=[url]) == []

    def test_locked_page_skipped(self, ledger):
        ledger.mark_processed(Page(id="/a"))
        pages = [Page(id="/a", age_in_days=50), Page(id="/b", age_in_days=1)]
        assert ids(build_queue(pages, ledger)) == ["/b"]

    def test_backoff_window_skips_page(self, ledger, clock):
        ledger.record_failure("/a")
        assert build_queue([Page(id="/a")], ledger) == []
        clock.advance(30 * 60)
        assert ids(build_queue([Page(id="/a")], ledger)) == ["/a"]

    def test_excluded_url_prefix(self, ledger):
        pages = [Page(id="1", url="https://s/shop/x"), Page(id="2", url="https://s/blog/y")]
        queue = build_queue(pages, ledger, excluded_urls=["https://s/shop"])
        assert ids(queue) == ["2"]

    def test_excluded_category(self, ledger):
        pages = [Page(id="1", url="https://s/a", categories=("news",)), Page(id="2", url="https://s/b")]
        assert ids(build_queue(pages, ledger, excluded_categories=["news"])) == ["2"]

    def test_page_without_identity_dropped_with_diagnostic(self, ledger):
        messages = []
        queue = build_queue([Page(title="Orphan"), Page(id="/ok")], ledger, on_progress=messages.append)
        assert ids(queue) == ["/ok"]
        assert any("Orphan" in m for m in messages)
