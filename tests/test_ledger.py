"""Ledger: locks, cooldown and publish-failure backoff."""

from content_refresher.ledger import Ledger, SqliteStore
from content_refresher.models import Page
from content_refresher.queue_builder import build_queue

from conftest import NOW, DictStore, FakeClock

HOUR = 3600.0


class TestBackoff:
    def test_single_failure_skips_thirty_minutes(self, ledger, clock):
        assert ledger.record_failure("/a") == 1
        assert ledger.locked_until("/a") == NOW + 30 * 60
        clock.advance(30 * 60 - 1)
        assert ledger.is_locked("/a")
        clock.advance(1)
        assert not ledger.is_locked("/a")

    def test_second_failure_still_thirty_minutes(self, ledger, clock):
        ledger.record_failure("/a")
        clock.advance(31 * 60)
        assert ledger.record_failure("/a") == 2
        assert ledger.locked_until("/a") - clock.now == 30 * 60

    def test_three_failures_escalate_to_a_day(self, ledger, store, clock):
        for _ in range(3):
            ledger.record_failure("/a")
        assert ledger.fail_count("/a") == 3
        assert store.get("failCount:/a") == "3"
        assert float(store.get("lastProcessed:/a")) == NOW + 24 * HOUR
        assert ledger.locked_until("/a") - clock.now == 24 * HOUR

    def test_success_clears_fail_counter(self, ledger, store, clock):
        ledger.record_failure("/a")
        ledger.commit_success("/a")
        assert ledger.fail_count("/a") == 0
        assert "failCount:/a" not in store.data
        assert ledger.locked_until("/a") == NOW + 24 * HOUR


class TestLocks:
    def test_lock_then_release(self, ledger):
        page = Page(id="/a", url="https://example.com/a")
        ledger.lock(page)
        assert ledger.is_locked("/a")
        ledger.release(page)
        assert not ledger.is_locked("/a")
        assert ledger.last_processed("/a") is None

    def test_lock_holds_after_backoff_expired(self, ledger, clock):
        page = Page(id="/a", url="https://example.com/a")
        ledger.record_failure("/a")
        clock.advance(31 * 60)
        assert not ledger.is_locked("/a")
        ledger.lock(page)
        clock.advance(5)
        assert ledger.is_locked("/a")
        assert ledger.locked_until("/a") == clock.now - 5 + 24 * HOUR

    def test_relocked_page_stays_out_of_the_queue(self, ledger, clock):
        page = Page(id="/a", url="https://example.com/a", age_in_days=40)
        ledger.record_failure("/a")
        clock.advance(31 * 60)
        ledger.lock(page)
        clock.advance(5)
        assert build_queue([page], ledger) == []

    def test_release_after_failure_makes_page_eligible(self, ledger, clock):
        page = Page(id="/a")
        ledger.record_failure("/a")
        clock.advance(31 * 60)
        ledger.lock(page)
        ledger.release(page)
        assert not ledger.is_locked("/a")
        assert ledger.fail_count("/a") == 1

    def test_cooldown_expires_after_a_day(self, ledger, clock):
        ledger.mark_processed(Page(id="/a"))
        clock.advance(24 * HOUR - 1)
        assert ledger.is_locked("/a")
        clock.advance(1)
        assert not ledger.is_locked("/a")

    def test_priority_pages_use_their_own_key(self, ledger, store, clock):
        url = "https://example.com/hot"
        page = Page(id=url, url=url, is_priority=True)
        ledger.lock(page)
        assert store.get(f"priorityProcessed:{url}") is not None
        assert store.get(f"lastProcessed:{url}") is None
        assert ledger.priority_recent(url)
        clock.advance(24 * HOUR)
        assert not ledger.priority_recent(url)

    def test_garbage_timestamp_is_ignored(self, clock):
        store = DictStore()
        store.set("lastProcessed:/a", "yesterday")
        assert not Ledger(store, clock=clock).is_locked("/a")


class TestSqliteStore:
    def test_values_survive_reopen(self, tmp_path):
        path = tmp_path / "ledger.sqlite3"
        with SqliteStore(path) as store:
            store.set("lastProcessed:/a", "1.5")
            store.set("lastProcessed:/a", "2.5")
            store.set("failCount:/a", "1")
        with SqliteStore(path) as store:
            assert store.get("lastProcessed:/a") == "2.5"
            assert store.keys("failCount:") == ["failCount:/a"]
            store.delete("failCount:/a")
            assert store.get("failCount:/a") is None

    def test_prefix_is_literal(self, tmp_path):
        with SqliteStore(tmp_path / "l.sqlite3") as store:
            store.set("a_b", "1")
            store.set("axb", "1")
            assert store.keys("a_") == ["a_b"]

    def test_ledger_over_sqlite(self, tmp_path):
        clock = FakeClock()
        with SqliteStore(tmp_path / "l.sqlite3") as store:
            ledger = Ledger(store, clock=clock)
            for _ in range(3):
                ledger.record_failure("/a")
            assert ledger.locked_until("/a") == NOW + 24 * HOUR
