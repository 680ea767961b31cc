"""Shared fakes for the content_refresher test suite.

Nothing here talks to the network: HTTP goes through httpx.MockTransport and
generation through FakeGenerator, which answers by prompt key.
"""

from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from content_refresher.ledger import Ledger
from content_refresher.network import CooldownGate, ResilientFetcher
from content_refresher.settings import WordPressSettings
from content_refresher.wordpress_client import WordPressClient

NOW = 1_700_000_000.0


class FakeClock:
    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class DictStore:
    """In-memory stand-in for SqliteStore."""

    def __init__(self):
        self.data: Dict[str, str] = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = str(value)

    def delete(self, key):
        self.data.pop(key, None)

    def keys(self, prefix=""):
        return sorted(k for k in self.data if k.startswith(prefix))


class FakeGenerator:
    """
    ``responses`` maps prompt key -> str, exception instance, or callable(args) -> str.
    Unknown keys answer "" like an exhausted model.
    """

    def __init__(self, responses: Optional[Dict[str, Any]] = None):
        self.responses = dict(responses or {})
        self.calls: List[tuple] = []

    async def generate(self, prompt_key: str, args, fmt: str = "text") -> str:
        self.calls.append((prompt_key, list(args), fmt))
        answer = self.responses.get(prompt_key, "")
        if isinstance(answer, Exception):
            raise answer
        if callable(answer):
            return answer(list(args))
        return answer

    def count(self, prompt_key: str) -> int:
        return sum(1 for c in self.calls if c[0] == prompt_key)


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> DictStore:
    return DictStore()


@pytest.fixture
def ledger(store, clock) -> Ledger:
    return Ledger(store, clock=clock)


def make_wordpress(handler: Callable[[httpx.Request], httpx.Response], **wp_overrides) -> WordPressClient:
    """WordPressClient over a MockTransport with an instant cooldown gate."""
    settings = WordPressSettings(
        url="https://example.com", username="editor", app_password="abcd efgh", **wp_overrides
    )
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    gate = CooldownGate(base_delay=0.0, sleep=no_sleep)
    fetcher = ResilientFetcher(client, gate, proxy_template=settings.proxy_template)
    return WordPressClient(settings, fetcher)
