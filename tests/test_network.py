import asyncio

import httpx
import pytest

from content_refresher.errors import FetchFailed, FetchTimeout
from content_refresher.network import CooldownGate, ResilientFetcher

from conftest import FakeClock, no_sleep

PROXY = "https://corsproxy.io/?{url}"


class TestCooldownGate:
    def make_gate(self, **kw):
        clock = FakeClock(0.0)
        slept = []

        async def sleep(seconds):
            slept.append(seconds)
            clock.advance(seconds)

        return CooldownGate(clock=clock, sleep=sleep, **kw), clock, slept

    def test_spaces_consecutive_calls(self):
        gate, clock, slept = self.make_gate(base_delay=2.0)

        async def two_calls():
            await gate.wait()
            clock.advance(0.5)
            await gate.wait()

        asyncio.run(two_calls())
        assert slept == [1.5]

    def test_no_wait_when_enough_time_passed(self):
        gate, clock, slept = self.make_gate(base_delay=2.0)

        async def two_calls():
            await gate.wait()
            clock.advance(5)
            await gate.wait()

        asyncio.run(two_calls())
        assert slept == []

    def test_slow_responses_stretch_delay_up_to_cap(self):
        gate, _, _ = self.make_gate(base_delay=2.0, max_delay=4.0)
        gate.report(3.5)
        assert gate.current_delay == pytest.approx(3.0)
        gate.report(10)
        assert gate.current_delay == 4.0

    def test_fast_responses_recover_to_base(self):
        gate, _, _ = self.make_gate(base_delay=2.0)
        gate.current_delay = 2.1
        gate.report(0.2)
        assert gate.current_delay == 2.0


class TestResilientFetcher:
    def fetcher(self, handler, proxy=PROXY):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        gate = CooldownGate(base_delay=1.0, sleep=no_sleep)
        return ResilientFetcher(client, gate, timeout=5, proxy_template=proxy)

    def test_anonymous_5xx_falls_back_to_proxy(self):
        seen = []

        def handler(request):
            seen.append(request.url.host)
            if request.url.host == "corsproxy.io":
                return httpx.Response(200, text="via proxy")
            return httpx.Response(503)

        resp = asyncio.run(self.fetcher(handler).get("https://example.com/p"))
        assert resp.text == "via proxy"
        assert seen == ["example.com", "corsproxy.io"]

    def test_connect_error_falls_back_to_proxy(self):
        def handler(request):
            if request.url.host == "corsproxy.io":
                return httpx.Response(200, text="ok")
            raise httpx.ConnectError("refused", request=request)

        assert asyncio.run(self.fetcher(handler).get("https://example.com/p")).text == "ok"

    def test_authenticated_calls_never_use_proxy(self):
        seen = []

        def handler(request):
            seen.append(request.url.host)
            return httpx.Response(503)

        f = self.fetcher(handler)
        resp = asyncio.run(f.request("GET", "https://example.com/wp-json/wp/v2/posts", auth=httpx.BasicAuth("u", "p")))
        assert resp.status_code == 503
        assert seen == ["example.com"]

    def test_timeout_surfaces_and_penalises_gate(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        f = self.fetcher(handler, proxy="")
        with pytest.raises(FetchTimeout):
            asyncio.run(f.get("https://example.com/p"))
        assert f.gate.current_delay > f.gate.base_delay

    def test_proxy_failure_surfaces(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        with pytest.raises(FetchFailed):
            asyncio.run(self.fetcher(handler).get("https://example.com/p"))
