# content_refresher/network.py

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import quote

import httpx

from .errors import FetchFailed, FetchTimeout, NetworkError

logger = logging.getLogger(__name__)

# Observed latency (seconds) reported for a call that raised.
FAILURE_PENALTY = 5.0


class CooldownGate:
    """
    Shared spacing governor for every call to the content backend.

    Each call waits until ``current_delay`` has elapsed since the previous one.
    Slow responses (> slow_threshold) stretch the delay by ``backoff_factor`` up to
    ``max_delay``; fast ones relax it by ``recovery_factor`` back toward ``base_delay``.
    """

    def __init__(
        self,
        base_delay: float = 2.0,
        max_delay: float = 10.0,
        slow_threshold: float = 3.0,
        backoff_factor: float = 1.5,
        recovery_factor: float = 0.9,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.slow_threshold = slow_threshold
        self.backoff_factor = backoff_factor
        self.recovery_factor = recovery_factor
        self.current_delay = base_delay
        self._clock = clock
        self._sleep = sleep
        self._last_request: Optional[float] = None
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        async with self._lock:
            if self._last_request is not None:
                remaining = self.current_delay - (self._clock() - self._last_request)
                if remaining > 0:
                    logger.debug("Cooldown gate: waiting %.2fs", remaining)
                    await self._sleep(remaining)
            self._last_request = self._clock()

    def report(self, duration: float) -> None:
        if duration > self.slow_threshold:
            self.current_delay = min(self.current_delay * self.backoff_factor, self.max_delay)
            logger.info("Backend slow (%.2fs); cooldown raised to %.2fs", duration, self.current_delay)
        else:
            self.current_delay = max(self.base_delay, self.current_delay * self.recovery_factor)


class ResilientFetcher:
    """
    Timeout-bounded HTTP calls to the content backend, all behind one CooldownGate.

    Authenticated calls go direct only. Anonymous calls go direct first and fall back
    once through ``proxy_template`` on a transport error or a 5xx.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        gate: Optional[CooldownGate] = None,
        *,
        timeout: float = 45.0,
        proxy_template: str = "",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.gate = gate or CooldownGate()
        self.timeout = float(timeout)
        self.proxy_template = proxy_template
        self._clock = clock

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self.client.request(method.upper(), url, timeout=self.timeout, **kwargs)
        except httpx.TimeoutException as e:
            raise FetchTimeout(f"{method.upper()} {url} timed out after {self.timeout:.0f}s") from e
        except httpx.HTTPError as e:
            raise FetchFailed(f"{method.upper()} {url} failed: {e}") from e

    def _proxied(self, url: str) -> str:
        return self.proxy_template.format(url=quote(url, safe=""))

    async def request(
        self,
        method: str,
        url: str,
        *,
        auth: Optional[httpx.Auth] = None,
        headers: Optional[Dict[str, str]] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        authenticated = auth is not None or any(k.lower() == "authorization" for k in (headers or {}))

        await self.gate.wait()
        started = self._clock()
        try:
            if authenticated or not self.proxy_template:
                resp = await self._send(method, url, auth=auth, headers=headers, **kwargs)
            else:
                try:
                    resp = await self._send(method, url, headers=headers, **kwargs)
                    if resp.status_code >= 500:
                        raise FetchFailed(f"{method.upper()} {url} -> {resp.status_code}")
                except NetworkError as e:
                    proxy_url = self._proxied(url)
                    logger.warning("Direct fetch failed (%s); retrying via proxy %s", e, proxy_url)
                    resp = await self._send(method, proxy_url, headers=headers, **kwargs)
        except NetworkError:
            self.gate.report(FAILURE_PENALTY)
            raise

        self.gate.report(self._clock() - started)
        return resp

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)
