# hmohunter/adapters/clients/http_resilience.py
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, TypeVar

import httpx

log = logging.getLogger(__name__)

T = TypeVar("T")

# What a throttled upstream call may raise for "the upstream let us down":
# transport errors, timeouts, non-2xx (HTTPStatusError) and unparsable JSON.
UPSTREAM_ERRORS: tuple[type[BaseException], ...] = (httpx.HTTPError, ValueError)


class RateLimiter:
    """
    Minimum spacing between consecutive calls of one throttled class.

    Not a token bucket: bursts are impossible, and whoever reaches the gate
    pays the wait. Share one instance between workers that hit the same
    upstream; the timestamp is only touched under the lock.
    """

    def __init__(
        self,
        min_interval_s: float,
        *,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.min_interval_s = float(min_interval_s)
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_ts: float | None = None

    async def wait(self) -> float:
        """Block until the next call may go out; returns the seconds slept."""
        if self.min_interval_s <= 0:
            return 0.0
        async with self._lock:
            slept = 0.0
            if self._last_ts is not None:
                slept = max(0.0, self.min_interval_s - (self._clock() - self._last_ts))
                if slept > 0:
                    await self._sleep(slept)
            self._last_ts = self._clock()
            return slept

    async def throttled_call(self, upstream: Callable[[], Awaitable[T]]) -> T:
        await self.wait()
        return await upstream()


class ThrottledHttpClient:
    """
    JSON GETs through a RateLimiter with an identifying User-Agent and an
    explicit timeout. One attempt per call; callers decide what a failure means.
    """

    def __init__(
        self,
        limiter: RateLimiter,
        *,
        user_agent: str,
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.limiter = limiter
        self.user_agent = user_agent
        self.timeout = httpx.Timeout(float(timeout_s))
        self._transport = transport

    async def get_json(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        merged = {"User-Agent": self.user_agent, "Accept": "application/json"}
        merged.update(headers or {})

        async def _do() -> Any:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(url, params=params, headers=merged)
            resp.raise_for_status()
            return resp.json()

        return await self.limiter.throttled_call(_do)
