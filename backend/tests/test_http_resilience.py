import asyncio
import time

import httpx
import pytest

from hmohunter.adapters.clients.http_resilience import RateLimiter, ThrottledHttpClient


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, s: float) -> None:
        self.sleeps.append(s)
        self.now += s


@pytest.mark.asyncio
async def test_sequential_calls_are_spaced_by_min_interval():
    clock = FakeClock()
    limiter = RateLimiter(1.1, clock=clock, sleep=clock.sleep)
    stamps: list[float] = []

    async def upstream() -> float:
        stamps.append(clock.now)
        return clock.now

    for _ in range(4):
        await limiter.throttled_call(upstream)

    assert stamps[0] == 0.0
    assert clock.now >= 3 * 1.1 - 1e-9
    assert all(b - a >= 1.1 - 1e-9 for a, b in zip(stamps, stamps[1:]))


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_gate():
    clock = FakeClock()
    limiter = RateLimiter(0.5, clock=clock, sleep=clock.sleep)
    stamps: list[float] = []

    async def upstream() -> None:
        stamps.append(clock.now)

    await asyncio.gather(*(limiter.throttled_call(upstream) for _ in range(5)))

    stamps.sort()
    assert len(stamps) == 5
    assert all(b - a >= 0.5 - 1e-9 for a, b in zip(stamps, stamps[1:]))


@pytest.mark.asyncio
async def test_no_wait_when_interval_already_elapsed():
    clock = FakeClock()
    limiter = RateLimiter(1.0, clock=clock, sleep=clock.sleep)
    await limiter.wait()
    clock.now += 5
    assert await limiter.wait() == 0.0
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_real_clock_lower_bound():
    limiter = RateLimiter(0.05)
    t0 = time.monotonic()
    for _ in range(4):
        await limiter.wait()
    # (N - 1) * min_interval, minus timer slack
    assert time.monotonic() - t0 >= 0.14


def _client(handler) -> ThrottledHttpClient:
    return ThrottledHttpClient(
        RateLimiter(0),
        user_agent="HMO-Hunter-Test/1.0",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_get_json_sends_user_agent_and_params():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["ua"] = request.headers.get("user-agent")
        seen["q"] = request.url.params.get("q")
        return httpx.Response(200, json=[{"ok": True}])

    data = await _client(handler).get_json("https://geo.test/search", params={"q": "12 Elm Road"})

    assert data == [{"ok": True}]
    assert seen == {"ua": "HMO-Hunter-Test/1.0", "q": "12 Elm Road"}


@pytest.mark.asyncio
async def test_non_2xx_raises_and_is_not_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503, text="busy")

    with pytest.raises(httpx.HTTPStatusError):
        await _client(handler).get_json("https://geo.test/search")
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_malformed_json_raises_value_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>not json</html>")

    with pytest.raises(ValueError):
        await _client(handler).get_json("https://geo.test/search")
