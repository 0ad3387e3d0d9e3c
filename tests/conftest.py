import asyncio
import contextlib
import random
from typing import Awaitable, Callable

import pytest

from latbench.errors import RoundTripFailure
from latbench.models import Reply, Request, ResponderHandle


class VirtualClock:
    """Integer-nanosecond clock that only moves when something sleeps on it."""

    def __init__(self) -> None:
        self.now_ns = 0

    def __call__(self) -> int:
        return self.now_ns

    async def sleep(self, seconds: float) -> None:
        self.now_ns += int(round(seconds * 1_000_000_000))
        await asyncio.sleep(0)


class FakeFabric:
    """In-memory stand-in for the broker.

    One asyncio.Queue per (address, replica group): every consumer of a group
    pulls from the same queue (competing consumption) and each request is put
    on every group's queue (fan-out). ``rtt`` seconds are slept on the way out
    and again on the way back.
    """

    def __init__(self, rtt: float = 0.0, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.rtt = rtt
        self._sleep = sleep
        self._groups: dict[str, dict[int, asyncio.Queue]] = {}
        self._tasks: list[asyncio.Task] = []
        self.requests_sent = 0
        self.late_replies = 0

    async def round_trip(self, timeout=None) -> float:
        return self.rtt

    async def register_competing_consumer(self, address, group_id, handler) -> ResponderHandle:
        queue = self._groups.setdefault(address, {}).setdefault(group_id, asyncio.Queue())
        task = asyncio.create_task(self._consume(queue, handler))
        self._tasks.append(task)

        async def close() -> None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        return ResponderHandle(group_id=group_id, subscription=f"fake-{len(self._tasks)}", close=close)

    async def _consume(self, queue: asyncio.Queue, handler) -> None:
        while True:
            request = await queue.get()
            await handler(request)

    async def request(self, address, payload, timeout=None) -> Reply:
        groups = self._groups.get(address)
        if not groups:
            raise RoundTripFailure("no responders")
        self.requests_sent += 1
        fut = asyncio.get_running_loop().create_future()

        async def respond(body: bytes, headers: dict) -> None:
            if self.rtt:
                await self._sleep(self.rtt)
            if fut.done():
                self.late_replies += 1
                return
            fut.set_result(Reply(body=body, headers=dict(headers)))

        if self.rtt:
            await self._sleep(self.rtt)
        for queue in groups.values():
            queue.put_nowait(Request(body=payload, headers={}, respond=respond))
        try:
            return await asyncio.wait_for(fut, timeout)
        except asyncio.TimeoutError as exc:
            raise RoundTripFailure(f"no reply within {timeout}s") from exc

    async def close(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def bench_env(monkeypatch):
    # Keep BENCH_* values from the developer's shell out of the tests
    for name in (
        "BENCH_SERVER",
        "BENCH_FALLBACK_SERVER",
        "BENCH_NUM_RESPONDERS",
        "BENCH_NUM_REPLICAS",
        "BENCH_NUM_REQUESTS",
        "BENCH_REQUEST_TIMEOUT_S",
        "BENCH_METRICS_PORT",
        "BENCH_TRACING",
        "BENCH_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def make_fabric():
    return FakeFabric
