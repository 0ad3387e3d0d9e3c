"""Closed-loop benchmark driver.

Issues ``num_requests`` round trips strictly one after another, removes the
fixed transport overhead (one broker round trip each way) from every measured
elapsed time, and feeds the result to the recorder in milliseconds.

Times are integer nanoseconds end to end so compensation is exact.

Examples
--------
>>> compensate(25_000_000, 10_000_000)
5000000
>>> compensate(15_000_000, 10_000_000)  # below 2*rtt: left as measured
15000000
"""
from __future__ import annotations

import logging
import time
from collections import Counter
from typing import Callable, Optional, Protocol

from latbench.errors import RoundTripFailure
from latbench.histogram import LatencyHistogram
from latbench.metrics import BENCH_REQUEST_TOTAL, BENCH_ROUND_TRIP_SECONDS
from latbench.models import Reply, RequestRound
from latbench.tracing import get_tracer


logger = logging.getLogger(__name__)

REQUEST_PAYLOAD = b"Hello World"

Clock = Callable[[], int]
Progress = Callable[[int], None]


class RequestClient(Protocol):
    async def request(self, address: str, payload: bytes, timeout: float | None = None) -> Reply: ...


def to_ns(seconds: float) -> int:
    return int(round(seconds * 1_000_000_000))


def compensate(raw_ns: int, rtt_ns: int) -> int:
    """Subtract the transit overhead ``2 * rtt`` from ``raw`` when ``raw`` exceeds it.

    Never negative and never larger than ``raw``.
    """
    transit = 2 * rtt_ns
    if raw_ns > transit:
        return raw_ns - transit
    return raw_ns


async def run(
    num_requests: int,
    transport_rtt: float,
    client: RequestClient,
    address: str,
    recorder: LatencyHistogram,
    timeout: float | None = None,
    clock: Clock = time.perf_counter_ns,
    on_progress: Optional[Progress] = None,
    wins: Optional[Counter] = None,
) -> LatencyHistogram:
    """Drive ``num_requests`` sequential round trips and record compensated latency.

    ``transport_rtt`` is in seconds. The first failing round trip aborts the run
    with ``RoundTripFailure``; nothing is retried or skipped.
    """
    rtt_ns = to_ns(transport_rtt)
    tracer = get_tracer()
    with tracer.start_as_current_span("benchmark.run") as span:
        span.set_attribute("num_requests", num_requests)
        span.set_attribute("transport_rtt_ns", rtt_ns)
        for iteration in range(num_requests):
            rnd = RequestRound(issued_at_ns=clock())
            try:
                reply = await client.request(address, REQUEST_PAYLOAD, timeout=timeout)
            except RoundTripFailure as exc:
                BENCH_REQUEST_TOTAL.labels(result="error").inc()
                span.record_exception(exc)
                raise RoundTripFailure(exc.reason, iteration=iteration) from exc
            except Exception as exc:  # noqa: BLE001
                BENCH_REQUEST_TOTAL.labels(result="error").inc()
                span.record_exception(exc)
                raise RoundTripFailure(f"{exc.__class__.__name__}: {exc}", iteration=iteration) from exc
            rnd.raw_elapsed_ns = clock() - rnd.issued_at_ns
            rnd.compensated_elapsed_ns = compensate(rnd.raw_elapsed_ns, rtt_ns)

            BENCH_REQUEST_TOTAL.labels(result="ok").inc()
            BENCH_ROUND_TRIP_SECONDS.observe(rnd.raw_elapsed_ns / 1_000_000_000)
            recorder.measure(rnd.compensated_ms)
            if wins is not None and reply.group_id is not None:
                wins[reply.group_id] += 1
            if on_progress is not None:
                on_progress(iteration + 1)
        logger.debug("Completed %d round trips against %s", num_requests, address)
    return recorder
