"""
End-to-end benchmark run.

- Connects to the messaging fabric (primary server, then fallback)
- Measures the transport round trip once up front
- Registers the replica-group topology on a fresh service address
- Drives the closed-loop request sequence and summarizes the recorder
- Tears everything down, whether the run succeeded or not
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from typing import Callable, Optional

from latbench import driver
from latbench.config import Settings
from latbench.distribution import DEFAULT_DELAYS, AliasSampler, build_sampler
from latbench.histogram import LatencyHistogram
from latbench.metrics import BENCH_TRANSPORT_RTT_SECONDS, start_metrics_server
from latbench.models import BenchmarkReport, SummaryPoint
from latbench.rabbit import RabbitTransport, new_service_address
from latbench.responder import Sleep
from latbench.topology import register
from latbench.tracing import start_tracing


logger = logging.getLogger(__name__)


def _start_observability(settings: Settings) -> None:
    if settings.metrics_port:
        try:
            start_metrics_server(settings.metrics_port)
            logger.info("Metrics server listening on :%d /metrics", settings.metrics_port)
        except OSError as exc:
            # Already started in this process or port taken; the run does not depend on it
            logger.warning("Metrics server not started on :%d: %s", settings.metrics_port, exc)
    if settings.tracing_enabled:
        start_tracing()


async def run_benchmark(
    settings: Settings,
    transport=None,
    sampler: Optional[AliasSampler] = None,
    on_start: Optional[Callable[[float], None]] = None,
    on_progress: Optional[driver.Progress] = None,
    clock: driver.Clock = time.perf_counter_ns,
    sleep: Sleep | None = None,
) -> BenchmarkReport:
    """Run one complete benchmark and return its report.

    ``transport`` defaults to a ``RabbitTransport`` opened from ``settings`` and
    closed afterwards; a transport passed in is left open for the caller.
    ``on_start`` receives the measured RTT in seconds before requests are sent.

    Any ``RoundTripFailure`` aborts the run; no partial report is returned.
    """
    if sampler is None:
        sampler = build_sampler(DEFAULT_DELAYS)
    _start_observability(settings)

    owns_transport = transport is None
    if transport is None:
        transport = await RabbitTransport.open(settings)
    try:
        rtt = await transport.round_trip(timeout=settings.request_timeout_s)
        BENCH_TRANSPORT_RTT_SECONDS.observe(rtt)
        logger.info("Transport RTT %.3fms", rtt * 1000)
        if on_start is not None:
            on_start(rtt)

        address = new_service_address()
        topology = await register(
            transport,
            sampler,
            settings.num_replicas,
            settings.num_responders,
            address,
            sleep=sleep,
        )
        recorder = LatencyHistogram()
        wins: Counter = Counter()
        try:
            await driver.run(
                settings.num_requests,
                rtt,
                transport,
                address,
                recorder,
                timeout=settings.request_timeout_s,
                clock=clock,
                on_progress=on_progress,
                wins=wins,
            )
        finally:
            await topology.close()
    finally:
        if owns_transport:
            await transport.close()

    return BenchmarkReport(
        server=settings.server_url,
        rtt_ms=rtt * 1000,
        num_responders=settings.num_responders,
        num_replicas=settings.num_replicas,
        num_requests=settings.num_requests,
        summary=[SummaryPoint(label=label, value_ms=value) for label, value in recorder.summary()],
        group_wins=dict(sorted(wins.items())),
    )
