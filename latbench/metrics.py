"""Prometheus metrics and a tiny HTTP server to expose them.

Call `start_metrics_server(port)` once in a process to expose /metrics.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram, start_http_server


# Driver metrics
BENCH_REQUEST_TOTAL = Counter(
    "bench_request_total", "Total benchmark round trips issued", ["result"]
)
BENCH_ROUND_TRIP_SECONDS = Histogram(
    "bench_round_trip_seconds",
    "Raw request/reply round-trip time before RTT compensation",
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 5),
)
BENCH_TRANSPORT_RTT_SECONDS = Histogram(
    "bench_transport_rtt_seconds",
    "Measured transport round-trip overhead",
    buckets=(0.0001, 0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5),
)

# Responder metrics
RESPONDER_REQUEST_TOTAL = Counter(
    "responder_request_total", "Requests handled by simulated responders", ["group"]
)
RESPONDER_DELAY_SECONDS = Histogram(
    "responder_delay_seconds",
    "Simulated service time drawn by responders",
    buckets=(0.005, 0.01, 0.015, 0.05, 0.1, 0.5),
)
RESPONDER_REPLY_FAILED_TOTAL = Counter(
    "responder_reply_failed_total", "Replies a responder could not deliver", ["group", "reason"]
)

# Transport metrics
DUPLICATE_REPLY_DISCARDED_TOTAL = Counter(
    "duplicate_reply_discarded_total",
    "Replies drained after their round trip was already answered or abandoned",
)


def start_metrics_server(port: int = 9000) -> None:
    start_http_server(port)
