"""Value types shared by the transport, responders, driver and report.

Hot-path types are plain dataclasses; the end-of-run report is a pydantic
model so it can be dumped as JSON for other tooling.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict


Respond = Callable[[bytes, dict[str, Any]], Awaitable[None]]


@dataclass
class Request:
    """One inbound request as seen by a responder."""
    body: bytes
    headers: dict[str, Any]
    respond: Respond


@dataclass
class Reply:
    """The reply that won a round trip."""
    body: bytes
    headers: dict[str, Any] = field(default_factory=dict)

    @property
    def group_id(self) -> Optional[int]:
        value = self.headers.get("group")
        try:
            return int(value) if value is not None else None
        except (TypeError, ValueError):
            return None


@dataclass
class ResponderHandle:
    """Registration of one competing consumer in a replica group."""
    group_id: int
    subscription: str
    # Callable that cancels the subscription and releases its channel
    close: Optional[Callable[[], Awaitable[None]]] = None


@dataclass
class RequestRound:
    """A single request/response exchange; lives for one driver iteration."""
    issued_at_ns: int
    raw_elapsed_ns: int = 0
    compensated_elapsed_ns: int = 0

    @property
    def compensated_ms(self) -> float:
        return self.compensated_elapsed_ns / 1_000_000


class SummaryPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    value_ms: float


class BenchmarkReport(BaseModel):
    """Result of a complete benchmark run."""
    model_config = ConfigDict(extra="forbid")

    server: str
    rtt_ms: float
    num_responders: int
    num_replicas: int
    num_requests: int
    summary: list[SummaryPoint]
    # Replica group id -> number of round trips that group's reply won
    group_wins: dict[int, int] = {}
