"""
Simulated service responder.

- Bound to one replica group on the shared service address
- Sleeps for a delay drawn from the shared alias sampler, then replies
- Reply failures stay local: logged, counted, never raised
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from opentelemetry import context  # type: ignore

from latbench.distribution import AliasSampler
from latbench.metrics import RESPONDER_DELAY_SECONDS, RESPONDER_REPLY_FAILED_TOTAL, RESPONDER_REQUEST_TOTAL
from latbench.models import Request
from latbench.tracing import extract_context_from_headers, get_tracer


logger = logging.getLogger(__name__)

DEFAULT_PAYLOAD = b"42"

Sleep = Callable[[float], Awaitable[None]]


class Responder:
    """One competing consumer in a replica group.

    Properties:
    - `group_id`: replica group this responder answers for
    - `index`: position within the group, echoed back in the `responder` reply header
    - `sampler`: shared, read-only delay sampler
    - `handled`: number of requests this responder has taken off its group's queue

    Example:
    ```python
    responder = Responder(group_id=0, index=1, sampler=build_sampler())
    await transport.register_competing_consumer(address, 0, responder.handle)
    ```
    """

    def __init__(
        self,
        group_id: int,
        sampler: AliasSampler,
        index: int = 0,
        payload: bytes = DEFAULT_PAYLOAD,
        sleep: Sleep = asyncio.sleep,
    ):
        self.group_id = group_id
        self.index = index
        self.sampler = sampler
        self.payload = payload
        self.handled = 0
        self._sleep = sleep
        self._tracer = get_tracer()
        self._group_label = str(group_id)

    @property
    def name(self) -> str:
        return f"qg:{self.group_id}/{self.index}"

    async def handle(self, request: Request) -> None:
        """Serve one request: simulated work, then a fixed reply."""
        self.handled += 1
        RESPONDER_REQUEST_TOTAL.labels(group=self._group_label).inc()
        delay_ms = self.sampler.sample()

        token = context.attach(extract_context_from_headers(request.headers))
        try:
            with self._tracer.start_as_current_span("respond") as span:
                span.set_attribute("group", self.group_id)
                span.set_attribute("delay_ms", delay_ms)
                RESPONDER_DELAY_SECONDS.observe(delay_ms / 1000.0)
                await self._sleep(delay_ms / 1000.0)
                await self._reply(request)
        finally:
            context.detach(token)

    async def _reply(self, request: Request) -> None:
        headers = {"group": self.group_id, "responder": self.index}
        try:
            await request.respond(self.payload, headers)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            # The requester may be gone; another group's reply or the driver's timeout covers it
            RESPONDER_REPLY_FAILED_TOTAL.labels(group=self._group_label, reason=exc.__class__.__name__).inc()
            logger.warning("Responder %s could not deliver reply: %s", self.name, exc)
