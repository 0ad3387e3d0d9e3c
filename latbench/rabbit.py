"""RabbitMQ transport for the latency benchmark.

This module wraps ``aio_pika`` to provide the four primitives the benchmark
needs from a messaging fabric:
- Connecting with a bounded retry loop and a one-shot fallback server
- Measuring the transport's own round-trip time
- Registering competing consumers for a replica group on a service address
- Request/reply with first-reply-wins semantics

Topology for a service address ``A``:
- ``A`` is a fanout exchange; every replica group gets a copy of each request
- Replica group ``g`` is the queue ``A.qg.g`` bound to ``A``; its responders
  consume that one queue, each on its own channel with prefetch 1, so only an
  idle member receives the next request
- Replies come back through the default exchange to one exclusive reply queue
  per transport, matched by ``correlation_id``

Example:
    >>> transport = await RabbitTransport.open(Settings())
    >>> rtt = await transport.round_trip()
    >>> reply = await transport.request(address, b"Hello World", timeout=5)
    >>> await transport.close()
"""

import asyncio
import logging
import ssl
import time
import uuid
from typing import Awaitable, Callable, Dict, Optional, Set

import aio_pika
from aio_pika import ExchangeType, Message
from aio_pika.abc import (
    AbstractChannel,
    AbstractConnection,
    AbstractExchange,
    AbstractIncomingMessage,
    AbstractQueue,
)
from aio_pika.exceptions import AMQPError

from latbench.config import Settings, wants_tls
from latbench.errors import ReplyEmissionFailure, RoundTripFailure, TransportConnectError
from latbench.metrics import DUPLICATE_REPLY_DISCARDED_TOTAL
from latbench.models import Reply, Request, ResponderHandle
from latbench.tracing import inject_headers


logger = logging.getLogger(__name__)

Handler = Callable[[Request], Awaitable[None]]


def new_service_address() -> str:
    """Return a unique service address so runs on a shared broker never cross-talk."""
    return f"latbench.svc.{uuid.uuid4().hex}"


def group_queue_name(address: str, group_id: int) -> str:
    return f"{address}.qg.{group_id}"


def _build_ssl_context(url: str, ca_path: str = "") -> Optional[ssl.SSLContext]:
    """Return an ``ssl.SSLContext`` for ``amqps://`` URLs, else ``None``.

    A custom CA bundle is honored when ``ca_path`` is set.
    """
    if not wants_tls(url):
        return None
    return ssl.create_default_context(cafile=ca_path or None)


async def _connect_with_retry(
    url: str,
    attempts: int = 1,
    base_delay_ms: int = 500,
    max_delay_ms: int = 3000,
    ca_path: str = "",
) -> AbstractConnection:
    """Open a connection to ``url``, retrying with exponential backoff.

    Raises the last underlying exception once ``attempts`` are used up.
    """
    ssl_context = _build_ssl_context(url, ca_path)
    delay_ms = base_delay_ms
    for attempt in range(1, attempts + 1):
        try:
            if ssl_context is not None:
                return await aio_pika.connect(url, ssl_context=ssl_context)
            return await aio_pika.connect(url)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Connect attempt %d/%d to %s failed: %s", attempt, attempts, url, exc)
            if attempt == attempts:
                raise
            await asyncio.sleep(delay_ms / 1000.0)
            delay_ms = min(int(delay_ms * 2), max_delay_ms)
    raise TransportConnectError(url, error=f"no connection attempts made (attempts={attempts})")


async def connect(
    url: str,
    fallback_url: str | None = None,
    attempts: int = 1,
    base_delay_ms: int = 500,
    max_delay_ms: int = 3000,
    ca_path: str = "",
) -> AbstractConnection:
    """Connect to ``url``, falling back to ``fallback_url`` once if it fails.

    Raises ``TransportConnectError`` when the fallback (or the primary, when no
    fallback is configured) cannot be reached either.
    """
    try:
        return await _connect_with_retry(url, attempts, base_delay_ms, max_delay_ms, ca_path)
    except Exception as exc:  # noqa: BLE001
        if not fallback_url or fallback_url == url:
            raise TransportConnectError(url, error=str(exc)) from exc
        logger.warning("Falling back to [%s]: %s unreachable (%s)", fallback_url, url, exc)

    try:
        return await _connect_with_retry(fallback_url, attempts, base_delay_ms, max_delay_ms, ca_path)
    except Exception as exc:  # noqa: BLE001
        raise TransportConnectError(url, fallback_url, error=str(exc)) from exc


class RabbitTransport:
    """Request/reply and competing-consumer primitives over one AMQP connection.

    Concurrency model:
    - One channel carries requests, pings and the exclusive reply queue
    - Every registered responder gets its own channel with prefetch 1
    - Each delivery to a responder runs in its own task, so a sleeping
      responder never holds up other consumers

    Late replies (a second replica group answering after the first, or a reply
    arriving after its request timed out) are drained from the reply queue and
    discarded; nothing waits on them.
    """

    def __init__(self, connection: AbstractConnection):
        self._connection = connection
        self._channel: AbstractChannel | None = None
        self._reply_queue: AbstractQueue | None = None
        self._exchanges: Dict[str, AbstractExchange] = {}
        self._pending: Dict[str, asyncio.Future[Reply]] = {}
        self._handles: list[ResponderHandle] = []
        self._tasks: Set[asyncio.Task[None]] = set()

    @classmethod
    async def open(cls, settings: Settings) -> "RabbitTransport":
        """Connect using ``settings`` and prepare the reply path."""
        connection = await connect(
            settings.primary_url,
            settings.secondary_url,
            attempts=settings.connect_attempts,
            base_delay_ms=settings.connect_base_delay_ms,
            max_delay_ms=settings.connect_max_delay_ms,
            ca_path=settings.ssl_ca_path,
        )
        transport = cls(connection)
        try:
            await transport.start()
        except Exception:
            await connection.close()
            raise
        return transport

    async def start(self) -> None:
        self._channel = await self._connection.channel()
        self._reply_queue = await self._channel.declare_queue(exclusive=True, auto_delete=True)
        await self._reply_queue.consume(self._on_reply, no_ack=True)

    async def _on_reply(self, message: AbstractIncomingMessage) -> None:
        """Resolve the pending round trip for this correlation id, if any."""
        fut = self._pending.pop(message.correlation_id or "", None)
        if fut is None or fut.done():
            DUPLICATE_REPLY_DISCARDED_TOTAL.inc()
            return
        fut.set_result(Reply(body=message.body, headers=dict(message.headers or {})))

    def _started(self) -> tuple[AbstractChannel, AbstractQueue]:
        if self._channel is None or self._reply_queue is None:
            raise RoundTripFailure("transport is not started")
        return self._channel, self._reply_queue

    def _expect(self, correlation_id: str) -> "asyncio.Future[Reply]":
        fut: asyncio.Future[Reply] = asyncio.get_running_loop().create_future()
        self._pending[correlation_id] = fut
        return fut

    async def _await_reply(self, correlation_id: str, fut: "asyncio.Future[Reply]", timeout: float | None) -> Reply:
        try:
            return await asyncio.wait_for(fut, timeout)
        except asyncio.TimeoutError as exc:
            raise RoundTripFailure(f"no reply within {timeout}s") from exc
        finally:
            self._pending.pop(correlation_id, None)

    async def round_trip(self, timeout: float | None = 5.0) -> float:
        """Seconds for one ping to travel to the broker and back."""
        channel, reply_queue = self._started()
        correlation_id = f"ping.{uuid.uuid4().hex}"
        fut = self._expect(correlation_id)
        start = time.perf_counter()
        try:
            await channel.default_exchange.publish(
                Message(b"", correlation_id=correlation_id),
                routing_key=reply_queue.name,
            )
        except (AMQPError, ConnectionError) as exc:
            self._pending.pop(correlation_id, None)
            raise RoundTripFailure(f"ping publish failed: {exc}") from exc
        await self._await_reply(correlation_id, fut, timeout)
        return time.perf_counter() - start

    async def _service_exchange(self, channel: AbstractChannel, address: str) -> AbstractExchange:
        return await channel.declare_exchange(address, ExchangeType.FANOUT, auto_delete=True)

    async def register_competing_consumer(
        self,
        address: str,
        group_id: int,
        handler: Handler,
        prefetch: int = 1,
    ) -> ResponderHandle:
        """Attach ``handler`` as one competing consumer of replica group ``group_id``."""
        channel = await self._connection.channel()
        await channel.set_qos(prefetch_count=prefetch)
        exchange = await self._service_exchange(channel, address)
        queue = await channel.declare_queue(group_queue_name(address, group_id), auto_delete=True)
        await queue.bind(exchange)
        inflight: Set[asyncio.Task[None]] = set()

        async def on_message(message: AbstractIncomingMessage) -> None:
            task = asyncio.create_task(self._dispatch(channel, message, handler))
            for tasks in (self._tasks, inflight):
                tasks.add(task)
                task.add_done_callback(tasks.discard)

        consumer_tag = await queue.consume(on_message, no_ack=False)

        async def close() -> None:
            if channel.is_closed:
                return
            await queue.cancel(consumer_tag)
            # Deliveries still sleeping must finish (reject) while their channel is open
            for task in list(inflight):
                task.cancel()
            if inflight:
                await asyncio.gather(*inflight, return_exceptions=True)
            await channel.close()

        handle = ResponderHandle(group_id=group_id, subscription=consumer_tag, close=close)
        self._handles.append(handle)
        return handle

    async def _dispatch(self, channel: AbstractChannel, message: AbstractIncomingMessage, handler: Handler) -> None:
        # Ack only once the handler finishes so prefetch 1 keeps a busy member out of rotation
        async with message.process(requeue=False, ignore_processed=True):

            async def respond(body: bytes, headers: dict) -> None:
                if not message.reply_to:
                    raise ReplyEmissionFailure("request carries no reply_to")
                if channel.is_closed:
                    raise ReplyEmissionFailure("responder channel is closed")
                await channel.default_exchange.publish(
                    Message(body, correlation_id=message.correlation_id, headers=headers),
                    routing_key=message.reply_to,
                )

            request = Request(body=message.body, headers=dict(message.headers or {}), respond=respond)
            try:
                await handler(request)
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                logger.exception("Responder handler failed for %s", message.correlation_id)

    async def request(self, address: str, payload: bytes, timeout: float | None = None) -> Reply:
        """Publish ``payload`` to ``address`` and wait for the first reply.

        Raises ``RoundTripFailure`` on timeout or when the channel/connection fails.
        """
        channel, reply_queue = self._started()
        correlation_id = uuid.uuid4().hex
        fut = self._expect(correlation_id)
        try:
            exchange = self._exchanges.get(address)
            if exchange is None:
                exchange = await self._service_exchange(channel, address)
                self._exchanges[address] = exchange
            await exchange.publish(
                Message(
                    payload,
                    correlation_id=correlation_id,
                    reply_to=reply_queue.name,
                    headers=inject_headers(),
                    expiration=timeout,
                ),
                routing_key="",
            )
        except (AMQPError, ConnectionError) as exc:
            self._pending.pop(correlation_id, None)
            raise RoundTripFailure(f"publish failed: {exc}") from exc
        return await self._await_reply(correlation_id, fut, timeout)

    async def close(self) -> None:
        """Cancel responders, abandon pending replies and close the connection."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        for handle in self._handles:
            if handle.close is not None:
                try:
                    await handle.close()
                except Exception as exc:  # noqa: BLE001
                    logger.debug("Closing responder %s failed: %s", handle.subscription, exc)
        self._handles.clear()
        for fut in self._pending.values():
            fut.cancel()
        self._pending.clear()
        await self._connection.close()
