"""Event bus: publishes queries and correlates their asynchronous responses."""
import asyncio
import time
from enum import Enum
import structlog

from ..adapters.base import BusTransport
from ..adapters.memory import InMemoryTransport
from ..adapters.redis_pubsub import RedisPubSubTransport, redact_url
from ..config import Settings
from ..errors import (
    BusConnectionError,
    MalformedMessageError,
    NotInitializedError,
    PublishError,
    QueryTimeoutError,
    ShuttingDownError,
    UnmatchedResponseError,
)
from ..event_models import QueryEnvelope, ResponseEnvelope, decode_response, encode_query
from ..metrics import Metrics
from .pending import PendingQueryTable

log = structlog.get_logger()


class BusState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    READY = "ready"
    CLOSED = "closed"


class EventBus:
    """
    Request/response correlation over a pub/sub transport.

    Queries go out on ``query_channel``; responses arrive on
    ``response_channel`` and are matched to waiting callers by query id.
    Closing the bus rejects every pending query with ShuttingDownError.
    """

    def __init__(
        self,
        transport: BusTransport,
        query_channel: str = "rag:query",
        response_channel: str = "rag:response",
        default_domain: str = "inngest",
        default_timeout_ms: int = 30000,
        metrics: Metrics | None = None,
    ):
        self._transport = transport
        self.query_channel = query_channel
        self.response_channel = response_channel
        self.default_domain = default_domain
        self.default_timeout_ms = default_timeout_ms
        self._metrics = metrics
        self._pending = PendingQueryTable()
        self._state = BusState.UNINITIALIZED

    @property
    def state(self) -> BusState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is BusState.READY

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def transport(self) -> BusTransport:
        return self._transport

    async def initialize(self):
        """
        Connect the transport and subscribe to responses.

        Raises:
            BusConnectionError: If either channel cannot be established
        """
        if self._state is BusState.READY:
            return
        if self._state is not BusState.UNINITIALIZED:
            raise BusConnectionError(f"Cannot initialize event bus in state {self._state.value}")

        self._state = BusState.CONNECTING
        log.info("bus.connecting", query_channel=self.query_channel, response_channel=self.response_channel)
        try:
            await self._transport.connect()
            await self._transport.subscribe(self.response_channel, self._route_response)
        except Exception as e:
            self._state = BusState.UNINITIALIZED
            log.error("bus.connect_failed", error=str(e), error_type=type(e).__name__)
            await self._release_transport()
            raise BusConnectionError(f"Failed to initialize event bus: {e}") from e

        self._state = BusState.READY
        log.info("bus.ready", response_channel=self.response_channel)

    async def publish_query(
        self,
        caller_id: str,
        conversation_id: str,
        text: str,
        domain: str | None = None,
    ) -> str:
        """
        Publish a query without waiting for its answer.

        Returns:
            The generated query id

        Raises:
            NotInitializedError: If the bus is not ready
            PublishError: If the transport rejected the message
        """
        self._require_ready("publish_query")
        envelope = self._build_query(caller_id, conversation_id, text, domain)
        await self._send(envelope)
        return envelope.id

    async def wait_for_response(self, query_id: str, timeout_ms: int | None = None) -> ResponseEnvelope:
        """
        Wait for the response to a published query.

        Raises:
            NotInitializedError: If the bus is not ready
            QueryTimeoutError: If nothing arrives within ``timeout_ms``
            ShuttingDownError: If the bus closes first
        """
        self._require_ready("wait_for_response")
        timeout_ms = self.default_timeout_ms if timeout_ms is None else timeout_ms
        future = self._pending.register(query_id, timeout_ms)
        return await self._await_settlement(query_id, future)

    async def ask(
        self,
        caller_id: str,
        conversation_id: str,
        text: str,
        timeout_ms: int | None = None,
        domain: str | None = None,
    ) -> ResponseEnvelope:
        """
        Publish a query and wait for its response.

        The waiter is registered before the query goes out, so a response
        that beats the publish call back cannot be missed.
        """
        self._require_ready("ask")
        envelope = self._build_query(caller_id, conversation_id, text, domain)
        timeout_ms = self.default_timeout_ms if timeout_ms is None else timeout_ms
        future = self._pending.register(envelope.id, timeout_ms)
        try:
            await self._send(envelope)
        except PublishError:
            self._pending.discard(envelope.id)
            raise
        return await self._await_settlement(envelope.id, future)

    def cancel(self, query_id: str) -> bool:
        """Fail a pending query with QueryCancelledError."""
        cancelled = self._pending.cancel(query_id)
        self._update_pending_gauge()
        return cancelled

    async def close(self):
        """
        Unsubscribe, release the transport and reject pending queries.

        Safe to call more than once. A closed bus cannot be re-initialized.
        """
        if self._state is BusState.CLOSED:
            return
        log.info("bus.closing", pending=len(self._pending))
        self._state = BusState.CLOSED

        rejected = self._pending.reject_all(ShuttingDownError)
        self._update_pending_gauge()
        try:
            await self._transport.unsubscribe(self.response_channel)
        except Exception as e:
            log.warning("bus.unsubscribe_failed", error=str(e))
        await self._release_transport()
        log.info("bus.closed", rejected=rejected)

    async def ping(self) -> bool:
        """Transport-level liveness probe, independent of pending queries."""
        try:
            return await self._transport.ping()
        except Exception as e:
            log.warning("bus.ping_failed", error=str(e))
            return False

    def _require_ready(self, operation: str):
        if self._state is not BusState.READY:
            raise NotInitializedError(f"{operation} requires a ready event bus (state: {self._state.value})")

    def _build_query(self, caller_id: str, conversation_id: str, text: str, domain: str | None) -> QueryEnvelope:
        return QueryEnvelope(
            caller_id=caller_id,
            conversation_id=conversation_id,
            payload=text,
            domain=domain or self.default_domain,
        )

    async def _send(self, envelope: QueryEnvelope):
        try:
            await self._transport.publish(self.query_channel, encode_query(envelope))
        except Exception as e:
            log.error("query.publish_failed", query_id=envelope.id, error=str(e))
            raise PublishError(f"Failed to publish query {envelope.id}: {e}") from e

        if self._metrics:
            self._metrics.record_query_published(envelope.domain)
        log.info(
            "query.published",
            query_id=envelope.id,
            caller_id=envelope.caller_id,
            conversation_id=envelope.conversation_id,
            domain=envelope.domain,
        )

    async def _await_settlement(self, query_id: str, future: asyncio.Future) -> ResponseEnvelope:
        self._update_pending_gauge()
        started = time.monotonic()
        outcome = "cancelled"
        try:
            response = await future
            outcome = "answered" if response.success else "failed"
            return response
        except QueryTimeoutError:
            outcome = "timeout"
            raise
        except ShuttingDownError:
            outcome = "shutdown"
            raise
        finally:
            if self._metrics:
                self._metrics.record_query_settled(outcome, time.monotonic() - started)
            self._update_pending_gauge()

    def _route_response(self, data: bytes):
        # Runs synchronously from the transport: decode and settle happen
        # without yielding to the loop
        try:
            response = decode_response(data)
        except MalformedMessageError as e:
            if self._metrics:
                self._metrics.malformed_messages_total.inc()
            log.warning("response.malformed", error=str(e), size=len(data))
            return

        log.info(
            "response.received",
            query_id=response.id,
            caller_id=response.caller_id,
            success=response.success,
            sources=len(response.sources),
        )
        try:
            self._pending.resolve(response)
        except UnmatchedResponseError:
            log.warning("response.unmatched", query_id=response.id)
        self._update_pending_gauge()

    def _update_pending_gauge(self):
        if self._metrics:
            self._metrics.set_pending_queries(len(self._pending))

    async def _release_transport(self):
        try:
            await self._transport.close()
        except Exception as e:
            log.warning("bus.transport_close_failed", error=str(e))


def build_transport(settings: Settings) -> BusTransport:
    """
    Create the transport selected by configuration.

    Returns:
        BusTransport instance based on the BUS_ADAPTER setting
    """
    if settings.BUS_ADAPTER == "redis":
        if not settings.REDIS_URL:
            log.warning(
                "adapter.fallback",
                requested="redis",
                actual="memory",
                reason="REDIS_URL not configured"
            )
            return InMemoryTransport()

        log.info("adapter.selected", type="redis", url=redact_url(settings.REDIS_URL))
        return RedisPubSubTransport(settings.REDIS_URL)
    else:
        log.info("adapter.selected", type="memory")
        return InMemoryTransport()


def build_event_bus(settings: Settings, metrics: Metrics | None = None) -> EventBus:
    return EventBus(
        transport=build_transport(settings),
        query_channel=settings.QUERY_CHANNEL,
        response_channel=settings.RESPONSE_CHANNEL,
        default_domain=settings.DEFAULT_DOMAIN,
        default_timeout_ms=settings.RESPONSE_TIMEOUT_MS,
        metrics=metrics,
    )
