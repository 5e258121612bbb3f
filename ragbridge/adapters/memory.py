"""In-process pub/sub transport."""
import asyncio
from collections import defaultdict
from typing import Dict, List, Tuple
import structlog
from .base import BusTransport, MessageHandler
from ..errors import BusConnectionError

log = structlog.get_logger()


class InMemoryTransport(BusTransport):
    """In-memory implementation of the pub/sub transport.

    Deliveries are scheduled on the event loop rather than made inline, so
    subscribers see messages asynchronously as they would from a broker.
    """

    def __init__(self):
        self._handlers: Dict[str, List[MessageHandler]] = defaultdict(list)
        self._connected = False
        self.published: List[Tuple[str, bytes]] = []

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True
        log.info("transport.connected", adapter="memory")

    async def publish(self, channel: str, data: bytes) -> int:
        """Record the message and schedule delivery to current subscribers."""
        if not self._connected:
            raise BusConnectionError("in-memory transport is not connected")

        self.published.append((channel, data))
        handlers = list(self._handlers.get(channel, ()))
        loop = asyncio.get_running_loop()
        for handler in handlers:
            loop.call_soon(self._deliver, channel, handler, data)
        log.debug("transport.published", channel=channel, receivers=len(handlers), adapter="memory")
        return len(handlers)

    async def subscribe(self, channel: str, handler: MessageHandler) -> None:
        if not self._connected:
            raise BusConnectionError("in-memory transport is not connected")
        self._handlers[channel].append(handler)
        log.info("transport.subscribed", channel=channel, adapter="memory")

    async def unsubscribe(self, channel: str | None = None) -> None:
        if channel is None:
            self._handlers.clear()
        else:
            self._handlers.pop(channel, None)

    async def close(self) -> None:
        self._handlers.clear()
        self._connected = False

    async def ping(self) -> bool:
        """In-memory transport is healthy while connected."""
        return self._connected

    def _deliver(self, channel: str, handler: MessageHandler, data: bytes):
        # Subscribers may have gone away between publish and delivery
        if handler not in self._handlers.get(channel, ()):
            return
        try:
            handler(data)
        except Exception as e:
            log.error("transport.handler_failed", channel=channel, error=str(e), exc_info=True)
