"""Redis pub/sub transport."""
import asyncio
import re
from typing import Dict
import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError
from .base import BusTransport, MessageHandler
from ..errors import BusConnectionError

log = structlog.get_logger()


def redact_url(url: str) -> str:
    """Hide the password part of a connection URL."""
    return re.sub(r":[^:@/]*@", ":***@", url)


class RedisPubSubTransport(BusTransport):
    """Redis pub/sub implementation of the transport.

    Uses one connection for publishing and a second, dedicated connection
    for subscriptions, since a Redis connection in subscribe mode cannot
    issue regular commands. Inbound messages are read by a background
    listener task and handed to the registered handler for their channel.
    """

    def __init__(
        self,
        redis_url: str,
        connect_timeout: float = 5.0,
        retry_delay: float = 1.0,
    ):
        """
        Initialize Redis pub/sub transport.

        Args:
            redis_url: Redis connection URL
            connect_timeout: Socket connect timeout in seconds
            retry_delay: Seconds to back off after a listener read error
        """
        self.redis_url = redis_url
        self.connect_timeout = connect_timeout
        self.retry_delay = retry_delay
        self._publisher: Redis | None = None
        self._subscriber: Redis | None = None
        self._pubsub = None
        self._handlers: Dict[str, MessageHandler] = {}
        self._listener: asyncio.Task | None = None

    def _new_client(self) -> Redis:
        return Redis.from_url(
            self.redis_url,
            decode_responses=False,  # payloads are decoded by the router
            socket_connect_timeout=self.connect_timeout,
        )

    async def connect(self) -> None:
        """
        Open the publisher and subscriber connections.

        Raises:
            RedisError: If either connection cannot reach the server
        """
        self._publisher = self._new_client()
        self._subscriber = self._new_client()
        try:
            await self._publisher.ping()
            await self._subscriber.ping()
        except RedisError as e:
            log.error("redis.connect_failed", url=redact_url(self.redis_url), error=str(e))
            await self.close()
            raise
        self._pubsub = self._subscriber.pubsub()
        log.info("transport.connected", adapter="redis", url=redact_url(self.redis_url))

    async def publish(self, channel: str, data: bytes) -> int:
        """
        Publish to a Redis channel.

        Raises:
            RedisError: If unable to publish
        """
        if self._publisher is None:
            raise BusConnectionError("redis transport is not connected")
        try:
            receivers = await self._publisher.publish(channel, data)
        except RedisError as e:
            log.error("redis.publish_failed", channel=channel, error=str(e))
            raise
        log.debug("transport.published", channel=channel, receivers=receivers, adapter="redis")
        return receivers

    async def subscribe(self, channel: str, handler: MessageHandler) -> None:
        """Subscribe and wait for the server's confirmation before returning."""
        if self._pubsub is None:
            raise BusConnectionError("redis transport is not connected")

        await self._pubsub.subscribe(channel)
        self._handlers[channel] = handler
        if self._listener is None:
            await self._await_confirmation(channel)
            self._listener = asyncio.create_task(self._listen())
        log.info("transport.subscribed", channel=channel, adapter="redis")

    async def _await_confirmation(self, channel: str, timeout: float | None = None):
        deadline = asyncio.get_running_loop().time() + (timeout or self.connect_timeout)
        while asyncio.get_running_loop().time() < deadline:
            message = await self._pubsub.get_message(timeout=0.1)
            if message is None:
                continue
            if message.get("type") == "subscribe" and _as_str(message.get("channel")) == channel:
                return
            self._dispatch(message)
        raise BusConnectionError(f"subscription to {channel} was not confirmed")

    async def _listen(self):
        while True:
            try:
                message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except Exception as e:
                # No single caller owns the inbound stream; keep listening
                log.error("redis.listen_failed", error=str(e), error_type=type(e).__name__)
                await asyncio.sleep(self.retry_delay)
                continue
            if message is not None:
                self._dispatch(message)

    def _dispatch(self, message: dict):
        if message.get("type") != "message":
            return
        channel = _as_str(message.get("channel"))
        handler = self._handlers.get(channel)
        if handler is None:
            log.debug("redis.message_ignored", channel=channel)
            return
        try:
            handler(message["data"])
        except Exception as e:
            log.error("redis.handler_failed", channel=channel, error=str(e), exc_info=True)

    async def unsubscribe(self, channel: str | None = None) -> None:
        channels = list(self._handlers) if channel is None else [channel]
        for name in channels:
            self._handlers.pop(name, None)
        if self._pubsub is not None and channels:
            try:
                await self._pubsub.unsubscribe(*channels)
            except RedisError as e:
                log.warning("redis.unsubscribe_failed", error=str(e))
        if not self._handlers:
            await self._stop_listener()

    async def _stop_listener(self):
        if self._listener is None:
            return
        self._listener.cancel()
        try:
            await self._listener
        except asyncio.CancelledError:
            pass
        self._listener = None

    async def close(self) -> None:
        """Close both Redis connections."""
        await self._stop_listener()
        self._handlers.clear()
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
        for client in (self._subscriber, self._publisher):
            if client is not None:
                await client.aclose()
        self._subscriber = None
        self._publisher = None

    async def ping(self) -> bool:
        """
        Check Redis connection health.

        Returns:
            True if Redis answered PING, False otherwise
        """
        if self._publisher is None:
            return False
        try:
            return bool(await self._publisher.ping())
        except Exception as e:
            log.warning("redis.health_check_failed", error=str(e))
            return False


def _as_str(value) -> str:
    if isinstance(value, bytes):
        return value.decode()
    return value or ""
