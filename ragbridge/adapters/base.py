"""Base transport interface for pub/sub backends."""
from abc import ABC, abstractmethod
from typing import Callable

# Receives the raw payload of one inbound message. Must not block.
MessageHandler = Callable[[bytes], None]


class BusTransport(ABC):
    """Abstract interface for publish/subscribe transport implementations."""

    @abstractmethod
    async def connect(self) -> None:
        """
        Establish outbound and inbound connections.

        Raises:
            Exception: Backend-specific error if a connection cannot be made
        """
        pass

    @abstractmethod
    async def publish(self, channel: str, data: bytes) -> int:
        """
        Publish a message. Fire-and-forget: no delivery confirmation.

        Args:
            channel: Topic name
            data: Serialized message

        Returns:
            Number of subscribers the backend reports as having received it
        """
        pass

    @abstractmethod
    async def subscribe(self, channel: str, handler: MessageHandler) -> None:
        """
        Subscribe to a channel; returns once the subscription is active.

        Args:
            channel: Topic name
            handler: Called once per inbound message on the channel
        """
        pass

    @abstractmethod
    async def unsubscribe(self, channel: str | None = None) -> None:
        """Unsubscribe from ``channel``, or from every channel when None."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release all connections. Safe to call more than once."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """
        Round-trip a trivial message through the outbound connection.

        Returns:
            True if the backend answered, False otherwise
        """
        pass
