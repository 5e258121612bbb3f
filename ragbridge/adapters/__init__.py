"""
Pub/sub transports for the event bus.

- InMemoryTransport: in-process delivery for development and tests
- RedisPubSubTransport: Redis PUBLISH/SUBSCRIBE with separate connections
"""

from .base import BusTransport, MessageHandler
from .memory import InMemoryTransport
from .redis_pubsub import RedisPubSubTransport

__all__ = [
    "BusTransport",
    "MessageHandler",
    "InMemoryTransport",
    "RedisPubSubTransport",
]
