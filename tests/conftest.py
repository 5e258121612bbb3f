"""Shared fixtures: in-memory transport, ready event bus and a stand-in answer worker."""
import asyncio
import orjson
import pytest
import pytest_asyncio

from ragbridge.adapters.memory import InMemoryTransport
from ragbridge.config import Settings
from ragbridge.services.event_bus import EventBus


class FakeWorker:
    """Answers queries on ``rag:query`` the way the RAG worker does."""

    def __init__(
        self,
        transport: InMemoryTransport,
        answer: str = "answer",
        sources: list[str] | None = None,
        success: bool = True,
        delay: float = 0.0,
        silent: bool = False,
    ):
        self.transport = transport
        self.answer = answer
        self.sources = ["s1"] if sources is None else sources
        self.success = success
        self.delay = delay
        self.silent = silent
        self.queries: list[dict] = []

    async def start(self, channel: str = "rag:query"):
        await self.transport.subscribe(channel, self._on_query)

    def _on_query(self, data: bytes):
        query = orjson.loads(data)
        self.queries.append(query)
        if self.silent:
            return
        loop = asyncio.get_running_loop()
        loop.call_later(self.delay, lambda: asyncio.ensure_future(self.reply(query)))

    async def reply(self, query: dict, **overrides):
        message = {
            "id": query["id"],
            "userId": query["userId"],
            "channelId": query["channelId"],
            "response": self.answer,
            "sources": self.sources,
            "success": self.success,
            "timestamp": 1700000000000,
        }
        message.update(overrides)
        await self.transport.publish("rag:response", orjson.dumps(message))


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float):
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_transport():
    return InMemoryTransport()


@pytest_asyncio.fixture
async def bus(memory_transport):
    event_bus = EventBus(memory_transport, default_timeout_ms=1000)
    await event_bus.initialize()
    yield event_bus
    await event_bus.close()


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        BUS_ADAPTER="memory",
        RESPONSE_TIMEOUT_MS=300,
        USER_RATE_LIMIT_PER_MINUTE=600,
    )


async def respond(transport: InMemoryTransport, payload):
    """Publish a raw response message (dict or bytes) on the response channel."""
    data = payload if isinstance(payload, (bytes, str)) else orjson.dumps(payload)
    await transport.publish("rag:response", data)
