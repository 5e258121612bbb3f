"""Caller-facing query flow: rate limit, publish, wait, classify the outcome."""
import time
from enum import Enum
from typing import List
import structlog
from pydantic import BaseModel, Field

from ..errors import QueryTimeoutError
from ..metrics import Metrics
from ..rate_limiter import CallerRateLimiter
from .event_bus import EventBus

log = structlog.get_logger()


class RelayStatus(str, Enum):
    ANSWERED = "answered"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    THROTTLED = "throttled"
    EMPTY = "empty"


class RelayResult(BaseModel):
    status: RelayStatus
    query_id: str | None = None
    answer: str | None = None
    sources: List[str] = Field(default_factory=list)
    retry_after_ms: int | None = None
    response_time_ms: float = 0.0


class QueryRelay:
    """
    Turns a caller's message into a query and waits for the answer.

    Rendering is left to whoever calls ``handle``. Infrastructure errors
    (bus not ready, publish failure, shutdown) propagate to the caller.
    """

    def __init__(
        self,
        bus: EventBus,
        rate_limiter: CallerRateLimiter,
        rate_per_minute: int = 10,
        timeout_ms: int = 30000,
        metrics: Metrics | None = None,
    ):
        self.bus = bus
        self.rate_limiter = rate_limiter
        self.rate_per_minute = rate_per_minute
        self.timeout_ms = timeout_ms
        self._metrics = metrics

    async def handle(self, caller_id: str, conversation_id: str, text: str) -> RelayResult:
        started = time.monotonic()

        if not self.rate_limiter.check_and_record(caller_id, self.rate_per_minute):
            retry_after_ms = self.rate_limiter.retry_after_ms(caller_id, self.rate_per_minute)
            if self._metrics:
                self._metrics.rate_limited_total.inc()
            log.info("query.throttled", caller_id=caller_id, retry_after_ms=retry_after_ms)
            return RelayResult(status=RelayStatus.THROTTLED, retry_after_ms=retry_after_ms)

        content = text.strip()
        if not content:
            return RelayResult(status=RelayStatus.EMPTY)

        log.info("query.received", caller_id=caller_id, conversation_id=conversation_id, length=len(content))

        status = "error"
        query_id = None
        try:
            response = await self.bus.ask(caller_id, conversation_id, content, timeout_ms=self.timeout_ms)
            query_id = response.id
            if response.success:
                status = RelayStatus.ANSWERED
                result = RelayResult(
                    status=status,
                    query_id=query_id,
                    answer=response.payload,
                    sources=response.sources,
                )
            else:
                status = RelayStatus.FAILED
                result = RelayResult(status=status, query_id=query_id)
        except QueryTimeoutError as e:
            query_id = e.query_id
            status = RelayStatus.TIMED_OUT
            result = RelayResult(status=status, query_id=query_id)
        finally:
            response_time_ms = round((time.monotonic() - started) * 1000, 2)
            log.info(
                "query.completed",
                caller_id=caller_id,
                query_id=query_id,
                status=getattr(status, "value", status),
                response_time_ms=response_time_ms,
            )

        result.response_time_ms = response_time_ms
        return result
