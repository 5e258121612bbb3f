"""Pending-query table: correlates asynchronous responses with waiting callers."""
import asyncio
from dataclasses import dataclass
from functools import partial
from typing import Callable, Dict
import structlog

from ..errors import (
    DuplicateQueryError,
    QueryCancelledError,
    QueryTimeoutError,
    UnmatchedResponseError,
)
from ..event_models import ResponseEnvelope

log = structlog.get_logger()


@dataclass
class PendingEntry:
    future: asyncio.Future
    timer: asyncio.TimerHandle
    timeout_ms: int
    registered_at: float


class PendingQueryTable:
    """
    Maps query ids to the future a caller is waiting on.

    Every entry leaves the table exactly once: through a matching response,
    its timeout, an explicit cancel or discard, or shutdown. Each of those
    paths pops the entry and settles its future in one synchronous step, so
    whichever runs first wins and the others find nothing.
    """

    def __init__(self):
        self._entries: Dict[str, PendingEntry] = {}

    def register(self, query_id: str, timeout_ms: int) -> asyncio.Future:
        """
        Create a pending entry and arm its timeout.

        Args:
            query_id: Id of the published (or about to be published) query
            timeout_ms: Milliseconds to wait before failing with QueryTimeoutError

        Returns:
            Future resolved with the matching ResponseEnvelope

        Raises:
            DuplicateQueryError: If ``query_id`` is still pending
        """
        if query_id in self._entries:
            raise DuplicateQueryError(query_id)
        if timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        timer = loop.call_later(timeout_ms / 1000, self._expire, query_id, future)
        self._entries[query_id] = PendingEntry(
            future=future,
            timer=timer,
            timeout_ms=timeout_ms,
            registered_at=loop.time(),
        )
        # Waiter cancelled from outside: drop the entry so it cannot leak
        future.add_done_callback(partial(self._discard, query_id))
        log.debug("query.registered", query_id=query_id, timeout_ms=timeout_ms)
        return future

    def resolve(self, response: ResponseEnvelope):
        """
        Settle the waiter for ``response.id``.

        Raises:
            UnmatchedResponseError: If nobody is waiting for that id (already
                timed out, cancelled, answered, or never registered)
        """
        entry = self._take(response.id)
        if entry is None or entry.future.done():
            raise UnmatchedResponseError(response.id)

        entry.future.set_result(response)
        elapsed_ms = round((asyncio.get_running_loop().time() - entry.registered_at) * 1000, 2)
        log.debug("query.resolved", query_id=response.id, elapsed_ms=elapsed_ms)

    def discard(self, query_id: str) -> bool:
        """Drop a pending entry without reporting an error to its future."""
        entry = self._take(query_id)
        if entry is None:
            return False
        entry.future.cancel()
        return True

    def cancel(self, query_id: str, exc: BaseException | None = None) -> bool:
        """
        Remove a pending entry and fail its future.

        Returns:
            True if an entry was cancelled, False if nothing was pending
        """
        return self._fail(query_id, exc or QueryCancelledError(query_id), "query.cancelled")

    def reject_all(self, make_error: Callable[[str], BaseException]) -> int:
        """Fail every pending future with ``make_error(query_id)``."""
        query_ids = list(self._entries)
        for query_id in query_ids:
            self._fail(query_id, make_error(query_id), "query.rejected")
        return len(query_ids)

    def _fail(self, query_id: str, exc: BaseException, event: str) -> bool:
        entry = self._take(query_id)
        if entry is None:
            return False
        if not entry.future.done():
            entry.future.set_exception(exc)
        log.info(event, query_id=query_id, error_type=type(exc).__name__)
        return True

    def _take(self, query_id: str, future: asyncio.Future | None = None) -> PendingEntry | None:
        entry = self._entries.get(query_id)
        if entry is None:
            return None
        # A stale callback must not remove a newer registration for the same id
        if future is not None and entry.future is not future:
            return None
        del self._entries[query_id]
        entry.timer.cancel()
        return entry

    def _expire(self, query_id: str, future: asyncio.Future):
        entry = self._take(query_id, future)
        if entry is None:
            return
        if not entry.future.done():
            entry.future.set_exception(QueryTimeoutError(query_id, entry.timeout_ms))
        log.warning("query.timed_out", query_id=query_id, timeout_ms=entry.timeout_ms)

    def _discard(self, query_id: str, future: asyncio.Future):
        if self._take(query_id, future) is not None:
            log.debug("query.abandoned", query_id=query_id)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, query_id: str) -> bool:
        return query_id in self._entries
