"""Exception hierarchy for the query bridge."""


class BridgeError(Exception):
    """Base exception for all bridge errors."""
    pass


class BusConnectionError(BridgeError):
    """Outbound or inbound channel could not be established."""
    pass


class NotInitializedError(BridgeError):
    """Operation invoked while the event bus is not ready."""
    pass


class PublishError(BridgeError):
    """A query could not be handed to the transport."""
    pass


class QueryTimeoutError(BridgeError, TimeoutError):
    """No response arrived within the configured window."""

    def __init__(self, query_id: str, timeout_ms: int):
        self.query_id = query_id
        self.timeout_ms = timeout_ms
        super().__init__(f"Query {query_id} timed out after {timeout_ms}ms")


class ShuttingDownError(BridgeError):
    """The event bus closed while the query was still pending."""

    def __init__(self, query_id: str):
        self.query_id = query_id
        super().__init__(f"Query {query_id} abandoned: event bus is shutting down")


class DuplicateQueryError(BridgeError):
    """A query id was registered while a prior registration is still pending."""

    def __init__(self, query_id: str):
        self.query_id = query_id
        super().__init__(f"Query {query_id} is already pending")


class QueryCancelledError(BridgeError):
    """A pending query was cancelled before a response arrived."""

    def __init__(self, query_id: str):
        self.query_id = query_id
        super().__init__(f"Query {query_id} was cancelled")


class MalformedMessageError(BridgeError):
    """Inbound payload could not be decoded into a response."""
    pass


class UnmatchedResponseError(BridgeError):
    """Decoded response carries an id with no pending entry."""

    def __init__(self, query_id: str):
        self.query_id = query_id
        super().__init__(f"No pending query for response {query_id}")


class RateLimitedError(BridgeError):
    """Caller exceeded the per-minute request rate."""

    def __init__(self, caller_id: str, retry_after_ms: int):
        self.caller_id = caller_id
        self.retry_after_ms = retry_after_ms
        super().__init__(f"Caller {caller_id} is rate limited for {retry_after_ms}ms")
