from fastapi import APIRouter, HTTPException, Request, Response
from .schemas import QueryRequest, QueryResponse, PendingResponse
from ..errors import RateLimitedError
from ..services.relay import QueryRelay, RelayStatus
from ..services.event_bus import EventBus

router = APIRouter(prefix="/v1")


def get_relay(request: Request) -> QueryRelay:
    return request.app.state.relay


def get_bus(request: Request) -> EventBus:
    return request.app.state.bus


@router.post("/queries", response_model=QueryResponse)
async def submit_query(req: QueryRequest, request: Request, response: Response):
    max_length = request.app.state.settings.MAX_QUERY_LENGTH
    if len(req.message) > max_length:
        raise HTTPException(413, detail=f"Message exceeds {max_length} characters")

    result = await get_relay(request).handle(req.caller_id, req.conversation_id, req.message)

    if result.status is RelayStatus.THROTTLED:
        raise RateLimitedError(req.caller_id, result.retry_after_ms or 0)
    if result.status is RelayStatus.TIMED_OUT:
        response.status_code = 504
    return QueryResponse(**result.model_dump())


@router.get("/queries/pending", response_model=PendingResponse)
async def pending_queries(request: Request):
    bus = get_bus(request)
    return PendingResponse(state=bus.state.value, pending=bus.pending_count)
