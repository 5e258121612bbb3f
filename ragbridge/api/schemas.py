from pydantic import BaseModel, Field
from typing import List
from ..services.relay import RelayStatus

class QueryRequest(BaseModel):
    caller_id: str = Field(..., min_length=1, description="Who is asking")
    conversation_id: str = Field(..., min_length=1, description="Where the answer goes")
    message: str

class QueryResponse(BaseModel):
    status: RelayStatus
    query_id: str | None = None
    answer: str | None = None
    sources: List[str] = Field(default_factory=list)
    retry_after_ms: int | None = None
    response_time_ms: float = 0.0

class PendingResponse(BaseModel):
    state: str
    pending: int
