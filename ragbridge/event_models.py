from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from typing import List
import uuid, time
import orjson

from .errors import MalformedMessageError


def now_ms() -> int:
    return int(time.time() * 1000)


class QueryEnvelope(BaseModel):
    """Query sent to the answer worker; serialized with camelCase wire names."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    caller_id: str = Field(..., alias="userId")
    conversation_id: str = Field(..., alias="channelId")
    payload: str = Field(..., alias="message")
    domain: str = "inngest"
    created_at: int = Field(default_factory=now_ms, alias="timestamp")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


class ResponseEnvelope(BaseModel):
    """Answer published by the worker. Correlated by ``id`` alone."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    caller_id: str = Field("", alias="userId")
    conversation_id: str = Field("", alias="channelId")
    success: bool
    payload: str = Field("", alias="response")
    sources: List[str] = Field(default_factory=list)
    timestamp: int | float = Field(default_factory=now_ms)

    # Workers send null for these on failure replies
    @field_validator("payload", mode="before")
    @classmethod
    def _null_payload(cls, v):
        return "" if v is None else v

    @field_validator("sources", mode="before")
    @classmethod
    def _null_sources(cls, v):
        return [] if v is None else v

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


def encode_query(envelope: QueryEnvelope) -> bytes:
    return orjson.dumps(envelope.to_wire())


def decode_response(data: bytes | str) -> ResponseEnvelope:
    """
    Decode an inbound channel message.

    Raises:
        MalformedMessageError: If the payload is not JSON or lacks required fields
    """
    try:
        return ResponseEnvelope.model_validate(orjson.loads(data))
    except (orjson.JSONDecodeError, ValidationError, TypeError) as e:
        raise MalformedMessageError(f"Undecodable response message: {e}") from e
