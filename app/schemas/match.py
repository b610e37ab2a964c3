from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Optional
import uuid


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ========================
# Requests
# ========================

class InterestRequest(CamelModel):
    from_user_id: str = Field(min_length=1, max_length=128)
    to_user_id: str = Field(min_length=1, max_length=128)
    venue_id: str = Field(min_length=1, max_length=128)
    venue_name: Optional[str] = Field(None, max_length=255)


class SendMessageRequest(CamelModel):
    sender_id: str = Field(min_length=1, max_length=128)
    text: str


class ShareContactRequest(CamelModel):
    requester_id: str = Field(min_length=1, max_length=128)
    payload: Dict[str, Any]


class ReconnectRequestBody(CamelModel):
    requester_id: str = Field(min_length=1, max_length=128)


# ========================
# Responses
# ========================

class InterestResponse(CamelModel):
    match_created: bool
    match_id: Optional[uuid.UUID] = None


class MessageOut(CamelModel):
    id: uuid.UUID
    match_id: uuid.UUID
    sender_id: str
    text: str
    sent_at: int


class MatchOut(CamelModel):
    id: uuid.UUID
    participant_a: str
    participant_b: str
    venue_id: str
    venue_name: Optional[str] = None
    created_at: int
    expires_at: int
    expired: bool
    time_remaining_ms: int
    time_remaining: str
    message_count_by_participant: Dict[str, int]
    contact_shared: bool
    contact_shared_by: Optional[str] = None
    contact_payload: Optional[Dict[str, Any]] = None
    reconnected_at: Optional[int] = None
    reconnected_match_id: Optional[uuid.UUID] = None
    previous_match_id: Optional[uuid.UUID] = None


class ReconnectOut(CamelModel):
    state: str
    requested_by: List[str] = Field(default_factory=list)
    new_match_id: Optional[uuid.UUID] = None
    waiting_on_colocation: bool = False
    detail: Optional[str] = None


class RemainingMessagesOut(CamelModel):
    match_id: uuid.UUID
    user_id: str
    remaining: int


class InterestOut(CamelModel):
    from_user_id: str
    to_user_id: str
    venue_id: str
    created_at: int


class PendingReconnectOut(CamelModel):
    match_id: uuid.UUID
    user_id: str
    requested_at: int
