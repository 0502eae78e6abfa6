from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from studio_admin.chat.models import SenderType, TicketPriority, TicketStatus


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=2000)
    session_id: Optional[str] = None


class ChatReply(BaseModel):
    session_id: str
    reply: str
    message_id: str
    escalated: bool
    ticket_id: Optional[str] = None
    message_count: int


class AdminMessageRequest(BaseModel):
    session_id: str
    message: str = Field(..., min_length=1, max_length=2000)


class MarkReadRequest(BaseModel):
    session_id: str


class SessionResponse(BaseModel):
    id: str
    is_active: bool
    message_count: int
    escalated: bool
    last_activity: datetime
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MessageResponse(BaseModel):
    id: str
    session_id: str
    sender_type: SenderType
    sender_id: Optional[str] = None
    kind: str
    message: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TicketResponse(BaseModel):
    id: str
    session_id: str
    user_id: str
    title: str
    description: str
    priority: TicketPriority
    status: TicketStatus
    resolved_by: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TicketUpdate(BaseModel):
    status: TicketStatus = TicketStatus.RESOLVED
