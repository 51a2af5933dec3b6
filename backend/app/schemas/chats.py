"""Pydantic schemas for chats and messages."""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from app.schemas.base import BaseSchema, IDMixin


# Request schemas
class MessageCreate(BaseSchema):
    """Request to send a chat message."""

    content: str = Field(..., min_length=1, max_length=2000)


# Response schemas
class ChatRead(BaseSchema, IDMixin):
    """Chat row as stored."""

    user1_id: UUID
    user2_id: UUID
    stage: int
    active: bool
    created_at: datetime
    ended_at: datetime | None = None


class ChatDetail(ChatRead):
    """Chat plus what the caller may do at the current stage."""

    stage_name: str
    partner_id: UUID
    my_turn: bool
    can_advance: bool
    can_message: bool
    contact_revealed: bool


class MessageRead(BaseSchema, IDMixin):
    """Chat message response."""

    chat_id: UUID
    sender_id: UUID
    content: str
    created_at: datetime
