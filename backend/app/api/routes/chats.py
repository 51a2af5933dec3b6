"""API routes for matched chats: stage actions, messages, live updates."""

import json
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, HTTPException, status
from sse_starlette.sse import EventSourceResponse

from app.api.deps import CurrentUser, DbSession, get_active_chat, get_chat_or_404
from app.config import get_settings
from app.schemas.chats import ChatDetail, MessageCreate, MessageRead
from app.schemas.profiles import PartnerRead
from app.services.events import CHAT_UPDATED, chat_topic, event_broker
from app.services.stage_protocol import (
    ChatEnded,
    MessagingClosed,
    NotYourTurn,
    StageConflict,
    chat_detail,
    stage_protocol,
)

router = APIRouter(prefix="/chats", tags=["chats"])
settings = get_settings()


# =============================================================================
# CHAT STATE
# =============================================================================


@router.get("/active", response_model=ChatDetail | None)
async def get_my_active_chat(
    db: DbSession,
    user: CurrentUser,
) -> ChatDetail | None:
    """The caller's active chat, or null when there is none."""
    chat = await get_active_chat(db, user.id)
    if chat is None:
        return None
    return chat_detail(chat, user.id)


@router.get("/{chat_id}", response_model=ChatDetail)
async def get_chat(
    chat_id: UUID,
    db: DbSession,
    user: CurrentUser,
) -> ChatDetail:
    """Get a chat with the actions currently open to the caller."""
    chat = await get_chat_or_404(db, chat_id, user.id)
    return chat_detail(chat, user.id)


@router.get("/{chat_id}/partner", response_model=PartnerRead)
async def get_partner(
    chat_id: UUID,
    db: DbSession,
    user: CurrentUser,
) -> PartnerRead:
    """The other participant, limited to what the stage has revealed."""
    chat = await get_chat_or_404(db, chat_id, user.id)
    partner = await stage_protocol.get_partner(db, chat, user.id)
    if partner is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Partner profile not found")
    return partner


@router.post("/{chat_id}/advance", response_model=ChatDetail)
async def advance_stage(
    chat_id: UUID,
    db: DbSession,
    user: CurrentUser,
) -> ChatDetail:
    """
    Advance the chat one stage.

    Only the turn-holder may advance: user1 on even stages, user2 on odd.
    Returns 409 when it is not the caller's turn, the chat has ended, or the
    stage moved underneath the request.
    """
    chat = await get_chat_or_404(db, chat_id, user.id)
    try:
        chat = await stage_protocol.advance(db, chat, user.id)
    except (NotYourTurn, ChatEnded, StageConflict) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    await db.commit()
    event_broker.publish_chat(CHAT_UPDATED, chat)
    return chat_detail(chat, user.id)


@router.post("/{chat_id}/decline", response_model=ChatDetail)
async def decline_chat(
    chat_id: UUID,
    db: DbSession,
    user: CurrentUser,
) -> ChatDetail:
    """End the chat. Allowed for either participant at any stage; repeat calls are no-ops."""
    chat = await get_chat_or_404(db, chat_id, user.id)
    ended = await stage_protocol.decline(db, chat, user.id)
    await db.commit()
    if ended:
        event_broker.publish_chat(CHAT_UPDATED, chat)
    return chat_detail(chat, user.id)


# =============================================================================
# MESSAGES
# =============================================================================


@router.get("/{chat_id}/messages", response_model=list[MessageRead])
async def list_messages(
    chat_id: UUID,
    db: DbSession,
    user: CurrentUser,
    after: datetime | None = None,
) -> list[MessageRead]:
    """
    Messages in creation order.

    Pass `after` (the newest created_at the client holds) to fetch what was
    missed, e.g. after a resync event on the live stream. The result also
    repeats a few seconds of older history, so merge it by message id.
    """
    chat = await get_chat_or_404(db, chat_id, user.id)
    messages = await stage_protocol.list_messages(db, chat, after=after)
    return [MessageRead.model_validate(m) for m in messages]


@router.post(
    "/{chat_id}/messages",
    response_model=MessageRead,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    chat_id: UUID,
    request: MessageCreate,
    db: DbSession,
    user: CurrentUser,
) -> MessageRead:
    """
    Send a message.

    Rejected with 409 once contact is revealed (stage 3) or the chat has
    ended; the sender is always the caller.
    """
    chat = await get_chat_or_404(db, chat_id, user.id)
    try:
        message = await stage_protocol.send_message(db, chat, user.id, request.content)
    except (ChatEnded, MessagingClosed) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    await db.commit()
    event_broker.publish_message(message)
    return MessageRead.model_validate(message)


@router.get("/{chat_id}/messages/events")
async def stream_messages(
    chat_id: UUID,
    db: DbSession,
    user: CurrentUser,
):
    """
    Live message feed for one chat using Server-Sent Events (SSE).

    Events:
    - 'message.created': a new message row
    - 'resync': the client fell behind; re-fetch with ?after=

    Delivery order is not guaranteed; sort by created_at on the client.
    """
    await get_chat_or_404(db, chat_id, user.id)
    # Release the pooled connection before the long-lived stream starts
    await db.close()

    async def event_generator():
        # Cancelled by sse-starlette on disconnect; the subscription is dropped on exit
        async with event_broker.subscription(chat_topic(chat_id)) as queue:
            while True:
                event = await queue.get()
                yield {"event": event["event"], "data": json.dumps(event["data"])}

    return EventSourceResponse(event_generator(), ping=settings.event_ping_seconds)
