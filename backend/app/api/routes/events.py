"""Per-user live feed and presence."""

import json
import logging
from uuid import UUID

import anyio
from fastapi import APIRouter
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sse_starlette.sse import EventSourceResponse

from app.api.deps import CurrentUser, SessionFactoryDep
from app.config import get_settings
from app.db.models import Profile
from app.services.events import event_broker, user_topic

logger = logging.getLogger(__name__)
router = APIRouter(tags=["events"])
settings = get_settings()


async def _set_online(
    session_factory: async_sessionmaker[AsyncSession],
    user_id: UUID,
    online: bool,
) -> None:
    """Write the presence flag using a fresh database session."""
    try:
        async with session_factory() as db:
            await db.execute(
                update(Profile).where(Profile.id == user_id).values(is_online=online)
            )
            await db.commit()
    except Exception:
        logger.exception("Failed to set is_online=%s for %s", online, user_id)


@router.get("/events")
async def stream_user_events(user: CurrentUser, session_factory: SessionFactoryDep):
    """
    Live feed of the caller's chats using Server-Sent Events (SSE).

    Events:
    - 'chat.created': the matchmaker paired the caller; switch to the chat
    - 'chat.updated': stage advanced or chat ended
    - 'resync': the client fell behind; re-fetch /chats/active

    The caller counts as online while at least one feed is open.
    """
    user_id = user.id
    topic = user_topic(user_id)

    async def event_generator():
        async with event_broker.subscription(topic) as queue:
            if event_broker.subscriber_count(topic) == 1:
                await _set_online(session_factory, user_id, True)
            try:
                while True:
                    event = await queue.get()
                    yield {"event": event["event"], "data": json.dumps(event["data"])}
            finally:
                # Disconnects arrive as cancellation, which would abort the write
                with anyio.CancelScope(shield=True):
                    # Our queue is still registered here, so 1 means we are the last
                    if event_broker.subscriber_count(topic) == 1:
                        await _set_online(session_factory, user_id, False)

    return EventSourceResponse(event_generator(), ping=settings.event_ping_seconds)
