"""Per-user application state.

The client's current screen is a function of explicit events rather than
scattered assignments: sign-in/out, profile found or missing, a chat
arriving, a chat changing stage or ending. ``resolve_state`` replays those
events from the store so any client can rebuild its state after a reload.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Chat, Profile, User
from app.services.stage_protocol import is_terminal

logger = logging.getLogger(__name__)


class View(str, Enum):
    """Screen the client should be on."""

    LANDING = "landing"
    ONBOARDING = "onboarding"
    DASHBOARD = "dashboard"
    CHAT = "chat"


class Event(str, Enum):
    SIGNED_IN = "signed_in"
    SIGNED_OUT = "signed_out"
    PROFILE_LOADED = "profile_loaded"
    PROFILE_MISSING = "profile_missing"
    CHAT_ARRIVED = "chat_arrived"
    CHAT_CHANGED = "chat_changed"
    CHAT_CLOSED = "chat_closed"


@dataclass(frozen=True)
class AppState:
    view: View = View.LANDING
    user: User | None = None
    profile: Profile | None = None
    active_chat: Chat | None = None


def transition(state: AppState, event: Event, payload: Any = None) -> AppState:
    """Apply one event to the state and return the new state."""
    if event is Event.SIGNED_OUT:
        return AppState()

    if event is Event.SIGNED_IN:
        return replace(state, user=payload)

    if state.user is None:
        # Nothing but sign-in moves a signed-out client
        return state

    if event is Event.PROFILE_MISSING:
        return replace(state, view=View.ONBOARDING, profile=None, active_chat=None)

    if event is Event.PROFILE_LOADED:
        view = View.CHAT if state.active_chat is not None else View.DASHBOARD
        return replace(state, view=view, profile=payload)

    if state.profile is None:
        return state

    if event is Event.CHAT_ARRIVED:
        return replace(state, view=View.CHAT, active_chat=payload)

    if event is Event.CHAT_CHANGED:
        # An ended chat stays on screen until the user closes it
        return replace(state, active_chat=payload)

    if event is Event.CHAT_CLOSED:
        return replace(state, view=View.DASHBOARD, active_chat=None)

    return state


async def resolve_state(db: AsyncSession, user: User | None) -> AppState:
    """
    Rebuild a user's state from the store.

    A failed profile lookup is treated exactly like a missing profile: the
    user lands on onboarding and can resubmit.
    """
    state = AppState()
    if user is None:
        return state
    state = transition(state, Event.SIGNED_IN, user)

    try:
        profile = (
            await db.execute(select(Profile).where(Profile.id == user.id))
        ).scalar_one_or_none()
    except SQLAlchemyError:
        logger.exception("Profile fetch failed for %s", user.id)
        profile = None

    if profile is None:
        return transition(state, Event.PROFILE_MISSING)
    state = transition(state, Event.PROFILE_LOADED, profile)

    chat = (
        await db.execute(
            select(Chat)
            .where(
                (Chat.user1_id == user.id) | (Chat.user2_id == user.id),
                Chat.active.is_(True),
            )
            .order_by(Chat.created_at.desc())
            .limit(1)
        )
    ).scalar_one_or_none()
    if chat is not None and not is_terminal(chat):
        state = transition(state, Event.CHAT_ARRIVED, chat)
    return state
