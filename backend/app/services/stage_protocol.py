"""Staged reveal protocol for matched chats.

A chat moves through integer stages by alternating single-sided advances:

    0 matched            messaging, name/age/avatar visible
    1 conversing         messaging
    2 interests revealed messaging, academic details visible
    3 contact revealed   messaging closed, WhatsApp numbers visible
    4 ended              nothing

At stage ``s`` the turn belongs to user1 when ``s`` is even and to user2
when it is odd. Declining ends the chat from any stage.
"""

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.db.models import Chat, Message, Profile, utcnow
from app.schemas.chats import ChatDetail, ChatRead
from app.schemas.profiles import PartnerRead

logger = logging.getLogger(__name__)
settings = get_settings()

STAGE_MATCHED = 0
STAGE_CONVERSING = 1
STAGE_INTERESTS_REVEALED = 2
STAGE_CONTACT_REVEALED = 3
STAGE_ENDED = 4

STAGE_NAMES = {
    STAGE_MATCHED: "matched",
    STAGE_CONVERSING: "conversing",
    STAGE_INTERESTS_REVEALED: "interests_revealed",
    STAGE_CONTACT_REVEALED: "contact_revealed",
}


class StageError(Exception):
    """A protocol action was refused. The chat is unchanged."""


class NotYourTurn(StageError):
    pass


class ChatEnded(StageError):
    pass


class MessagingClosed(StageError):
    pass


class StageConflict(StageError):
    """The stage moved between read and write."""


# =============================================================================
# PURE RULES
# =============================================================================


def stage_name(chat: Chat) -> str:
    if is_terminal(chat):
        return "ended"
    return STAGE_NAMES[chat.stage]


def is_terminal(chat: Chat) -> bool:
    return not chat.active or chat.stage >= STAGE_ENDED


def turn_holder(chat: Chat) -> UUID:
    """Participant allowed to advance from the current stage."""
    return chat.user1_id if chat.stage % 2 == 0 else chat.user2_id


def can_advance(chat: Chat, user_id: UUID) -> bool:
    return not is_terminal(chat) and turn_holder(chat) == user_id


def can_message(chat: Chat) -> bool:
    return not is_terminal(chat) and chat.stage < STAGE_CONTACT_REVEALED


def chat_detail(chat: Chat, viewer_id: UUID) -> ChatDetail:
    """Chat as seen by one participant, with the actions open to them."""
    return ChatDetail(
        **ChatRead.model_validate(chat).model_dump(),
        stage_name=stage_name(chat),
        partner_id=chat.partner_of(viewer_id),
        my_turn=turn_holder(chat) == viewer_id and not is_terminal(chat),
        can_advance=can_advance(chat, viewer_id),
        can_message=can_message(chat),
        contact_revealed=chat.stage >= STAGE_CONTACT_REVEALED,
    )


def partner_view(chat: Chat, partner: Profile) -> PartnerRead:
    """
    Filter the partner's profile down to what the stage has unlocked.

    Academic details appear from "interests revealed" on, the WhatsApp
    number from "contact revealed" on. Once shown they stay shown, even
    after the chat ends.
    """
    view = PartnerRead(
        id=partner.id,
        name=partner.name,
        age=partner.age,
        avatar_url=partner.avatar_url,
        is_online=partner.is_online,
    )
    if chat.stage >= STAGE_INTERESTS_REVEALED:
        view.school = partner.school
        view.department = partner.department
        view.branch = partner.branch
    if chat.stage >= STAGE_CONTACT_REVEALED:
        view.whatsapp = partner.whatsapp
    return view


# =============================================================================
# ACTIONS
# =============================================================================


class StageProtocol:
    """Applies protocol actions to chats in the store."""

    async def advance(self, db: AsyncSession, chat: Chat, user_id: UUID) -> Chat:
        """
        Move the chat one stage forward on behalf of the turn-holder.

        The write is a compare-and-set on the stage the caller saw, so two
        racing advances cannot skip a stage; the loser gets StageConflict.

        Raises:
            ChatEnded: chat is inactive or past the last stage
            NotYourTurn: caller does not hold the turn
            StageConflict: stage changed concurrently
        """
        if is_terminal(chat):
            raise ChatEnded("This chat has ended.")
        if turn_holder(chat) != user_id:
            raise NotYourTurn("Not your turn. Waiting for the other person.")

        observed = chat.stage
        new_stage = observed + 1
        values: dict = {"stage": new_stage}
        if new_stage >= STAGE_ENDED:
            values.update(active=False, ended_at=utcnow())

        result = await db.execute(
            update(Chat)
            .where(Chat.id == chat.id, Chat.stage == observed, Chat.active.is_(True))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StageConflict("The chat changed. Refresh and try again.")

        await db.refresh(chat)
        logger.info("Chat %s advanced %d -> %d by %s", chat.id, observed, chat.stage, user_id)
        return chat

    async def decline(self, db: AsyncSession, chat: Chat, user_id: UUID) -> bool:
        """
        End the chat. Any participant, any stage.

        Returns:
            True if this call ended the chat, False if it was already ended
        """
        if not chat.active:
            return False
        ended_at: datetime = utcnow()
        result = await db.execute(
            update(Chat)
            .where(Chat.id == chat.id, Chat.active.is_(True))
            .values(active=False, ended_at=ended_at)
            .execution_options(synchronize_session=False)
        )
        await db.refresh(chat)
        if result.rowcount:
            logger.info("Chat %s declined by %s at stage %d", chat.id, user_id, chat.stage)
        return bool(result.rowcount)

    async def send_message(
        self,
        db: AsyncSession,
        chat: Chat,
        sender_id: UUID,
        content: str,
    ) -> Message:
        """
        Append a message to the chat.

        Raises:
            ValueError: sender is not a participant
            ChatEnded: chat is inactive
            MessagingClosed: contact has been revealed, talk moves to WhatsApp
        """
        if not chat.has_participant(sender_id):
            raise ValueError("Sender is not part of this chat")
        if is_terminal(chat):
            raise ChatEnded("This chat has ended.")
        if not can_message(chat):
            raise MessagingClosed("Messaging is disabled at this stage. Please use WhatsApp.")

        message = Message(chat_id=chat.id, sender_id=sender_id, content=content)
        db.add(message)
        await db.flush()
        await db.refresh(message)
        return message

    async def list_messages(
        self,
        db: AsyncSession,
        chat: Chat,
        after: datetime | None = None,
    ) -> list[Message]:
        """
        Messages in creation order, optionally only recent ones.

        `created_at` is stamped before commit, so a slow sender's message can
        land with a timestamp older than one the client already has. A
        re-fetch from `after` therefore reaches back by an overlap window and
        may repeat messages; clients dedupe by id.
        """
        stmt = select(Message).where(Message.chat_id == chat.id)
        if after is not None:
            overlap = timedelta(seconds=settings.message_refetch_overlap_seconds)
            stmt = stmt.where(Message.created_at > after - overlap)
        stmt = stmt.order_by(Message.created_at.asc(), Message.id.asc())
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def get_partner(self, db: AsyncSession, chat: Chat, viewer_id: UUID) -> PartnerRead | None:
        result = await db.execute(
            select(Profile).where(Profile.id == chat.partner_of(viewer_id))
        )
        partner = result.scalar_one_or_none()
        if partner is None:
            return None
        return partner_view(chat, partner)


# Singleton instance
stage_protocol = StageProtocol()
