"""Radar matchmaking: pair two searching profiles into a chat."""

import logging
from uuid import UUID

from sqlalchemy import exists, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Chat, Profile

logger = logging.getLogger(__name__)


def canonical_pair(a: UUID, b: UUID) -> tuple[UUID, UUID]:
    """Order a pair so the lower id is user1."""
    return (a, b) if a < b else (b, a)


def _has_active_chat(user_id):
    return exists().where(
        or_(Chat.user1_id == user_id, Chat.user2_id == user_id),
        Chat.active.is_(True),
    )


class Matchmaker:
    """
    Claim-and-pair matcher over the profiles table.

    A tick runs as one transaction: lock our own row, lock one other
    searching row with SKIP LOCKED, insert the chat and clear both radar
    flags. The partial unique index on active (user1_id, user2_id) backs
    this up if two ticks still meet.
    """

    async def set_searching(self, db: AsyncSession, profile: Profile, desired: bool) -> Profile:
        """Set the radar flag on a profile."""
        profile.is_searching = desired
        await db.flush()
        return profile

    async def search_tick(self, db: AsyncSession, profile_id: UUID) -> Chat | None:
        """
        Try once to pair `profile_id` with another searching profile.

        The caller owns the transaction and commits it either way; a tick
        that finds the caller already chatting clears their stale radar flag.
        On a duplicate-pair race the session is rolled back and None returned.

        Returns:
            The newly created chat, or None if nobody was paired
        """
        me = (
            await db.execute(
                select(Profile).where(Profile.id == profile_id).with_for_update()
            )
        ).scalar_one_or_none()
        if me is None or not me.is_searching:
            return None

        if (await db.execute(select(_has_active_chat(profile_id)))).scalar():
            # Flag left over from a pairing that raced a radar toggle
            logger.info("Clearing stale radar flag for %s, already in a chat", profile_id)
            me.is_searching = False
            await db.flush()
            return None

        candidate = (
            await db.execute(
                select(Profile)
                .where(
                    Profile.is_searching.is_(True),
                    Profile.id != profile_id,
                    ~_has_active_chat(Profile.id),
                )
                .order_by(Profile.updated_at.asc())
                .limit(1)
                .with_for_update(skip_locked=True)
            )
        ).scalar_one_or_none()
        if candidate is None:
            return None

        low, high = canonical_pair(profile_id, candidate.id)
        existing = (
            await db.execute(
                select(Chat.id).where(
                    Chat.user1_id == low,
                    Chat.user2_id == high,
                    Chat.active.is_(True),
                )
            )
        ).scalar_one_or_none()
        if existing is not None:
            logger.info("Active chat %s already pairs %s and %s", existing, low, high)
            return None

        chat = Chat(user1_id=low, user2_id=high, stage=0, active=True)
        db.add(chat)
        me.is_searching = False
        candidate.is_searching = False
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            logger.info("Concurrent pairing of %s and %s absorbed", low, high)
            return None

        await db.refresh(chat)
        logger.info("Matched %s with %s in chat %s", low, high, chat.id)
        return chat


# Singleton instance
matchmaker = Matchmaker()
