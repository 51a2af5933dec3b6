"""Per-user background search loops for the matchmaker."""

import asyncio
import logging
from collections.abc import Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.db.models import Chat, Profile
from app.db.session import AsyncSessionLocal
from app.services.events import CHAT_CREATED, EventBroker, event_broker
from app.services.matchmaker import Matchmaker, matchmaker

logger = logging.getLogger(__name__)
settings = get_settings()


class SearchLoops:
    """
    Owns one ticking asyncio task per searching user.

    A loop ends when its tick pairs the user, when the user's radar flag is
    found cleared (the partner's tick paired us), or when stop() is called.
    Every exit path removes the task from the registry.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        interval: float,
        *,
        matcher: Matchmaker = matchmaker,
        broker: EventBroker = event_broker,
    ):
        self.session_factory = session_factory
        self.interval = interval
        self.matcher = matcher
        self.broker = broker
        self._tasks: dict[UUID, asyncio.Task] = {}

    def is_running(self, user_id: UUID) -> bool:
        task = self._tasks.get(user_id)
        return task is not None and not task.done()

    def start(self, user_id: UUID) -> None:
        """Start ticking for a user. No-op if already running."""
        if self.is_running(user_id):
            return
        task = asyncio.create_task(self._run(user_id), name=f"search-{user_id}")
        self._tasks[user_id] = task

    def stop(self, user_id: UUID) -> None:
        """Cancel a user's loop if one is running."""
        task = self._tasks.pop(user_id, None)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def stop_all(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def tick(self, user_id: UUID) -> Chat | None:
        """
        Run one search tick in its own transaction.

        On a match both participants' loops are stopped and the chat is
        published to both of them.
        """
        async with self.session_factory() as db:
            chat = await self.matcher.search_tick(db, user_id)
            await db.commit()
        if chat is None:
            return None

        self.on_matched(chat)
        return chat

    def on_matched(self, chat: Chat) -> None:
        self.stop(chat.user1_id)
        self.stop(chat.user2_id)
        self.broker.publish_chat(CHAT_CREATED, chat)

    async def _still_searching(self, user_id: UUID) -> bool:
        async with self.session_factory() as db:
            profile = await db.get(Profile, user_id)
            return profile is not None and profile.is_searching

    async def _run(self, user_id: UUID) -> None:
        logger.info("Search loop started for %s", user_id)
        try:
            while True:
                try:
                    if await self.tick(user_id) is not None:
                        break
                    if not await self._still_searching(user_id):
                        break
                except Exception:
                    # Store errors are retried on the next tick
                    logger.exception("Search tick failed for %s", user_id)
                await asyncio.sleep(self.interval)
        finally:
            if self._tasks.get(user_id) is asyncio.current_task():
                self._tasks.pop(user_id, None)
            logger.info("Search loop stopped for %s", user_id)


# Singleton instance
search_loops = SearchLoops(AsyncSessionLocal, settings.search_interval_seconds)
