"""In-process change feed for chats and messages.

Routes publish row changes after commit; SSE endpoints subscribe per topic.
Delivery is at-least-once per connected subscriber and carries no ordering
guarantee across publishers, so clients re-sort messages by ``created_at``
and re-fetch when they see a ``resync`` event.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any
from uuid import UUID

from app.config import get_settings
from app.db.models import Chat, Message
from app.schemas.chats import ChatRead, MessageRead

logger = logging.getLogger(__name__)
settings = get_settings()

CHAT_CREATED = "chat.created"
CHAT_UPDATED = "chat.updated"
MESSAGE_CREATED = "message.created"
RESYNC = "resync"


def user_topic(user_id: UUID) -> str:
    return f"user:{user_id}"


def chat_topic(chat_id: UUID) -> str:
    return f"chat:{chat_id}"


class EventBroker:
    """Fan-out of events to per-topic subscriber queues."""

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscribers: dict[str, set[asyncio.Queue]] = {}

    def subscribe(self, topic: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.setdefault(topic, set()).add(queue)
        return queue

    def unsubscribe(self, topic: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(topic)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            self._subscribers.pop(topic, None)

    @asynccontextmanager
    async def subscription(self, topic: str) -> AsyncIterator[asyncio.Queue]:
        """Subscribe for the duration of the block; always unsubscribes."""
        queue = self.subscribe(topic)
        try:
            yield queue
        finally:
            self.unsubscribe(topic, queue)

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    def publish(self, topic: str, event: str, data: dict[str, Any]) -> int:
        """
        Deliver an event to every current subscriber of a topic.

        A subscriber whose queue is full is drained and handed a single
        ``resync`` event instead, telling it to re-fetch from the API.

        Returns:
            Number of subscribers the event was queued for
        """
        delivered = 0
        for queue in list(self._subscribers.get(topic, ())):
            try:
                queue.put_nowait({"event": event, "data": data})
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Subscriber queue full on %s, forcing resync", topic)
                while not queue.empty():
                    queue.get_nowait()
                queue.put_nowait({"event": RESYNC, "data": {}})
        return delivered

    # -------------------------------------------------------------------------
    # Domain helpers
    # -------------------------------------------------------------------------

    def publish_chat(self, event: str, chat: Chat) -> None:
        """Notify both participants about a chat insert or update."""
        data = ChatRead.model_validate(chat).model_dump(mode="json")
        for user_id in (chat.user1_id, chat.user2_id):
            self.publish(user_topic(user_id), event, data)

    def publish_message(self, message: Message) -> None:
        data = MessageRead.model_validate(message).model_dump(mode="json")
        self.publish(chat_topic(message.chat_id), MESSAGE_CREATED, data)


# Singleton instance
event_broker = EventBroker(queue_size=settings.event_queue_size)
