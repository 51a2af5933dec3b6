"""Application state schema."""

from pydantic import BaseModel

from app.schemas.chats import ChatRead
from app.schemas.profiles import ProfileRead


class AppStateRead(BaseModel):
    """Which screen the client should show, with the data it needs."""

    view: str
    profile: ProfileRead | None = None
    active_chat: ChatRead | None = None
