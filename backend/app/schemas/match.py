"""Matchmaking schemas."""

from pydantic import BaseModel

from app.schemas.chats import ChatRead


class SearchingUpdate(BaseModel):
    """Toggle the radar on or off."""

    searching: bool


class SearchStatus(BaseModel):
    """Radar state after a toggle or tick."""

    searching: bool
    chat: ChatRead | None = None
