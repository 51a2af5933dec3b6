"""Pydantic schemas for API request/response validation."""

from app.schemas.user import UserRead
from app.schemas.auth import GoogleAuthRequest, TokenResponse
from app.schemas.profiles import PartnerRead, ProfileCreate, ProfileRead, ProfileUpdate
from app.schemas.chats import ChatDetail, ChatRead, MessageCreate, MessageRead
from app.schemas.match import SearchingUpdate, SearchStatus
from app.schemas.state import AppStateRead

__all__ = [
    # User
    "UserRead",
    # Auth
    "GoogleAuthRequest",
    "TokenResponse",
    # Profiles
    "ProfileCreate",
    "ProfileRead",
    "ProfileUpdate",
    "PartnerRead",
    # Chats
    "ChatRead",
    "ChatDetail",
    "MessageCreate",
    "MessageRead",
    # Matchmaking
    "SearchingUpdate",
    "SearchStatus",
    # App state
    "AppStateRead",
]
