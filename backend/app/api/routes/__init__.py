"""API routes package."""

from app.api.routes import auth, chats, events, match, profiles, state

__all__ = [
    "auth",
    "chats",
    "events",
    "match",
    "profiles",
    "state",
]
