"""
FastAPI Dependencies for Authentication and Authorization.

Key patterns:
1. get_current_user: Extracts and validates JWT, returns User object
2. Participant-scoped queries: chats and messages are only ever selected
   through a WHERE clause naming the caller as user1_id or user2_id
3. No global "current user" state - always pass user explicitly

Security model:
- JWT stored in HttpOnly cookie (recommended) or Authorization header
- Row access is enforced in SQL, never by filtering results in Python
- Non-participants get 404, so chat ids are not probeable
"""

from datetime import datetime, timedelta, timezone
from typing import Annotated
from uuid import UUID

from fastapi import Cookie, Depends, Header, HTTPException, status
from jose import JWTError, jwt
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import get_settings
from app.db.models import Chat, Profile, User
from app.db.session import AsyncSessionLocal, get_db
from app.services.search_loops import SearchLoops, search_loops

settings = get_settings()


# =============================================================================
# JWT UTILITIES
# =============================================================================


def create_access_token(user_id: UUID) -> str:
    """
    Create a JWT access token for a user.

    Token payload contains:
    - sub: user_id as string (standard JWT subject claim)
    - exp: expiration timestamp

    The token carries no profile data; revocation requires a blocklist (not implemented).
    """
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expire_minutes)
    payload = {
        "sub": str(user_id),
        "exp": expire,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> UUID | None:
    """
    Decode and validate a JWT access token.

    Returns user_id if valid, None if invalid/expired.
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
        user_id_str = payload.get("sub")
        if user_id_str is None:
            return None
        return UUID(user_id_str)
    except (JWTError, ValueError):
        return None


# =============================================================================
# AUTHENTICATION DEPENDENCIES
# =============================================================================


async def get_token_from_request(
    authorization: Annotated[str | None, Header()] = None,
    access_token: Annotated[str | None, Cookie()] = None,
) -> str:
    """
    Extract JWT token from request.

    Supports two methods (in order of preference):
    1. HttpOnly cookie named 'access_token'
    2. Authorization header: 'Bearer <token>'
    """
    if access_token:
        return access_token

    if authorization:
        parts = authorization.split()
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1]

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    token: Annotated[str, Depends(get_token_from_request)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Validate JWT and return the current authenticated user.

    Raises 401 if:
    - Token is missing, invalid, or expired
    - User no longer exists in database
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    user_id = decode_access_token(token)
    if user_id is None:
        raise credentials_exception

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        raise credentials_exception

    return user


async def get_current_profile(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Profile:
    """
    Return the caller's profile.

    Raises 404 until onboarding has created one; clients treat that as
    "go to onboarding".
    """
    result = await db.execute(select(Profile).where(Profile.id == user.id))
    profile = result.scalar_one_or_none()
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Profile not found. Complete onboarding first.",
        )
    return profile


def get_search_loops() -> SearchLoops:
    """Registry of running search loops (overridable in tests)."""
    return search_loops


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for work that outlives the request, e.g. SSE streams."""
    return AsyncSessionLocal


async def get_optional_user(
    db: Annotated[AsyncSession, Depends(get_db)],
    authorization: Annotated[str | None, Header()] = None,
    access_token: Annotated[str | None, Cookie()] = None,
) -> User | None:
    """Like get_current_user, but None instead of 401. Used by logout."""
    try:
        token = await get_token_from_request(authorization, access_token)
    except HTTPException:
        return None
    user_id = decode_access_token(token)
    if user_id is None:
        return None
    return await db.get(User, user_id)


# Type aliases for dependency injection
CurrentUser = Annotated[User, Depends(get_current_user)]
OptionalUser = Annotated[User | None, Depends(get_optional_user)]
CurrentProfile = Annotated[Profile, Depends(get_current_profile)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
SearchLoopsDep = Annotated[SearchLoops, Depends(get_search_loops)]
SessionFactoryDep = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]


# =============================================================================
# QUERY HELPERS (enforce participant scoping at query level)
# =============================================================================


def participant_filter(user_id: UUID):
    """WHERE clause restricting chats to those the user takes part in."""
    return or_(Chat.user1_id == user_id, Chat.user2_id == user_id)


async def get_chat_or_404(
    db: AsyncSession,
    chat_id: UUID,
    user_id: UUID,
) -> Chat:
    """
    Fetch a chat the user participates in.

    Usage:
        chat = await get_chat_or_404(db, chat_id, current_user.id)

    Returns 404 both for missing chats and for chats the user is not part of.
    """
    stmt = select(Chat).where(Chat.id == chat_id, participant_filter(user_id))
    result = await db.execute(stmt)
    chat = result.scalar_one_or_none()

    if chat is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")

    return chat


async def get_active_chat(db: AsyncSession, user_id: UUID) -> Chat | None:
    """Return the user's most recent active chat, if any."""
    result = await db.execute(
        select(Chat)
        .where(participant_filter(user_id), Chat.active.is_(True))
        .order_by(Chat.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()
