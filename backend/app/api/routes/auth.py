"""
Authentication Routes

Endpoints:
- POST /auth/google - Exchange Google id_token for session
- POST /auth/logout - Clear session, stop searching
- GET /auth/me - Get current user

Auth Flow:
1. Frontend performs Google sign-in and receives an id_token
2. Frontend POSTs id_token to /auth/google
3. Backend verifies id_token with Google's public keys
4. Backend rejects any email outside the campus domain
5. Backend upserts user + auth_identity
6. Backend returns JWT (in cookie and response body)

Campus gating:
- Only verified emails ending in @<allowed_email_domain> may sign in
- The check happens here, server-side; the frontend check is cosmetic
"""

import logging
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token as google_id_token
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.api.deps import (
    CurrentUser,
    OptionalUser,
    SearchLoopsDep,
    create_access_token,
)
from app.config import get_settings
from app.db.models import AuthIdentity, Profile, User
from app.db.session import get_db
from app.schemas.auth import GoogleAuthRequest, TokenResponse
from app.schemas.user import UserRead

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])
settings = get_settings()


def is_allowed_email(email: str | None) -> bool:
    """True if the email belongs to the allow-listed campus domain."""
    if not email:
        return False
    return email.lower().endswith("@" + settings.allowed_email_domain.lower())


def _cookie_kwargs() -> dict:
    # For cross-domain deployments, use samesite="none" + secure=True
    return {
        "httponly": True,
        "secure": settings.cookie_cross_domain or settings.environment != "development",
        "samesite": "none" if settings.cookie_cross_domain else "lax",
    }


@router.post("/google", response_model=TokenResponse)
async def google_login(
    request: GoogleAuthRequest,
    response: Response,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> TokenResponse:
    """
    Exchange Google id_token for a session JWT.

    Flow:
    1. Verify id_token with Google's public keys
    2. Require a verified campus email
    3. Find or create auth_identity by (provider='google', provider_user_id=sub)
    4. Find or create user, link to auth_identity
    5. Return JWT, plus whether onboarding is still pending
    """
    try:
        # Checks signature, expiry, and audience
        idinfo = google_id_token.verify_oauth2_token(
            request.id_token,
            google_requests.Request(),
            settings.google_client_id,
        )

        provider_user_id = idinfo["sub"]
        email = idinfo.get("email")
        name = idinfo.get("name", email or "Unknown User")

        if idinfo.get("iss") not in ["accounts.google.com", "https://accounts.google.com"]:
            raise ValueError("Invalid issuer")

    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid Google id_token: {e}",
        )

    # An unverified address could be anyone's, so it never passes the gate
    if not idinfo.get("email_verified", False) or not is_allowed_email(email):
        logger.info("Rejected sign-in outside campus domain: %s", email)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Only @{settings.allowed_email_domain} emails are allowed for campus safety.",
        )
    email = email.lower()

    # Eagerly load user to avoid async lazy-load
    result = await db.execute(
        select(AuthIdentity)
        .options(selectinload(AuthIdentity.user))
        .where(
            AuthIdentity.provider == "google",
            AuthIdentity.provider_user_id == provider_user_id,
        )
    )
    auth_identity = result.scalar_one_or_none()

    if auth_identity:
        auth_identity.last_login_at = datetime.now(timezone.utc)
        auth_identity.email = email
        user = auth_identity.user
    else:
        result = await db.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()

        if user is None:
            user = User(email=email, name=name)
            db.add(user)
            await db.flush()  # Get user.id

        auth_identity = AuthIdentity(
            user_id=user.id,
            provider="google",
            provider_user_id=provider_user_id,
            email=email,
        )
        db.add(auth_identity)

    await db.commit()

    has_profile = (await db.get(Profile, user.id)) is not None

    access_token = create_access_token(user.id)
    expires_in = settings.jwt_expire_minutes * 60

    response.set_cookie(
        key="access_token",
        value=access_token,
        max_age=expires_in,
        **_cookie_kwargs(),
    )

    return TokenResponse(
        access_token=access_token,
        expires_in=expires_in,
        has_profile=has_profile,
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    response: Response,
    user: OptionalUser,
    loops: SearchLoopsDep,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> None:
    """
    Clear the authentication session.

    Also takes the user off the radar and marks them offline, so a signed-out
    user is never matched.
    The JWT itself stays valid until expiry if the client kept a copy.
    """
    if user is not None:
        loops.stop(user.id)
        profile = await db.get(Profile, user.id)
        if profile is not None:
            profile.is_searching = False
            profile.is_online = False
            await db.commit()

    response.delete_cookie(key="access_token", **_cookie_kwargs())


@router.get("/me", response_model=UserRead)
async def get_me(current_user: CurrentUser) -> UserRead:
    """Get the current authenticated user."""
    return UserRead.model_validate(current_user)
