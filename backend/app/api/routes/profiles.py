"""Profile routes: onboarding, edits, avatar upload."""

import logging

from fastapi import APIRouter, File, HTTPException, UploadFile, status

from app.api.deps import CurrentProfile, CurrentUser, DbSession
from app.config import get_settings, sanitize_error
from app.db.models import Profile
from app.schemas.profiles import ProfileCreate, ProfileRead, ProfileUpdate
from app.services.storage import ALLOWED_AVATAR_TYPES, StorageError, avatar_storage

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/profiles", tags=["profiles"])
settings = get_settings()


@router.put("/me", response_model=ProfileRead)
async def upsert_my_profile(
    data: ProfileCreate,
    current_user: CurrentUser,
    db: DbSession,
) -> ProfileRead:
    """
    Create or replace the caller's profile (onboarding submit).

    The row is keyed by the caller's user id, never by anything in the body.
    Radar and presence flags are left untouched on resubmission.
    """
    profile = await db.get(Profile, current_user.id)
    if profile is None:
        profile = Profile(id=current_user.id, **data.model_dump())
        db.add(profile)
    else:
        for key, value in data.model_dump().items():
            setattr(profile, key, value)
    await db.commit()
    await db.refresh(profile)
    return ProfileRead.model_validate(profile)


@router.get("/me", response_model=ProfileRead)
async def get_my_profile(profile: CurrentProfile) -> ProfileRead:
    """Get the caller's own profile."""
    return ProfileRead.model_validate(profile)


@router.patch("/me", response_model=ProfileRead)
async def update_my_profile(
    data: ProfileUpdate,
    profile: CurrentProfile,
    db: DbSession,
) -> ProfileRead:
    """Update selected profile fields."""
    for key, value in data.model_dump(exclude_unset=True).items():
        if value is None:
            continue
        setattr(profile, key, value)
    await db.commit()
    await db.refresh(profile)
    return ProfileRead.model_validate(profile)


@router.post("/me/avatar", response_model=ProfileRead)
async def upload_avatar(
    profile: CurrentProfile,
    db: DbSession,
    file: UploadFile = File(...),
) -> ProfileRead:
    """
    Upload a new avatar image and point the profile at it.

    The previous avatar object is deleted on a best-effort basis.
    """
    content_type = file.content_type or ""
    if content_type not in ALLOWED_AVATAR_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Avatar must be a JPEG, PNG, WebP or GIF image.",
        )

    data = await file.read()
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file.")
    if len(data) > settings.max_avatar_size_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Avatar must be at most {settings.max_avatar_size_bytes // (1024 * 1024)}MB.",
        )

    key = avatar_storage.generate_key(profile.id, content_type)
    try:
        url = await avatar_storage.upload_avatar(key, data, content_type)
    except StorageError as e:
        logger.exception("Avatar upload failed for %s", profile.id)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=sanitize_error(e, generic_message="Could not upload avatar."),
        )

    old_key = avatar_storage.key_from_url(profile.avatar_url)
    profile.avatar_url = url
    await db.commit()
    await db.refresh(profile)

    if old_key and old_key != key:
        try:
            await avatar_storage.delete_avatar(old_key)
        except StorageError:
            logger.warning("Could not delete old avatar %s", old_key)

    return ProfileRead.model_validate(profile)
