"""Radar matchmaking routes."""

from fastapi import APIRouter, HTTPException, status

from app.api.deps import CurrentProfile, DbSession, SearchLoopsDep, get_active_chat
from app.schemas.chats import ChatRead
from app.schemas.match import SearchingUpdate, SearchStatus
from app.services.matchmaker import matchmaker

router = APIRouter(prefix="/match", tags=["match"])


@router.put("/searching", response_model=SearchStatus)
async def set_searching(
    data: SearchingUpdate,
    profile: CurrentProfile,
    db: DbSession,
    loops: SearchLoopsDep,
) -> SearchStatus:
    """
    Turn the radar on or off.

    Turning it on starts a background loop that ticks every few seconds
    until a match is made; turning it off stops that loop immediately.
    A user already in an active chat cannot start searching.
    """
    if not data.searching:
        loops.stop(profile.id)
        await matchmaker.set_searching(db, profile, False)
        await db.commit()
        return SearchStatus(searching=False)

    # Holding our row keeps a partner's tick from pairing us mid-toggle
    await db.refresh(profile, with_for_update=True)
    active = await get_active_chat(db, profile.id)
    if active is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="You already have an active chat. End it before searching again.",
        )

    await matchmaker.set_searching(db, profile, True)
    await db.commit()
    loops.start(profile.id)
    return SearchStatus(searching=True)


@router.post("/tick", response_model=SearchStatus)
async def search_tick(
    profile: CurrentProfile,
    db: DbSession,
    loops: SearchLoopsDep,
) -> SearchStatus:
    """
    Run one search tick now.

    For clients that drive their own polling; the result is the same as a
    tick of the background loop.
    """
    chat = await matchmaker.search_tick(db, profile.id)
    if chat is None:
        await db.commit()
        await db.refresh(profile)
        return SearchStatus(searching=profile.is_searching)

    await db.commit()
    loops.on_matched(chat)
    return SearchStatus(searching=False, chat=ChatRead.model_validate(chat))
