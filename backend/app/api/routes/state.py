"""Application state route."""

from fastapi import APIRouter

from app.api.deps import CurrentUser, DbSession
from app.schemas.chats import ChatRead
from app.schemas.profiles import ProfileRead
from app.schemas.state import AppStateRead
from app.services.app_state import resolve_state

router = APIRouter(prefix="/me", tags=["state"])


@router.get("/state", response_model=AppStateRead)
async def get_app_state(
    current_user: CurrentUser,
    db: DbSession,
) -> AppStateRead:
    """
    Which screen the client should be on.

    - onboarding: no profile yet (or it could not be loaded)
    - dashboard: profile present, no active chat
    - chat: an active chat exists
    """
    state = await resolve_state(db, current_user)
    return AppStateRead(
        view=state.view.value,
        profile=ProfileRead.model_validate(state.profile) if state.profile else None,
        active_chat=ChatRead.model_validate(state.active_chat) if state.active_chat else None,
    )
