# backend/caseflow/api/v1/auth.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.api.deps.identity import get_current_identity
from caseflow.auth.elevation import run_post_login_hooks
from caseflow.core.exceptions import NotAuthenticatedError
from caseflow.core.security import Identity
from caseflow.crud.users import get_user
from caseflow.db.session import get_db
from caseflow.schemas.auth import MeResponse, SessionResponse

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/session", response_model=SessionResponse)
async def start_session(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> SessionResponse:
    """
    Called by the frontend right after the magic-link login completes.
    Runs the post-login hooks; a failing hook never fails this request.
    """
    result = await run_post_login_hooks(db, identity)

    return SessionResponse(
        user_id=identity.user_id,
        email=identity.email,
        is_super_admin=result.elevated,
        newly_elevated=result.newly_elevated,
    )


@router.get("/me", response_model=MeResponse)
async def me(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> MeResponse:
    user = await get_user(db, identity.user_id)
    if user is None:
        raise NotAuthenticatedError("User not found")
    return MeResponse.model_validate(user)
