# caseflow/auth/admins.py
"""Manual super admin administration. Every change is audited in the same transaction."""
from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.core.exceptions import ConflictError, NotFoundError
from caseflow.crud.system_admins import (
    ACTION_GRANTED,
    ACTION_REVOKED,
    deactivate_allow_list_entry,
    get_allow_list_entry,
    record_admin_action,
)
from caseflow.crud.users import get_user, list_super_admin_users
from caseflow.db.base import utcnow
from caseflow.models.user import User

logger = structlog.get_logger(__name__)


async def list_super_admins(db: AsyncSession) -> list[User]:
    return await list_super_admin_users(db)


async def grant_super_admin(
    db: AsyncSession,
    *,
    user_id: str,
    granted_by: Optional[str] = None,
    notes: Optional[str] = None,
) -> User:
    user = await get_user(db, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    if user.is_super_admin:
        raise ConflictError(f"{user.email} is already a super admin.")

    user.is_super_admin = True
    user.super_admin_granted_at = utcnow()
    user.super_admin_granted_by = granted_by
    user.super_admin_notes = notes
    await db.flush()

    await record_admin_action(
        db,
        action=ACTION_GRANTED,
        actor_user_id=granted_by,
        entity_type="user",
        entity_id=user.id,
        description=f"Granted super admin to {user.email}",
        details={"email": user.email, "notes": notes},
    )
    await db.commit()

    logger.info("super_admin_granted", user_id=user.id, granted_by=granted_by)
    return user


async def revoke_super_admin(
    db: AsyncSession,
    *,
    user_id: str,
    revoked_by: Optional[str] = None,
    reason: Optional[str] = None,
) -> User:
    """
    Clear the global flag. The matching allow-list entry is deactivated too,
    otherwise the next login would elevate the user again.
    """
    user = await get_user(db, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    if not user.is_super_admin:
        raise NotFoundError("SuperAdmin", user_id, f"{user.email} is not a super admin")
    if revoked_by is not None and revoked_by == user.id:
        raise ConflictError("You cannot revoke your own super admin access.")

    user.is_super_admin = False
    user.super_admin_granted_at = None
    user.super_admin_granted_by = None
    user.super_admin_notes = reason
    await db.flush()

    entry = await get_allow_list_entry(db, user.email)
    if entry is not None and entry.is_active:
        await deactivate_allow_list_entry(db, email=user.email, actor_user_id=revoked_by, reason=reason)

    await record_admin_action(
        db,
        action=ACTION_REVOKED,
        actor_user_id=revoked_by,
        entity_type="user",
        entity_id=user.id,
        description=f"Revoked super admin from {user.email}",
        details={"email": user.email, "reason": reason},
    )
    await db.commit()

    logger.info("super_admin_revoked", user_id=user.id, revoked_by=revoked_by)
    return user
