# caseflow/crud/system_admins.py
"""
Admin allow-list (``system_admins``) and the system admin audit trail.

Callers own the transaction: these helpers flush but never commit, so an
allow-list change and its audit row land together or not at all.
"""
from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.core.exceptions import ConflictError, NotFoundError
from caseflow.models.system_admin import SystemAdmin, SystemAdminAuditLog
from caseflow.models.user import User

ACTION_ALLOW_LIST_ADDED = "allow_list_added"
ACTION_ALLOW_LIST_REMOVED = "allow_list_removed"
ACTION_GRANTED = "granted_super_admin"
ACTION_REVOKED = "revoked_super_admin"
ACTION_AUTO_ELEVATED = "auto_elevated_super_admin"


async def active_admin_emails(db: AsyncSession) -> frozenset[str]:
    stmt = select(SystemAdmin.email).where(SystemAdmin.is_active.is_(True))
    return frozenset(User.normalize_email(e) for e in (await db.execute(stmt)).scalars().all())


async def get_allow_list_entry(db: AsyncSession, email: str) -> Optional[SystemAdmin]:
    stmt = select(SystemAdmin).where(SystemAdmin.email == User.normalize_email(email))
    return (await db.execute(stmt)).scalar_one_or_none()


async def list_allow_list(db: AsyncSession, *, include_inactive: bool = False) -> list[SystemAdmin]:
    stmt = select(SystemAdmin).order_by(SystemAdmin.email)
    if not include_inactive:
        stmt = stmt.where(SystemAdmin.is_active.is_(True))
    return list((await db.execute(stmt)).scalars().all())


async def record_admin_action(
    db: AsyncSession,
    *,
    action: str,
    description: str,
    actor_user_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> SystemAdminAuditLog:
    entry = SystemAdminAuditLog(
        actor_user_id=actor_user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        description=description,
        details=dict(details or {}),
    )
    db.add(entry)
    await db.flush()
    return entry


async def list_audit_log(
    db: AsyncSession,
    *,
    limit: int = 50,
    offset: int = 0,
    action: Optional[str] = None,
) -> list[SystemAdminAuditLog]:
    stmt = (
        select(SystemAdminAuditLog)
        .order_by(SystemAdminAuditLog.created_at.desc(), SystemAdminAuditLog.id)
        .limit(limit)
        .offset(offset)
    )
    if action:
        stmt = stmt.where(SystemAdminAuditLog.action == action)
    return list((await db.execute(stmt)).scalars().all())


async def add_allow_list_entry(
    db: AsyncSession,
    *,
    email: str,
    name: Optional[str] = None,
    notes: Optional[str] = None,
    added_by: Optional[str] = None,
) -> SystemAdmin:
    """
    Put an email on the allow-list. A previously deactivated entry is
    reactivated instead of duplicated.
    """
    email = User.normalize_email(email)
    if not email or "@" not in email:
        raise ValueError(f"Invalid email: {email!r}")

    entry = await get_allow_list_entry(db, email)
    if entry is not None and entry.is_active:
        raise ConflictError(f"{email} is already on the admin allow-list.")

    if entry is None:
        entry = SystemAdmin(email=email)
        db.add(entry)

    entry.is_active = True
    entry.name = User.normalize_name(name) or entry.name
    entry.notes = notes if notes is not None else entry.notes
    entry.added_by = added_by

    existing_user = (
        await db.execute(select(User.id).where(User.email == email))
    ).scalar_one_or_none()
    if existing_user is not None:
        entry.user_id = existing_user

    await db.flush()

    await record_admin_action(
        db,
        action=ACTION_ALLOW_LIST_ADDED,
        actor_user_id=added_by,
        entity_type="system_admin",
        entity_id=entry.id,
        description=f"Added {email} to the admin allow-list",
        details={"email": email, "notes": notes},
    )
    return entry


async def deactivate_allow_list_entry(
    db: AsyncSession,
    *,
    email: str,
    actor_user_id: Optional[str] = None,
    reason: Optional[str] = None,
) -> SystemAdmin:
    entry = await get_allow_list_entry(db, email)
    if entry is None or not entry.is_active:
        raise NotFoundError("SystemAdmin", User.normalize_email(email), "Email is not on the admin allow-list")

    entry.is_active = False
    await db.flush()

    await record_admin_action(
        db,
        action=ACTION_ALLOW_LIST_REMOVED,
        actor_user_id=actor_user_id,
        entity_type="system_admin",
        entity_id=entry.id,
        description=f"Removed {entry.email} from the admin allow-list",
        details={"email": entry.email, "reason": reason},
    )
    return entry
