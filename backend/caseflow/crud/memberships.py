# caseflow/crud/memberships.py
from __future__ import annotations

from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.core.exceptions import AccessDeniedError, ConflictError, NotFoundError
from caseflow.core.roles import RoleScope
from caseflow.crud.catalog import get_role_by_slug
from caseflow.models.active_organization import ActiveOrganizationPointer
from caseflow.models.membership import Membership
from caseflow.models.organization import Organization
from caseflow.models.rbac import Role
from caseflow.models.user import User


async def list_user_memberships(
    db: AsyncSession,
    user_id: str,
) -> list[tuple[Membership, Organization]]:
    """
    Every membership of a user joined with its organization, oldest first.
    Inactive organizations are included; callers decide what is usable.
    """
    stmt = (
        select(Membership, Organization)
        .join(Organization, Organization.id == Membership.organization_id)
        .where(Membership.user_id == user_id)
        .order_by(Membership.created_at, Membership.id)
    )
    res = await db.execute(stmt)
    return [(m, o) for m, o in res.all()]


async def get_membership(
    db: AsyncSession,
    user_id: str,
    organization_id: str,
) -> Optional[Membership]:
    stmt = select(Membership).where(
        Membership.user_id == user_id,
        Membership.organization_id == organization_id,
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def list_organization_members(
    db: AsyncSession,
    organization_id: str,
) -> list[tuple[Membership, User, Role]]:
    stmt = (
        select(Membership, User, Role)
        .join(User, User.id == Membership.user_id)
        .join(Role, Role.id == Membership.role_id)
        .where(Membership.organization_id == organization_id)
        .order_by(Membership.created_at, Membership.id)
    )
    res = await db.execute(stmt)
    return [(m, u, r) for m, u, r in res.all()]


async def _clear_primary(db: AsyncSession, user_id: str) -> None:
    # Flushed before the new primary is set so the partial unique index never sees two
    await db.execute(
        update(Membership)
        .where(Membership.user_id == user_id)
        .where(Membership.is_primary.is_(True))
        .values(is_primary=False)
    )


async def grant_membership(
    db: AsyncSession,
    *,
    user_id: str,
    organization_id: str,
    role_slug: str,
    is_primary: bool = False,
) -> Membership:
    """
    Give `user_id` a role inside `organization_id`.

    The user's first membership always becomes primary. Global roles (super
    admin) cannot be granted through a membership.
    """
    if await db.get(User, user_id) is None:
        raise NotFoundError("User", user_id)
    if await db.get(Organization, organization_id) is None:
        raise NotFoundError("Organization", organization_id)

    role = await get_role_by_slug(db, role_slug)
    if role is None:
        raise NotFoundError("Role", role_slug)
    if role.organization_scope == RoleScope.GLOBAL.value:
        raise AccessDeniedError(f"Role {role.slug!r} is global and cannot be granted per organization.")

    if await get_membership(db, user_id, organization_id) is not None:
        raise ConflictError("User is already a member of this organization.")

    has_any = (
        await db.execute(select(Membership.id).where(Membership.user_id == user_id).limit(1))
    ).scalar_one_or_none()
    make_primary = is_primary or has_any is None

    if make_primary:
        await _clear_primary(db, user_id)

    membership = Membership(
        user_id=user_id,
        organization_id=organization_id,
        role_id=role.id,
        is_primary=make_primary,
    )
    db.add(membership)
    await db.flush()
    return membership


async def change_membership_role(
    db: AsyncSession,
    user_id: str,
    organization_id: str,
    role_slug: str,
) -> Membership:
    membership = await get_membership(db, user_id, organization_id)
    if membership is None:
        raise NotFoundError("Membership", f"{user_id}:{organization_id}")

    role = await get_role_by_slug(db, role_slug)
    if role is None:
        raise NotFoundError("Role", role_slug)
    if role.organization_scope == RoleScope.GLOBAL.value:
        raise AccessDeniedError(f"Role {role.slug!r} is global and cannot be granted per organization.")

    membership.role_id = role.id
    await db.flush()
    return membership


async def set_primary_membership(db: AsyncSession, user_id: str, organization_id: str) -> Membership:
    membership = await get_membership(db, user_id, organization_id)
    if membership is None:
        raise NotFoundError("Membership", f"{user_id}:{organization_id}")

    if not membership.is_primary:
        await _clear_primary(db, user_id)
        await db.flush()
        membership.is_primary = True
        await db.flush()
    return membership


async def revoke_membership(db: AsyncSession, user_id: str, organization_id: str) -> None:
    """
    Remove a membership. If it was primary, the earliest remaining membership
    takes over; a pointer still naming the organization is cleared so the
    next resolution falls back through the normal precedence.
    """
    membership = await get_membership(db, user_id, organization_id)
    if membership is None:
        raise NotFoundError("Membership", f"{user_id}:{organization_id}")

    was_primary = membership.is_primary
    await db.delete(membership)
    await db.flush()

    await db.execute(
        delete(ActiveOrganizationPointer)
        .where(ActiveOrganizationPointer.user_id == user_id)
        .where(ActiveOrganizationPointer.organization_id == organization_id)
    )

    if was_primary:
        stmt = (
            select(Membership)
            .where(Membership.user_id == user_id)
            .order_by(Membership.created_at, Membership.id)
            .limit(1)
        )
        successor = (await db.execute(stmt)).scalar_one_or_none()
        if successor is not None:
            successor.is_primary = True
            await db.flush()
