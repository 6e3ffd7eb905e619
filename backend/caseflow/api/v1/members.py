# backend/caseflow/api/v1/members.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.api.deps.access import require_organization_permission
from caseflow.auth.permissions import PERM
from caseflow.auth.tenant_context import TenantContext
from caseflow.core.exceptions import NotFoundError
from caseflow.crud.catalog import get_role
from caseflow.crud.memberships import (
    change_membership_role,
    grant_membership,
    list_organization_members,
    revoke_membership,
)
from caseflow.crud.users import get_user, get_user_by_email
from caseflow.db.session import get_db
from caseflow.schemas.membership import MemberCreate, MemberOut, MemberUpdate

router = APIRouter(prefix="/organizations/{organization_id}/members", tags=["members"])


@router.get("", response_model=List[MemberOut])
async def list_members(
    organization_id: str,
    _context: TenantContext = Depends(
        require_organization_permission(PERM.USERS_READ, PERM.USERS_MANAGE, any_of=True)
    ),
    db: AsyncSession = Depends(get_db),
):
    rows = await list_organization_members(db, organization_id)
    return [
        MemberOut(
            organization_id=m.organization_id,
            user_id=u.id,
            email=u.email,
            name=u.name,
            role=r.slug,
            is_primary=m.is_primary,
            created_at=m.created_at,
        )
        for m, u, r in rows
    ]


@router.post("", response_model=MemberOut, status_code=status.HTTP_201_CREATED)
async def add_member(
    organization_id: str,
    payload: MemberCreate,
    _context: TenantContext = Depends(require_organization_permission(PERM.USERS_MANAGE)),
    db: AsyncSession = Depends(get_db),
):
    user = await get_user_by_email(db, payload.email)
    if user is None:
        raise NotFoundError("User", str(payload.email), "No user with this email has signed in yet")

    membership = await grant_membership(
        db,
        user_id=user.id,
        organization_id=organization_id,
        role_slug=payload.role,
        is_primary=payload.is_primary,
    )
    role = await get_role(db, membership.role_id)
    await db.commit()

    return MemberOut(
        organization_id=membership.organization_id,
        user_id=user.id,
        email=user.email,
        name=user.name,
        role=role.slug,
        is_primary=membership.is_primary,
        created_at=membership.created_at,
    )


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    organization_id: str,
    user_id: str,
    _context: TenantContext = Depends(require_organization_permission(PERM.USERS_MANAGE)),
    db: AsyncSession = Depends(get_db),
):
    await revoke_membership(db, user_id, organization_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/{user_id}", response_model=MemberOut)
async def update_member_role(
    organization_id: str,
    user_id: str,
    payload: MemberUpdate,
    # Re-roling needs the roster as well as the right to change it
    _context: TenantContext = Depends(require_organization_permission(PERM.USERS_READ, PERM.USERS_MANAGE)),
    db: AsyncSession = Depends(get_db),
):
    membership = await change_membership_role(db, user_id, organization_id, payload.role)
    user = await get_user(db, user_id)
    role = await get_role(db, membership.role_id)
    await db.commit()

    return MemberOut(
        organization_id=membership.organization_id,
        user_id=user_id,
        email=user.email,
        name=user.name,
        role=role.slug,
        is_primary=membership.is_primary,
        created_at=membership.created_at,
    )
