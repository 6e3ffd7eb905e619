# caseflow/crud/organizations.py
from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.core.config import settings
from caseflow.core.exceptions import (
    ConflictError,
    InternalResolutionError,
    NotFoundError,
    OrganizationHierarchyError,
)
from caseflow.models.organization import Organization

# Distinguishes "leave parent alone" from "make this a root organization"
UNSET = object()


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


async def get_organization(db: AsyncSession, organization_id: str) -> Optional[Organization]:
    return await db.get(Organization, organization_id)


async def get_organization_by_code(db: AsyncSession, code: str) -> Optional[Organization]:
    stmt = select(Organization).where(Organization.code == normalize_code(code))
    return (await db.execute(stmt)).scalar_one_or_none()


async def list_organizations(db: AsyncSession, *, active_only: bool = False) -> list[Organization]:
    stmt = select(Organization).order_by(Organization.name, Organization.id)
    if active_only:
        stmt = stmt.where(Organization.is_active.is_(True))
    return list((await db.execute(stmt)).scalars().all())


async def ancestor_ids(
    db: AsyncSession,
    organization_id: str,
    *,
    max_depth: Optional[int] = None,
) -> list[str]:
    """
    Parent chain of an organization, nearest first (the organization itself excluded).

    The forest is acyclic by construction; a cycle or a chain deeper than
    ORG_HIERARCHY_MAX_DEPTH means the data was edited behind our back.
    """
    limit = max_depth or settings.ORG_HIERARCHY_MAX_DEPTH
    chain: list[str] = []
    seen = {organization_id}
    current = organization_id

    while True:
        stmt = select(Organization.parent_id).where(Organization.id == current)
        parent_id = (await db.execute(stmt)).scalar_one_or_none()
        if parent_id is None:
            return chain
        if parent_id in seen:
            raise InternalResolutionError(
                "Organization hierarchy contains a cycle",
                organization_id=organization_id,
                cycle_at=parent_id,
            )
        if len(chain) >= limit:
            raise InternalResolutionError(
                "Organization hierarchy exceeds maximum depth",
                organization_id=organization_id,
                max_depth=limit,
            )
        chain.append(parent_id)
        seen.add(parent_id)
        current = parent_id


async def descendant_ids(db: AsyncSession, organization_id: str) -> set[str]:
    """All organizations below `organization_id` (breadth-first, itself excluded)."""
    found: set[str] = set()
    frontier = [organization_id]
    while frontier:
        stmt = select(Organization.id).where(Organization.parent_id.in_(frontier))
        children = [c for c in (await db.execute(stmt)).scalars().all() if c not in found]
        children = [c for c in children if c != organization_id]
        found.update(children)
        frontier = children
    return found


async def _check_parent(db: AsyncSession, organization_id: Optional[str], parent_id: str) -> None:
    parent = await get_organization(db, parent_id)
    if parent is None:
        raise NotFoundError("Organization", parent_id, "Parent organization not found")

    if organization_id is None:
        return

    if parent_id == organization_id:
        raise OrganizationHierarchyError("An organization cannot be its own parent.")

    if organization_id in await ancestor_ids(db, parent_id):
        raise OrganizationHierarchyError(
            "An organization cannot be moved under one of its own descendants."
        )


async def create_organization(
    db: AsyncSession,
    *,
    name: str,
    code: str,
    type: str,
    parent_id: Optional[str] = None,
    description: Optional[str] = None,
) -> Organization:
    code = normalize_code(code)
    if await get_organization_by_code(db, code) is not None:
        raise ConflictError(f"Organization code {code!r} is already in use.")

    if parent_id is not None:
        await _check_parent(db, None, parent_id)

    org = Organization(
        name=" ".join(name.strip().split()),
        code=code,
        type=type.strip().lower(),
        parent_id=parent_id,
        description=description,
        is_active=True,
    )
    db.add(org)
    await db.flush()
    return org


async def update_organization(
    db: AsyncSession,
    organization_id: str,
    *,
    name: Optional[str] = None,
    type: Optional[str] = None,
    description: Optional[str] = None,
    parent_id=UNSET,
    is_active: Optional[bool] = None,
) -> Organization:
    org = await get_organization(db, organization_id)
    if org is None:
        raise NotFoundError("Organization", organization_id)

    if parent_id is not UNSET:
        if parent_id is not None:
            await _check_parent(db, org.id, parent_id)
        org.parent_id = parent_id

    if name is not None:
        org.name = " ".join(name.strip().split())
    if type is not None:
        org.type = type.strip().lower()
    if description is not None:
        org.description = description
    if is_active is not None:
        org.is_active = is_active

    await db.flush()
    return org


async def set_organization_active(db: AsyncSession, organization_id: str, is_active: bool) -> Organization:
    """
    Deactivation keeps memberships; resolution just stops using them.
    Pointers at a deactivated organization are repaired on the next resolve.
    """
    return await update_organization(db, organization_id, is_active=is_active)
