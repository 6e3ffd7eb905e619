# backend/caseflow/api/v1/system_admin.py
"""Cross-tenant administration. Every route requires a super admin; memberships play no part."""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.api.deps.access import require_super_admin
from caseflow.auth.admins import grant_super_admin, list_super_admins, revoke_super_admin
from caseflow.auth.guard import AdminIdentity
from caseflow.core.exceptions import NotFoundError
from caseflow.crud import catalog
from caseflow.crud import organizations as org_crud
from caseflow.crud.system_admins import (
    add_allow_list_entry,
    deactivate_allow_list_entry,
    list_allow_list,
    list_audit_log,
    record_admin_action,
)
from caseflow.crud.users import get_user_by_email
from caseflow.db.session import get_db
from caseflow.models.rbac import Role
from caseflow.schemas.organization import OrganizationCreate, OrganizationOut, OrganizationUpdate
from caseflow.schemas.system_admin import (
    AllowListEntryCreate,
    AllowListEntryOut,
    AuditEntryOut,
    PermissionOut,
    RoleCreate,
    RoleOut,
    RoleUpdate,
    SuperAdminGrant,
    SuperAdminOut,
)

router = APIRouter(prefix="/system-admin", tags=["system-admin"])


# =========================================================
# SUPER ADMINS
# =========================================================
@router.get("/admins", response_model=List[SuperAdminOut])
async def get_super_admins(
    _admin: AdminIdentity = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    return await list_super_admins(db)


@router.post("/admins", response_model=SuperAdminOut, status_code=status.HTTP_201_CREATED)
async def create_super_admin(
    payload: SuperAdminGrant,
    admin: AdminIdentity = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    user = await get_user_by_email(db, payload.email)
    if user is None:
        raise NotFoundError("User", str(payload.email), "No user with this email has signed in yet")

    return await grant_super_admin(db, user_id=user.id, granted_by=admin.user_id, notes=payload.notes)


@router.delete("/admins/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_super_admin(
    user_id: str,
    reason: Optional[str] = Query(default=None, max_length=1000),
    admin: AdminIdentity = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    await revoke_super_admin(db, user_id=user_id, revoked_by=admin.user_id, reason=reason)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =========================================================
# ADMIN ALLOW-LIST
# =========================================================
@router.get("/allow-list", response_model=List[AllowListEntryOut])
async def get_allow_list(
    include_inactive: bool = Query(default=False),
    _admin: AdminIdentity = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    return await list_allow_list(db, include_inactive=include_inactive)


@router.post("/allow-list", response_model=AllowListEntryOut, status_code=status.HTTP_201_CREATED)
async def add_to_allow_list(
    payload: AllowListEntryCreate,
    admin: AdminIdentity = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    entry = await add_allow_list_entry(
        db,
        email=str(payload.email),
        name=payload.name,
        notes=payload.notes,
        added_by=admin.user_id,
    )
    await db.commit()
    return entry


@router.delete("/allow-list/{email}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_from_allow_list(
    email: str,
    admin: AdminIdentity = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    await deactivate_allow_list_entry(db, email=email, actor_user_id=admin.user_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =========================================================
# ORGANIZATIONS
# =========================================================
@router.get("/organizations", response_model=List[OrganizationOut])
async def get_organizations(
    active_only: bool = Query(default=False),
    _admin: AdminIdentity = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    return await org_crud.list_organizations(db, active_only=active_only)


@router.post("/organizations", response_model=OrganizationOut, status_code=status.HTTP_201_CREATED)
async def create_organization(
    payload: OrganizationCreate,
    admin: AdminIdentity = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    org = await org_crud.create_organization(
        db,
        name=payload.name,
        code=payload.code,
        type=payload.type,
        parent_id=payload.parent_id,
        description=payload.description,
    )
    await record_admin_action(
        db,
        action="organization_created",
        actor_user_id=admin.user_id,
        entity_type="organization",
        entity_id=org.id,
        description=f"Created organization {org.code}",
        details={"name": org.name, "parent_id": org.parent_id},
    )
    await db.commit()
    return org


@router.patch("/organizations/{organization_id}", response_model=OrganizationOut)
async def update_organization(
    organization_id: str,
    payload: OrganizationUpdate,
    admin: AdminIdentity = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    data = payload.model_dump(exclude_unset=True)
    if "parent_id" not in data:
        data["parent_id"] = org_crud.UNSET

    org = await org_crud.update_organization(db, organization_id, **data)

    changes = {k: v for k, v in payload.model_dump(exclude_unset=True).items()}
    await record_admin_action(
        db,
        action="organization_updated",
        actor_user_id=admin.user_id,
        entity_type="organization",
        entity_id=org.id,
        description=f"Updated organization {org.code}",
        details=changes,
    )
    await db.commit()
    return org


# =========================================================
# ROLES & PERMISSIONS
# =========================================================
async def _role_out(db: AsyncSession, role: Role) -> RoleOut:
    return RoleOut(
        id=role.id,
        slug=role.slug,
        name=role.name,
        description=role.description,
        scope=role.organization_scope,
        inherits_to_descendants=bool(role.inherits_to_descendants),
        permissions=await catalog.role_permission_codes(db, role.id),
    )


@router.get("/permissions", response_model=List[PermissionOut])
async def get_permissions(
    _admin: AdminIdentity = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    return await catalog.list_permissions(db)


@router.get("/roles", response_model=List[RoleOut])
async def get_roles(
    _admin: AdminIdentity = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    return [await _role_out(db, role) for role in await catalog.list_roles(db)]


@router.post("/roles", response_model=RoleOut, status_code=status.HTTP_201_CREATED)
async def create_role(
    payload: RoleCreate,
    admin: AdminIdentity = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    role = await catalog.create_role(
        db,
        slug=payload.slug,
        name=payload.name,
        permissions=payload.permissions,
        inherits_to_descendants=payload.inherits_to_descendants,
        description=payload.description,
    )
    out = await _role_out(db, role)
    await record_admin_action(
        db,
        action="role_created",
        actor_user_id=admin.user_id,
        entity_type="role",
        entity_id=role.id,
        description=f"Created role {role.slug}",
        details={"permissions": out.permissions, "inherits_to_descendants": out.inherits_to_descendants},
    )
    await db.commit()
    return out


@router.patch("/roles/{slug}", response_model=RoleOut)
async def update_role(
    slug: str,
    payload: RoleUpdate,
    admin: AdminIdentity = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    changes = payload.model_dump(exclude_unset=True)
    role = await catalog.update_role(db, slug, **changes)
    out = await _role_out(db, role)
    await record_admin_action(
        db,
        action="role_updated",
        actor_user_id=admin.user_id,
        entity_type="role",
        entity_id=role.id,
        description=f"Updated role {role.slug}",
        details=changes,
    )
    await db.commit()
    return out


# =========================================================
# AUDIT
# =========================================================
@router.get("/audit", response_model=List[AuditEntryOut])
async def get_audit_log(
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    action: Optional[str] = Query(default=None),
    _admin: AdminIdentity = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    return await list_audit_log(db, limit=limit, offset=offset, action=action)
