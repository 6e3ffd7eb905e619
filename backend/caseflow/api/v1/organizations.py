# backend/caseflow/api/v1/organizations.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.api.deps.access import get_tenant_context
from caseflow.api.deps.identity import get_current_identity
from caseflow.auth.switcher import switch_active_organization
from caseflow.auth.tenant_context import TenantContext, TenantContextResolver
from caseflow.core.security import Identity
from caseflow.db.session import get_db
from caseflow.schemas.organization import (
    OrganizationChoiceOut,
    SwitchOrganizationRequest,
    TenantContextOut,
)

router = APIRouter(prefix="/organizations", tags=["organizations"])


def to_context_out(context: TenantContext) -> TenantContextOut:
    return TenantContextOut(
        user_id=context.user_id,
        organization_id=context.organization_id,
        organization_name=context.organization_name,
        role=context.role.slug if context.role else None,
        permissions=sorted(context.effective_permissions),
        is_super_admin=context.is_super_admin,
        inherited=context.inherited,
    )


# ---------------------------------------------------------
# Organization list (organization switcher menu)
# ---------------------------------------------------------
@router.get("", response_model=List[OrganizationChoiceOut])
async def list_my_organizations(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    """
    Organizations the current user can switch to.
    Super admins also get every other active organization (is_member=false).
    """
    choices = await TenantContextResolver(db).list_user_organizations(identity.user_id)
    return [
        OrganizationChoiceOut(
            organization_id=c.organization_id,
            name=c.name,
            code=c.code,
            type=c.type,
            role=c.role_slug,
            is_primary=c.is_primary,
            is_member=c.is_member,
            is_current=c.is_current,
        )
        for c in choices
    ]


@router.get("/current", response_model=TenantContextOut)
async def get_current_organization(
    context: TenantContext = Depends(get_tenant_context),
):
    return to_context_out(context)


@router.post("/switch", response_model=TenantContextOut)
async def switch_organization(
    payload: SwitchOrganizationRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    await switch_active_organization(db, identity.user_id, payload.organization_id.strip())

    # Read-your-writes: resolve again from the store, nothing reused
    context = await TenantContextResolver(db).resolve(identity.user_id)
    return to_context_out(context)
