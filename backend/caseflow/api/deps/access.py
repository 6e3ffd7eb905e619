from __future__ import annotations

from typing import Callable, Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.api.deps.identity import get_current_identity
from caseflow.auth.guard import AccessGuard, AdminIdentity
from caseflow.auth.tenant_context import TenantContext, TenantContextResolver
from caseflow.core.security import Identity
from caseflow.db.session import get_db


def _clean_header(value: Optional[str]) -> Optional[str]:
    v = (value or "").strip()
    return v or None


def get_access_guard(db: AsyncSession = Depends(get_db)) -> AccessGuard:
    return AccessGuard(db)


async def get_tenant_context(
    x_organization_id: Optional[str] = Header(default=None, alias="X-Organization-Id"),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> TenantContext:
    """
    Authenticated -> ContextResolved.

    Without X-Organization-Id the active organization is resolved from the
    user's pointer / primary / earliest membership.
    """
    resolver = TenantContextResolver(db)
    organization_id = _clean_header(x_organization_id)
    if organization_id:
        return await resolver.resolve_for_organization(identity.user_id, organization_id)
    return await resolver.resolve(identity.user_id)


def require_organization_permission(*codes: str, any_of: bool = False) -> Callable:
    """
    Enforce permission codes in the organization named by the
    `organization_id` path parameter, against a freshly resolved context.

    Args:
      codes: one or more permission codes
      any_of: True => any listed code passes; False => all listed codes required
    """
    if not codes:
        raise ValueError("require_organization_permission needs at least one code")
    required = list(codes)

    async def _checker(
        organization_id: str,
        identity: Identity = Depends(get_current_identity),
        guard: AccessGuard = Depends(get_access_guard),
    ) -> TenantContext:
        if any_of:
            return await guard.require_any_permission(identity.user_id, required, organization_id)
        if len(required) == 1:
            return await guard.require_permission(identity.user_id, required[0], organization_id)
        return await guard.require_all_permissions(identity.user_id, required, organization_id)

    return _checker


async def require_super_admin(
    identity: Identity = Depends(get_current_identity),
    guard: AccessGuard = Depends(get_access_guard),
) -> AdminIdentity:
    return await guard.require_super_admin(identity.user_id)
