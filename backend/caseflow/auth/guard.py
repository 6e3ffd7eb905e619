from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.auth.permissions import PermissionEngine, normalize_codes
from caseflow.auth.tenant_context import TenantContext, TenantContextResolver
from caseflow.core.exceptions import AccessDeniedError, InternalResolutionError
from caseflow.crud.users import get_user

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class AdminIdentity:
    user_id: str
    email: str
    name: Optional[str] = None


class AccessGuard:
    """
    Gate in front of every protected operation.

    Unauthenticated -> Authenticated -> ContextResolved -> Authorized | Denied.
    Context is resolved again on every call; no result is reused.
    """

    def __init__(self, db: AsyncSession, *, resolver: Optional[TenantContextResolver] = None) -> None:
        self.db = db
        self.resolver = resolver or TenantContextResolver(db)
        self.engine: PermissionEngine = self.resolver.engine

    async def _context(self, user_id: str, organization_id: Optional[str]) -> TenantContext:
        if organization_id is None:
            return await self.resolver.resolve(user_id)
        return await self.resolver.resolve_for_organization(user_id, organization_id)

    def _deny(self, context: TenantContext, required: list[str]) -> AccessDeniedError:
        logger.info(
            "access_denied",
            user_id=context.user_id,
            organization_id=context.organization_id,
            permission=required,
        )
        return AccessDeniedError(required=required)

    async def require_permission(
        self,
        user_id: str,
        code: str,
        organization_id: Optional[str] = None,
    ) -> TenantContext:
        context = await self._context(user_id, organization_id)
        if not self.engine.has(context, code):
            raise self._deny(context, [code])
        return context

    async def require_any_permission(
        self,
        user_id: str,
        codes: Iterable[str],
        organization_id: Optional[str] = None,
    ) -> TenantContext:
        required = normalize_codes(codes)
        context = await self._context(user_id, organization_id)
        if not self.engine.has_any(context, required):
            raise self._deny(context, required)
        return context

    async def require_all_permissions(
        self,
        user_id: str,
        codes: Iterable[str],
        organization_id: Optional[str] = None,
    ) -> TenantContext:
        required = normalize_codes(codes)
        context = await self._context(user_id, organization_id)
        if not self.engine.has_all(context, required):
            raise self._deny(context, required)
        return context

    async def require_super_admin(self, user_id: str) -> AdminIdentity:
        # Memberships are never consulted here
        try:
            user = await get_user(self.db, user_id)
        except SQLAlchemyError as exc:
            raise InternalResolutionError("Super admin check failed", user_id=user_id) from exc

        if user is None or not user.is_super_admin or not user.is_active:
            logger.info("super_admin_required", user_id=user_id)
            raise AccessDeniedError("Super admin access required.")

        return AdminIdentity(user_id=user.id, email=user.email, name=user.name)
