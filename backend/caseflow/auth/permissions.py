from __future__ import annotations

from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, FrozenSet, Iterable, Mapping, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.core.exceptions import CaseflowError, InternalResolutionError
from caseflow.core.roles import (
    ROLE_ADMIN,
    ROLE_CLERK,
    ROLE_JUDGE,
    ROLE_REGIONAL_SUPERVISOR,
    ROLE_SUPER_ADMIN,
    ROLE_VIEWER,
    RoleScope,
)
from caseflow.crud.catalog import RoleDefinition, permission_codes_for_roles, seed_catalog
from caseflow.crud.organizations import ancestor_ids
from caseflow.models.membership import Membership
from caseflow.models.organization import Organization
from caseflow.models.rbac import Role

if TYPE_CHECKING:
    from caseflow.auth.tenant_context import RoleInfo, TenantContext

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PermissionCode:
    # cases:*
    CASES_READ: str = "cases:read"
    CASES_CREATE: str = "cases:create"
    CASES_UPDATE: str = "cases:update"
    CASES_ASSIGN: str = "cases:assign"
    CASES_CLOSE: str = "cases:close"

    # documents:*
    DOCUMENTS_READ: str = "documents:read"
    DOCUMENTS_UPLOAD: str = "documents:upload"

    # hearings:*
    HEARINGS_READ: str = "hearings:read"
    HEARINGS_SCHEDULE: str = "hearings:schedule"

    # reports:*
    REPORTS_VIEW: str = "reports:view"
    REPORTS_EXPORT: str = "reports:export"

    # users:* (organization members)
    USERS_READ: str = "users:read"
    USERS_MANAGE: str = "users:manage"

    # organization:*
    ORGANIZATION_READ: str = "organization:read"
    ORGANIZATION_MANAGE: str = "organization:manage"


PERM = PermissionCode()

ALL_PERMISSION_CODES: FrozenSet[str] = frozenset(getattr(PERM, f.name) for f in fields(PERM))

PERMISSION_DESCRIPTIONS: Mapping[str, str] = {
    PERM.CASES_READ: "View cases and their history",
    PERM.CASES_CREATE: "Open new cases",
    PERM.CASES_UPDATE: "Edit case details",
    PERM.CASES_ASSIGN: "Assign cases to judges and clerks",
    PERM.CASES_CLOSE: "Close or archive cases",
    PERM.DOCUMENTS_READ: "Read case documents",
    PERM.DOCUMENTS_UPLOAD: "Upload case documents",
    PERM.HEARINGS_READ: "View the hearing calendar",
    PERM.HEARINGS_SCHEDULE: "Schedule and reschedule hearings",
    PERM.REPORTS_VIEW: "View statistical reports",
    PERM.REPORTS_EXPORT: "Export statistical reports",
    PERM.USERS_READ: "List organization members",
    PERM.USERS_MANAGE: "Add, remove and re-role organization members",
    PERM.ORGANIZATION_READ: "View organization details",
    PERM.ORGANIZATION_MANAGE: "Edit organization details",
}

ROLE_BASE_PERMISSIONS: Mapping[str, FrozenSet[str]] = {
    ROLE_ADMIN: frozenset(
        {
            PERM.CASES_READ,
            PERM.CASES_CREATE,
            PERM.CASES_UPDATE,
            PERM.CASES_ASSIGN,
            PERM.CASES_CLOSE,
            PERM.DOCUMENTS_READ,
            PERM.DOCUMENTS_UPLOAD,
            PERM.HEARINGS_READ,
            PERM.HEARINGS_SCHEDULE,
            PERM.REPORTS_VIEW,
            PERM.REPORTS_EXPORT,
            PERM.USERS_READ,
            PERM.USERS_MANAGE,
            PERM.ORGANIZATION_READ,
            PERM.ORGANIZATION_MANAGE,
        }
    ),
    ROLE_JUDGE: frozenset(
        {
            PERM.CASES_READ,
            PERM.CASES_UPDATE,
            PERM.CASES_CLOSE,
            PERM.DOCUMENTS_READ,
            PERM.HEARINGS_READ,
            PERM.HEARINGS_SCHEDULE,
            PERM.REPORTS_VIEW,
            PERM.ORGANIZATION_READ,
        }
    ),
    ROLE_CLERK: frozenset(
        {
            PERM.CASES_READ,
            PERM.CASES_CREATE,
            PERM.CASES_UPDATE,
            PERM.CASES_ASSIGN,
            PERM.DOCUMENTS_READ,
            PERM.DOCUMENTS_UPLOAD,
            PERM.HEARINGS_READ,
            PERM.HEARINGS_SCHEDULE,
            PERM.USERS_READ,
            PERM.ORGANIZATION_READ,
        }
    ),
    ROLE_VIEWER: frozenset(
        {
            PERM.CASES_READ,
            PERM.DOCUMENTS_READ,
            PERM.HEARINGS_READ,
            PERM.ORGANIZATION_READ,
        }
    ),
    # Oversight of lower courts: flows down the hierarchy
    ROLE_REGIONAL_SUPERVISOR: frozenset(
        {
            PERM.CASES_READ,
            PERM.HEARINGS_READ,
            PERM.REPORTS_VIEW,
            PERM.REPORTS_EXPORT,
            PERM.ORGANIZATION_READ,
        }
    ),
    ROLE_SUPER_ADMIN: ALL_PERMISSION_CODES,
}

DEFAULT_ROLES: tuple[RoleDefinition, ...] = (
    RoleDefinition(ROLE_ADMIN, "Administrator", ROLE_BASE_PERMISSIONS[ROLE_ADMIN]),
    RoleDefinition(ROLE_JUDGE, "Judge", ROLE_BASE_PERMISSIONS[ROLE_JUDGE]),
    RoleDefinition(ROLE_CLERK, "Clerk", ROLE_BASE_PERMISSIONS[ROLE_CLERK]),
    RoleDefinition(ROLE_VIEWER, "Viewer", ROLE_BASE_PERMISSIONS[ROLE_VIEWER]),
    RoleDefinition(
        ROLE_REGIONAL_SUPERVISOR,
        "Regional supervisor",
        ROLE_BASE_PERMISSIONS[ROLE_REGIONAL_SUPERVISOR],
        inherits_to_descendants=True,
        description="Read and reporting access to the organization and every organization below it.",
    ),
    RoleDefinition(
        ROLE_SUPER_ADMIN,
        "Super administrator",
        ROLE_BASE_PERMISSIONS[ROLE_SUPER_ADMIN],
        scope=RoleScope.GLOBAL,
        description="Global role. Never granted through a membership.",
    ),
)


async def seed_default_catalog(db: AsyncSession) -> list[Role]:
    return await seed_catalog(db, permissions=PERMISSION_DESCRIPTIONS, roles=DEFAULT_ROLES)


def normalize_codes(codes: Iterable[str] | str) -> list[str]:
    if isinstance(codes, str):
        codes = [codes]
    return [c.strip() for c in codes if isinstance(c, str) and c.strip()]


class PermissionEngine:
    """
    Effective permissions for a (user, role, organization) triple.

    Effective set = the role's own grants, plus the grants of every role the
    same user holds in an active ancestor organization when that role is
    flagged `inherits_to_descendants`. Nothing is cached between calls.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def role_permissions(self, role_id: str) -> FrozenSet[str]:
        if await self.db.get(Role, role_id) is None:
            raise InternalResolutionError("Membership references a missing role", role_id=role_id)
        return await permission_codes_for_roles(self.db, [role_id])

    async def _inherited_role_ids(self, user_id: str, organization_id: str) -> list[str]:
        ancestors = await ancestor_ids(self.db, organization_id)
        if not ancestors:
            return []

        stmt = (
            select(Membership.role_id, Role.id, Role.inherits_to_descendants)
            .join(Organization, Organization.id == Membership.organization_id)
            .outerjoin(Role, Role.id == Membership.role_id)
            .where(Membership.user_id == user_id)
            .where(Membership.organization_id.in_(ancestors))
            .where(Organization.is_active.is_(True))
        )
        role_ids: list[str] = []
        for membership_role_id, role_id, inherits in (await self.db.execute(stmt)).all():
            if role_id is None:
                raise InternalResolutionError(
                    "Membership references a missing role",
                    user_id=user_id,
                    role_id=membership_role_id,
                )
            if inherits:
                role_ids.append(role_id)
        return role_ids

    async def compute_effective_permissions(
        self,
        user_id: str,
        role: Optional["RoleInfo"],
        organization_id: str,
    ) -> FrozenSet[str]:
        base = await self.role_permissions(role.id) if role is not None else frozenset()

        inherited_roles = await self._inherited_role_ids(user_id, organization_id)
        if not inherited_roles:
            return base

        inherited = await permission_codes_for_roles(self.db, inherited_roles)
        return frozenset(base | inherited)

    @staticmethod
    def has(context: "TenantContext", code: str) -> bool:
        # Super admin is the only short-circuit; everything else is set membership
        if context.is_super_admin:
            return True
        return code in context.effective_permissions

    @classmethod
    def has_any(cls, context: "TenantContext", codes: Iterable[str] | str) -> bool:
        return any(cls.has(context, c) for c in normalize_codes(codes))

    @classmethod
    def has_all(cls, context: "TenantContext", codes: Iterable[str] | str) -> bool:
        required = normalize_codes(codes)
        return bool(required) and all(cls.has(context, c) for c in required)

    async def check(self, user_id: str, code: str, organization_id: Optional[str] = None) -> bool:
        """Point query. Never raises: anything short of a clean answer is a denial."""
        from caseflow.auth.tenant_context import TenantContextResolver

        resolver = TenantContextResolver(self.db, engine=self)
        try:
            if organization_id is None:
                context = await resolver.resolve(user_id)
            else:
                context = await resolver.resolve_for_organization(user_id, organization_id)
        except (CaseflowError, SQLAlchemyError) as exc:
            logger.info(
                "permission_check_denied",
                user_id=user_id,
                organization_id=organization_id,
                permission=code,
                reason=type(exc).__name__,
            )
            return False

        return self.has(context, code)
