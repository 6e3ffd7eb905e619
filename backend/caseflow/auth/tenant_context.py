"""
Tenant context resolution.

A TenantContext answers "which organization is this user acting in, with
which role, and what may they do there". It is derived fresh for every
request and never stored; the only durable input besides memberships is the
per-user ActiveOrganizationPointer row.

Active organization precedence, skipping inactive organizations at each step:

1. the pointer, if it still names one of the user's memberships
2. the primary membership
3. the earliest membership (created_at, then id)
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.auth.permissions import PermissionEngine
from caseflow.auth.switcher import repair_active_organization
from caseflow.core.config import settings
from caseflow.core.exceptions import (
    AccessDeniedError,
    InternalResolutionError,
    NoOrganizationError,
    NotFoundError,
    OrganizationInactiveError,
)
from caseflow.crud.memberships import get_membership, list_user_memberships
from caseflow.crud.organizations import get_organization, list_organizations
from caseflow.crud.users import get_user
from caseflow.models.active_organization import ActiveOrganizationPointer
from caseflow.models.membership import Membership
from caseflow.models.organization import Organization
from caseflow.models.rbac import Role
from caseflow.models.user import User

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RoleInfo:
    id: str
    slug: str
    name: str
    inherits_to_descendants: bool = False


@dataclass(frozen=True, slots=True)
class TenantContext:
    user_id: str
    organization_id: str
    organization_name: str
    role: Optional[RoleInfo]
    effective_permissions: FrozenSet[str]
    is_super_admin: bool = False
    # True when access comes only from an inheriting role in an ancestor organization
    inherited: bool = False


@dataclass(frozen=True, slots=True)
class OrganizationChoice:
    organization_id: str
    name: str
    code: str
    type: str
    role_slug: Optional[str]
    is_primary: bool
    is_member: bool
    is_current: bool


def _acts_as_super_admin(user: User) -> bool:
    # A deactivated account keeps the flag on record but loses its effect
    return bool(user.is_super_admin and user.is_active)


def _choose(
    usable: list[tuple[Membership, Organization]],
    pointer_organization_id: Optional[str],
) -> tuple[Membership, Organization, str]:
    by_org = {org.id: (m, org) for m, org in usable}
    if pointer_organization_id in by_org:
        m, org = by_org[pointer_organization_id]
        return m, org, "pointer"

    for m, org in usable:
        if m.is_primary:
            return m, org, "primary"

    # list_user_memberships orders by (created_at, id)
    m, org = usable[0]
    return m, org, "earliest"


class TenantContextResolver:
    def __init__(
        self,
        db: AsyncSession,
        *,
        engine: Optional[PermissionEngine] = None,
        self_heal: Optional[bool] = None,
    ) -> None:
        self.db = db
        self.engine = engine or PermissionEngine(db)
        self.self_heal = settings.POINTER_SELF_HEAL if self_heal is None else self_heal

    async def resolve(self, user_id: str) -> TenantContext:
        try:
            return await self._resolve(user_id)
        except SQLAlchemyError as exc:
            raise InternalResolutionError("Tenant context could not be loaded", user_id=user_id) from exc

    async def resolve_for_organization(self, user_id: str, organization_id: str) -> TenantContext:
        try:
            return await self._resolve_for_organization(user_id, organization_id)
        except SQLAlchemyError as exc:
            raise InternalResolutionError(
                "Tenant context could not be loaded",
                user_id=user_id,
                organization_id=organization_id,
            ) from exc

    async def list_user_organizations(self, user_id: str) -> list[OrganizationChoice]:
        try:
            return await self._list_user_organizations(user_id)
        except SQLAlchemyError as exc:
            raise InternalResolutionError("Organizations could not be listed", user_id=user_id) from exc

    # -----------------------------
    # internals
    # -----------------------------
    async def _pointer(self, user_id: str) -> Optional[str]:
        stmt = select(ActiveOrganizationPointer.organization_id).where(
            ActiveOrganizationPointer.user_id == user_id
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def _role_info(self, user_id: str, role_id: str) -> RoleInfo:
        role = await self.db.get(Role, role_id)
        if role is None:
            raise InternalResolutionError(
                "Membership references a missing role",
                user_id=user_id,
                role_id=role_id,
            )
        return RoleInfo(
            id=role.id,
            slug=role.slug,
            name=role.name,
            inherits_to_descendants=bool(role.inherits_to_descendants),
        )

    async def _usable_memberships(self, user_id: str) -> list[tuple[Membership, Organization]]:
        return [(m, org) for m, org in await list_user_memberships(self.db, user_id) if org.is_active]

    async def _resolve(self, user_id: str) -> TenantContext:
        user = await get_user(self.db, user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        is_super_admin = _acts_as_super_admin(user)

        usable = await self._usable_memberships(user_id)
        if not usable:
            logger.info("tenant_context_no_organization", user_id=user_id)
            raise NoOrganizationError(user_id)

        pointer_organization_id = await self._pointer(user_id)
        membership, org, source = _choose(usable, pointer_organization_id)

        organization_id = org.id
        organization_name = org.name
        role = await self._role_info(user_id, membership.role_id)
        permissions = await self.engine.compute_effective_permissions(user_id, role, organization_id)

        if pointer_organization_id != organization_id and self.self_heal:
            await self._repair_pointer(user_id, organization_id, pointer_organization_id)

        logger.debug(
            "tenant_context_resolved",
            user_id=user_id,
            organization_id=organization_id,
            role=role.slug,
            source=source,
        )
        return TenantContext(
            user_id=user_id,
            organization_id=organization_id,
            organization_name=organization_name,
            role=role,
            effective_permissions=permissions,
            is_super_admin=is_super_admin,
            inherited=False,
        )

    async def _repair_pointer(
        self,
        user_id: str,
        organization_id: str,
        previous_organization_id: Optional[str],
    ) -> None:
        # Savepoint only: the caller's transaction decides whether the repair is kept
        try:
            async with self.db.begin_nested():
                repaired = await repair_active_organization(
                    self.db, user_id, organization_id, previous_organization_id
                )
        except SQLAlchemyError:
            logger.warning(
                "active_organization_repair_failed",
                user_id=user_id,
                organization_id=organization_id,
                exc_info=True,
            )
            return

        if not repaired:
            logger.info("active_organization_repair_skipped", user_id=user_id, organization_id=organization_id)
            return

        logger.info(
            "active_organization_repaired",
            user_id=user_id,
            organization_id=organization_id,
            previous_organization_id=previous_organization_id,
        )

    async def _resolve_for_organization(self, user_id: str, organization_id: str) -> TenantContext:
        user = await get_user(self.db, user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        is_super_admin = _acts_as_super_admin(user)

        org = await get_organization(self.db, organization_id)
        if org is None:
            if is_super_admin:
                raise NotFoundError("Organization", organization_id)
            raise AccessDeniedError("You are not a member of this organization.")

        membership = await get_membership(self.db, user_id, org.id)
        role = await self._role_info(user_id, membership.role_id) if membership is not None else None
        permissions = await self.engine.compute_effective_permissions(user_id, role, org.id)

        inherited = membership is None and bool(permissions)
        if membership is None and not inherited and not is_super_admin:
            logger.info("tenant_context_denied", user_id=user_id, organization_id=organization_id)
            raise AccessDeniedError("You are not a member of this organization.")

        if not org.is_active:
            raise OrganizationInactiveError(org.id)

        return TenantContext(
            user_id=user_id,
            organization_id=org.id,
            organization_name=org.name,
            role=role,
            effective_permissions=permissions,
            is_super_admin=is_super_admin,
            inherited=inherited,
        )

    async def _list_user_organizations(self, user_id: str) -> list[OrganizationChoice]:
        user = await get_user(self.db, user_id)
        if user is None:
            raise NotFoundError("User", user_id)

        usable = await self._usable_memberships(user_id)
        current_id = None
        if usable:
            _, current, _ = _choose(usable, await self._pointer(user_id))
            current_id = current.id

        role_ids = {m.role_id for m, _ in usable}
        slugs: dict[str, str] = {}
        if role_ids:
            res = await self.db.execute(select(Role.id, Role.slug).where(Role.id.in_(role_ids)))
            slugs = {rid: slug for rid, slug in res.all()}

        choices = [
            OrganizationChoice(
                organization_id=org.id,
                name=org.name,
                code=org.code,
                type=org.type,
                role_slug=slugs.get(m.role_id),
                is_primary=bool(m.is_primary),
                is_member=True,
                is_current=org.id == current_id,
            )
            for m, org in usable
        ]

        if _acts_as_super_admin(user):
            member_ids = {c.organization_id for c in choices}
            for org in await list_organizations(self.db, active_only=True):
                if org.id in member_ids:
                    continue
                choices.append(
                    OrganizationChoice(
                        organization_id=org.id,
                        name=org.name,
                        code=org.code,
                        type=org.type,
                        role_slug=None,
                        is_primary=False,
                        is_member=False,
                        is_current=False,
                    )
                )

        return sorted(choices, key=lambda c: (not c.is_member, c.name.lower(), c.organization_id))
