# caseflow/crud/catalog.py
"""
Permission catalog: roles, permission codes and the RolePermission join.

Read on every request by the permission engine; written by seeding and by
the super admin role endpoints. Grant changes apply from the next request.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.core.exceptions import ConflictError, NotFoundError
from caseflow.core.roles import RoleScope
from caseflow.models.rbac import Permission, Role, RolePermission


@dataclass(frozen=True)
class RoleDefinition:
    slug: str
    name: str
    permissions: FrozenSet[str] = field(default_factory=frozenset)
    scope: RoleScope = RoleScope.ORGANIZATION
    inherits_to_descendants: bool = False
    description: Optional[str] = None


async def get_role(db: AsyncSession, role_id: str) -> Optional[Role]:
    return await db.get(Role, role_id)


async def get_role_by_slug(db: AsyncSession, slug: str) -> Optional[Role]:
    stmt = select(Role).where(Role.slug == (slug or "").strip().lower())
    return (await db.execute(stmt)).scalar_one_or_none()


async def list_roles(db: AsyncSession) -> list[Role]:
    return list((await db.execute(select(Role).order_by(Role.slug))).scalars().all())


async def permission_codes_for_roles(db: AsyncSession, role_ids: Iterable[str]) -> FrozenSet[str]:
    """Union of permission codes granted to any of `role_ids`."""
    ids = list(dict.fromkeys(role_ids))
    if not ids:
        return frozenset()
    stmt = (
        select(Permission.code)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .where(RolePermission.role_id.in_(ids))
    )
    return frozenset((await db.execute(stmt)).scalars().all())


async def ensure_permission(db: AsyncSession, code: str, description: Optional[str] = None) -> Permission:
    code = code.strip()
    stmt = select(Permission).where(Permission.code == code)
    perm = (await db.execute(stmt)).scalar_one_or_none()
    if perm is None:
        perm = Permission(code=code, description=description)
        db.add(perm)
        await db.flush()
    return perm


async def ensure_role(db: AsyncSession, definition: RoleDefinition) -> Role:
    """
    Create or update a role so its grants match `definition` exactly.
    Idempotent: re-running leaves the catalog unchanged.
    """
    role = await get_role_by_slug(db, definition.slug)
    if role is None:
        role = Role(slug=definition.slug.strip().lower())
        db.add(role)

    role.name = definition.name
    role.description = definition.description
    role.organization_scope = RoleScope(definition.scope).value
    role.inherits_to_descendants = definition.inherits_to_descendants
    await db.flush()

    wanted = {}
    for code in sorted(definition.permissions):
        perm = await ensure_permission(db, code)
        wanted[perm.id] = perm

    stmt = select(RolePermission).where(RolePermission.role_id == role.id)
    existing = {rp.permission_id: rp for rp in (await db.execute(stmt)).scalars().all()}

    for permission_id, rp in existing.items():
        if permission_id not in wanted:
            await db.delete(rp)
    for permission_id in wanted:
        if permission_id not in existing:
            db.add(RolePermission(role_id=role.id, permission_id=permission_id))

    await db.flush()
    return role


async def seed_catalog(
    db: AsyncSession,
    *,
    permissions: Mapping[str, str],
    roles: Iterable[RoleDefinition],
) -> list[Role]:
    for code, description in permissions.items():
        await ensure_permission(db, code, description)
    return [await ensure_role(db, definition) for definition in roles]


# -----------------------------
# Role administration
# -----------------------------
async def list_permissions(db: AsyncSession) -> list[Permission]:
    return list((await db.execute(select(Permission).order_by(Permission.code))).scalars().all())


async def role_permission_codes(db: AsyncSession, role_id: str) -> list[str]:
    return sorted(await permission_codes_for_roles(db, [role_id]))


async def _known_codes(db: AsyncSession, codes: Iterable[str]) -> FrozenSet[str]:
    # Administrators pick from the catalog; unlike seeding, nothing is auto-created
    wanted = {c.strip() for c in codes if c and c.strip()}
    if not wanted:
        return frozenset()
    res = await db.execute(select(Permission.code).where(Permission.code.in_(wanted)))
    missing = sorted(wanted - set(res.scalars().all()))
    if missing:
        raise NotFoundError("Permission", missing[0], f"Unknown permission codes: {', '.join(missing)}")
    return frozenset(wanted)


async def create_role(
    db: AsyncSession,
    *,
    slug: str,
    name: str,
    permissions: Iterable[str] = (),
    inherits_to_descendants: bool = False,
    description: Optional[str] = None,
) -> Role:
    """Organization-scoped roles only; global roles come from seeding."""
    slug = slug.strip().lower()
    if await get_role_by_slug(db, slug) is not None:
        raise ConflictError(f"Role {slug!r} already exists.")

    return await ensure_role(
        db,
        RoleDefinition(
            slug=slug,
            name=name.strip(),
            permissions=await _known_codes(db, permissions),
            scope=RoleScope.ORGANIZATION,
            inherits_to_descendants=inherits_to_descendants,
            description=description,
        ),
    )


async def update_role(
    db: AsyncSession,
    slug: str,
    *,
    name: Optional[str] = None,
    description: Optional[str] = None,
    permissions: Optional[Iterable[str]] = None,
    inherits_to_descendants: Optional[bool] = None,
) -> Role:
    """
    Change a role in place. `permissions`, when given, replaces the grants
    exactly; every membership holding the role sees the new set on its next
    resolution.
    """
    role = await get_role_by_slug(db, slug)
    if role is None:
        raise NotFoundError("Role", slug)
    if role.organization_scope == RoleScope.GLOBAL.value:
        raise ConflictError(f"Role {role.slug!r} is global and cannot be edited.")

    grants = (
        await _known_codes(db, permissions)
        if permissions is not None
        else frozenset(await role_permission_codes(db, role.id))
    )
    return await ensure_role(
        db,
        RoleDefinition(
            slug=role.slug,
            name=name.strip() if name is not None else role.name,
            permissions=grants,
            scope=RoleScope.ORGANIZATION,
            inherits_to_descendants=(
                role.inherits_to_descendants if inherits_to_descendants is None else inherits_to_descendants
            ),
            description=description if description is not None else role.description,
        ),
    )
