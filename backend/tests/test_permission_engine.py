# tests/test_permission_engine.py
from __future__ import annotations

import pytest

from caseflow.auth.permissions import PERM, PermissionEngine, seed_default_catalog
from caseflow.auth.tenant_context import TenantContext, TenantContextResolver
from caseflow.core.exceptions import InternalResolutionError
from caseflow.crud.catalog import get_role_by_slug


def make_context(permissions, *, is_super_admin=False) -> TenantContext:
    return TenantContext(
        user_id="u",
        organization_id="o",
        organization_name="Org",
        role=None,
        effective_permissions=frozenset(permissions),
        is_super_admin=is_super_admin,
    )


async def context_for(db, user_id, organization_id):
    return await TenantContextResolver(db).resolve_for_organization(user_id, organization_id)


@pytest.mark.asyncio
async def test_inheriting_parent_role_reaches_child_but_unrelated_child_role_does_not(db, factory):
    r1 = await factory.role("r1", ["reports:view"], inherits=True)
    unrelated = await factory.role("unrelated", ["cases:read"])
    parent = await factory.organization("P", type="province")
    child = await factory.organization("C", parent=parent)

    supervisor = await factory.user("supervisor@example.com")
    await factory.membership(supervisor, parent, r1, is_primary=True)

    local = await factory.user("local@example.com")
    await factory.membership(local, child, unrelated, is_primary=True)

    assert PermissionEngine.has(await context_for(db, supervisor.id, child.id), "reports:view") is True
    assert PermissionEngine.has(await context_for(db, local.id, child.id), "reports:view") is False


@pytest.mark.asyncio
async def test_roles_without_the_flag_never_leak_into_descendants(db, factory):
    judge = await factory.role("judge", ["cases:read", "cases:close"])
    viewer = await factory.role("viewer", ["documents:read"])
    parent = await factory.organization("P")
    child = await factory.organization("C", parent=parent)
    user = await factory.user("judge@example.com")
    await factory.membership(user, parent, judge, is_primary=True)
    await factory.membership(user, child, viewer)

    ctx = await context_for(db, user.id, child.id)

    assert ctx.effective_permissions == frozenset({"documents:read"})
    assert not PermissionEngine.has(ctx, "cases:close")


@pytest.mark.asyncio
async def test_inheritance_walks_the_full_ancestor_chain(db, factory):
    supervisor = await factory.role("regional-supervisor", ["reports:view", "reports:export"], inherits=True)
    clerk = await factory.role("clerk", ["cases:create"])
    country = await factory.organization("KE", type="country")
    province = await factory.organization("KE-NBI", parent=country, type="province")
    court = await factory.organization("KE-NBI-01", parent=province)
    user = await factory.user("national@example.com")
    await factory.membership(user, country, supervisor, is_primary=True)
    await factory.membership(user, court, clerk)

    ctx = await context_for(db, user.id, court.id)

    assert ctx.effective_permissions == frozenset({"cases:create", "reports:view", "reports:export"})
    assert ctx.inherited is False


@pytest.mark.asyncio
async def test_inactive_ancestor_grants_nothing(db, factory):
    supervisor = await factory.role("regional-supervisor", ["reports:view"], inherits=True)
    clerk = await factory.role("clerk", ["cases:read"])
    parent = await factory.organization("P", is_active=False)
    child = await factory.organization("C", parent=parent)
    user = await factory.user("stale@example.com")
    await factory.membership(user, parent, supervisor)
    await factory.membership(user, child, clerk, is_primary=True)

    ctx = await TenantContextResolver(db).resolve(user.id)

    assert ctx.organization_id == child.id
    assert ctx.effective_permissions == frozenset({"cases:read"})


@pytest.mark.asyncio
async def test_many_memberships_do_not_widen_a_single_context(db, factory):
    admin = await factory.role("admin", ["users:manage", "cases:read"])
    viewer = await factory.role("viewer", ["cases:read"])
    user = await factory.user("multi@example.com")
    orgs = [await factory.organization(f"M{i}") for i in range(4)]
    for i, org in enumerate(orgs[:-1]):
        await factory.membership(user, org, admin, is_primary=(i == 0))
    await factory.membership(user, orgs[-1], viewer)

    ctx = await context_for(db, user.id, orgs[-1].id)

    assert not PermissionEngine.has(ctx, "users:manage")
    assert PermissionEngine.has(ctx, "cases:read")


def test_has_is_plain_set_membership():
    ctx = make_context({"cases:read", "documents:read"})

    assert PermissionEngine.has(ctx, "cases:read")
    assert not PermissionEngine.has(ctx, "cases:*")
    assert not PermissionEngine.has(ctx, "cases:update")


def test_super_admin_context_short_circuits():
    ctx = make_context(set(), is_super_admin=True)

    assert PermissionEngine.has(ctx, "anything:at-all")


def test_has_any_and_has_all():
    ctx = make_context({"cases:read", "documents:read"})

    assert PermissionEngine.has_any(ctx, ["cases:close", "documents:read"])
    assert not PermissionEngine.has_any(ctx, ["cases:close"])
    assert PermissionEngine.has_all(ctx, ["cases:read", "documents:read"])
    assert not PermissionEngine.has_all(ctx, ["cases:read", "cases:close"])
    # nothing required is not the same as everything granted
    assert not PermissionEngine.has_all(ctx, [])


@pytest.mark.asyncio
async def test_role_permissions_for_missing_role_is_internal_error(db):
    with pytest.raises(InternalResolutionError):
        await PermissionEngine(db).role_permissions("missing-role-id")


@pytest.mark.asyncio
async def test_check_is_fail_closed(db, factory):
    clerk = await factory.role("clerk", ["cases:read"])
    org = await factory.organization("CHK")
    other = await factory.organization("OTHER")
    user = await factory.user("check@example.com")
    await factory.membership(user, org, clerk, is_primary=True)
    engine = PermissionEngine(db)

    assert await engine.check(user.id, "cases:read") is True
    assert await engine.check(user.id, "cases:close") is False
    assert await engine.check(user.id, "cases:read", other.id) is False
    assert await engine.check("unknown-user", "cases:read") is False


@pytest.mark.asyncio
async def test_check_returns_false_when_role_row_is_missing(db, factory):
    clerk = await factory.role("clerk", ["cases:read"])
    org = await factory.organization("ORPHAN")
    user = await factory.user("orphan@example.com")
    m = await factory.membership(user, org, clerk, is_primary=True)
    m.role_id = "deleted-role"
    await db.flush()

    assert await PermissionEngine(db).check(user.id, "cases:read") is False


@pytest.mark.asyncio
async def test_hierarchy_cycle_is_internal_error(db, factory):
    supervisor = await factory.role("regional-supervisor", ["reports:view"], inherits=True)
    a = await factory.organization("CYA")
    b = await factory.organization("CYB", parent=a)
    # Only possible by editing the table directly
    a.parent_id = b.id
    await db.flush()
    user = await factory.user("loop@example.com")
    await factory.membership(user, a, supervisor, is_primary=True)

    with pytest.raises(InternalResolutionError):
        await TenantContextResolver(db).resolve(user.id)


@pytest.mark.asyncio
async def test_default_catalog(db):
    await seed_default_catalog(db)
    engine = PermissionEngine(db)

    viewer = await get_role_by_slug(db, "viewer")
    supervisor = await get_role_by_slug(db, "regional-supervisor")
    super_admin = await get_role_by_slug(db, "super-admin")

    viewer_perms = await engine.role_permissions(viewer.id)
    assert PERM.CASES_READ in viewer_perms
    assert PERM.USERS_MANAGE not in viewer_perms
    assert supervisor.inherits_to_descendants is True
    assert super_admin.organization_scope == "global"
