# tests/test_tenant_context.py
from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from caseflow.auth import tenant_context as tenant_context_module
from caseflow.auth.switcher import switch_active_organization
from caseflow.auth.tenant_context import TenantContextResolver
from caseflow.core.exceptions import (
    AccessDeniedError,
    InternalResolutionError,
    NoOrganizationError,
    NotFoundError,
    OrganizationInactiveError,
)
from caseflow.models.active_organization import ActiveOrganizationPointer


async def pointer_of(db, user_id):
    stmt = select(ActiveOrganizationPointer.organization_id).where(
        ActiveOrganizationPointer.user_id == user_id
    )
    return (await db.execute(stmt)).scalar_one_or_none()


@pytest.mark.asyncio
async def test_primary_then_switch_then_denied_switch_keeps_selection(db, factory):
    user = await factory.user("u@example.com")
    org_a = await factory.organization("A")
    org_b = await factory.organization("B")
    org_c = await factory.organization("C")
    clerk = await factory.role("clerk", ["cases:read"])
    await factory.membership(user, org_a, clerk, is_primary=True)
    await factory.membership(user, org_b, clerk)

    resolver = TenantContextResolver(db)

    assert (await resolver.resolve(user.id)).organization_id == org_a.id

    assert await switch_active_organization(db, user.id, org_b.id) == org_b.id
    assert (await resolver.resolve(user.id)).organization_id == org_b.id

    with pytest.raises(AccessDeniedError):
        await switch_active_organization(db, user.id, org_c.id)

    assert (await resolver.resolve(user.id)).organization_id == org_b.id
    assert await pointer_of(db, user.id) == org_b.id


@pytest.mark.asyncio
async def test_earliest_membership_wins_without_primary_or_pointer(db, factory):
    user = await factory.user("early@example.com")
    clerk = await factory.role("clerk", ["cases:read"])
    first = await factory.organization("FIRST")
    second = await factory.organization("SECOND")
    await factory.membership(user, first, clerk)
    await factory.membership(user, second, clerk)

    ctx = await TenantContextResolver(db).resolve(user.id)

    assert ctx.organization_id == first.id
    assert ctx.role is not None and ctx.role.slug == "clerk"
    assert ctx.effective_permissions == frozenset({"cases:read"})
    assert ctx.inherited is False


@pytest.mark.asyncio
async def test_inactive_organizations_are_skipped_at_every_step(db, factory):
    user = await factory.user("skip@example.com")
    clerk = await factory.role("clerk", ["cases:read"])
    closed = await factory.organization("CLOSED", is_active=False)
    open_org = await factory.organization("OPEN")
    await factory.membership(user, closed, clerk, is_primary=True)
    await factory.membership(user, open_org, clerk)
    db.add(ActiveOrganizationPointer(user_id=user.id, organization_id=closed.id))
    await db.flush()

    ctx = await TenantContextResolver(db).resolve(user.id)

    assert ctx.organization_id == open_org.id
    # the stale pointer was repaired
    assert await pointer_of(db, user.id) == open_org.id


@pytest.mark.asyncio
async def test_no_memberships_is_onboarding_incomplete(db, factory):
    user = await factory.user("new@example.com")

    with pytest.raises(NoOrganizationError) as exc_info:
        await TenantContextResolver(db).resolve(user.id)

    assert exc_info.value.code == "onboarding_incomplete"


@pytest.mark.asyncio
async def test_only_inactive_memberships_is_onboarding_incomplete(db, factory):
    user = await factory.user("dormant@example.com")
    clerk = await factory.role("clerk")
    org = await factory.organization("GONE", is_active=False)
    await factory.membership(user, org, clerk, is_primary=True)

    with pytest.raises(NoOrganizationError):
        await TenantContextResolver(db).resolve(user.id)


@pytest.mark.asyncio
async def test_unknown_user_is_not_found(db):
    with pytest.raises(NotFoundError):
        await TenantContextResolver(db).resolve("00000000-0000-0000-0000-000000000000")


@pytest.mark.asyncio
async def test_resolved_organization_is_always_an_active_membership(db, factory):
    clerk = await factory.role("clerk", ["cases:read"])
    orgs = [await factory.organization(f"O{i}", is_active=(i % 2 == 0)) for i in range(6)]

    for n in range(1, 6):
        user = await factory.user(f"user{n}@example.com")
        for i, org in enumerate(orgs[:n]):
            await factory.membership(user, org, clerk, is_primary=(i == n - 1))

        member_ids = {o.id for o in orgs[:n]}
        active_ids = {o.id for o in orgs if o.is_active}
        ctx = await TenantContextResolver(db).resolve(user.id)

        assert ctx.organization_id in member_ids
        assert ctx.organization_id in active_ids


@pytest.mark.asyncio
async def test_pointer_not_written_when_self_heal_disabled(db, factory):
    user = await factory.user("replica@example.com")
    clerk = await factory.role("clerk")
    org = await factory.organization("RO")
    await factory.membership(user, org, clerk, is_primary=True)

    ctx = await TenantContextResolver(db, self_heal=False).resolve(user.id)

    assert ctx.organization_id == org.id
    assert await pointer_of(db, user.id) is None


@pytest.mark.asyncio
async def test_failed_pointer_repair_does_not_fail_resolution(db, factory, monkeypatch):
    user = await factory.user("flaky@example.com")
    clerk = await factory.role("clerk", ["cases:read"])
    org = await factory.organization("FLAKY")
    await factory.membership(user, org, clerk, is_primary=True)
    user_id, org_id = user.id, org.id
    await db.commit()

    async def _broken_repair(*args, **kwargs):
        raise OperationalError("INSERT", {}, Exception("database is read-only"))

    monkeypatch.setattr(tenant_context_module, "repair_active_organization", _broken_repair)

    ctx = await TenantContextResolver(db).resolve(user_id)

    assert ctx.organization_id == org_id
    assert ctx.effective_permissions == frozenset({"cases:read"})
    assert await pointer_of(db, user_id) is None


@pytest.mark.asyncio
async def test_membership_with_missing_role_is_internal_error(db, factory):
    user = await factory.user("broken@example.com")
    org = await factory.organization("BROKEN")
    clerk = await factory.role("clerk")
    m = await factory.membership(user, org, clerk, is_primary=True)
    m.role_id = "role-that-does-not-exist"
    await db.flush()

    with pytest.raises(InternalResolutionError):
        await TenantContextResolver(db).resolve(user.id)


@pytest.mark.asyncio
async def test_resolve_for_organization_direct_membership(db, factory):
    user = await factory.user("direct@example.com")
    judge = await factory.role("judge", ["cases:read", "hearings:schedule"])
    home = await factory.organization("HOME")
    other = await factory.organization("OTHER")
    await factory.membership(user, home, judge, is_primary=True)
    await factory.membership(user, other, judge)

    ctx = await TenantContextResolver(db).resolve_for_organization(user.id, other.id)

    assert ctx.organization_id == other.id
    assert ctx.inherited is False
    assert "hearings:schedule" in ctx.effective_permissions


@pytest.mark.asyncio
async def test_resolve_for_organization_inherited_only(db, factory):
    user = await factory.user("regional@example.com")
    supervisor = await factory.role("regional-supervisor", ["reports:view"], inherits=True)
    province = await factory.organization("PROV", type="province")
    court = await factory.organization("COURT", parent=province)
    await factory.membership(user, province, supervisor, is_primary=True)

    ctx = await TenantContextResolver(db).resolve_for_organization(user.id, court.id)

    assert ctx.organization_id == court.id
    assert ctx.role is None
    assert ctx.inherited is True
    assert ctx.effective_permissions == frozenset({"reports:view"})


@pytest.mark.asyncio
async def test_resolve_for_organization_denies_non_members_without_leaking_existence(db, factory):
    user = await factory.user("outsider@example.com")
    clerk = await factory.role("clerk", ["cases:read"])
    home = await factory.organization("HOME")
    stranger = await factory.organization("STRANGER")
    await factory.membership(user, home, clerk, is_primary=True)
    resolver = TenantContextResolver(db)

    with pytest.raises(AccessDeniedError):
        await resolver.resolve_for_organization(user.id, stranger.id)

    with pytest.raises(AccessDeniedError):
        await resolver.resolve_for_organization(user.id, "no-such-organization")


@pytest.mark.asyncio
async def test_resolve_for_organization_inactive_target(db, factory):
    user = await factory.user("inactive@example.com")
    clerk = await factory.role("clerk", ["cases:read"])
    org = await factory.organization("SHUT", is_active=False)
    await factory.membership(user, org, clerk, is_primary=True)

    with pytest.raises(OrganizationInactiveError):
        await TenantContextResolver(db).resolve_for_organization(user.id, org.id)


@pytest.mark.asyncio
async def test_list_user_organizations_marks_current_and_primary(db, factory):
    user = await factory.user("lister@example.com")
    clerk = await factory.role("clerk")
    judge = await factory.role("judge")
    alpha = await factory.organization("ALPHA", name="Alpha Court")
    beta = await factory.organization("BETA", name="Beta Court")
    closed = await factory.organization("CLOSED", name="Closed Court", is_active=False)
    await factory.membership(user, alpha, clerk, is_primary=True)
    await factory.membership(user, beta, judge)
    await factory.membership(user, closed, judge)
    db.add(ActiveOrganizationPointer(user_id=user.id, organization_id=beta.id))
    await db.flush()

    choices = await TenantContextResolver(db).list_user_organizations(user.id)

    assert [c.code for c in choices] == ["ALPHA", "BETA"]
    by_code = {c.code: c for c in choices}
    assert by_code["ALPHA"].is_primary and not by_code["ALPHA"].is_current
    assert by_code["BETA"].is_current and by_code["BETA"].role_slug == "judge"
    assert all(c.is_member for c in choices)


@pytest.mark.asyncio
async def test_super_admin_lists_every_active_organization(db, factory):
    admin = await factory.user("root@example.com", is_super_admin=True)
    await factory.organization("ONE", name="One")
    await factory.organization("TWO", name="Two")
    await factory.organization("OFF", name="Off", is_active=False)

    choices = await TenantContextResolver(db).list_user_organizations(admin.id)

    assert [c.code for c in choices] == ["ONE", "TWO"]
    assert not any(c.is_member for c in choices)


class SwitchAfterPointerRead(TenantContextResolver):
    """Lets another session commit a switch between the pointer read and the repair."""

    def __init__(self, db, *, on_pointer_read):
        super().__init__(db)
        self.on_pointer_read = on_pointer_read

    async def _pointer(self, user_id):
        value = await super()._pointer(user_id)
        await self.on_pointer_read()
        return value


async def committed_two_court_user(db, factory, *, stale_pointer=False):
    user = await factory.user("racer@example.com")
    clerk = await factory.role("clerk", ["cases:read"])
    home = await factory.organization("HOME")
    away = await factory.organization("AWAY")
    await factory.membership(user, home, clerk, is_primary=True)
    await factory.membership(user, away, clerk)
    if stale_pointer:
        stale = await factory.organization("STALE", is_active=False)
        await factory.membership(user, stale, clerk)
        db.add(ActiveOrganizationPointer(user_id=user.id, organization_id=stale.id))
    ids = (user.id, home.id, away.id)
    await db.commit()
    return ids


@pytest.mark.asyncio
async def test_repair_never_overwrites_a_switch_committed_after_the_read(sessionmaker, db, factory):
    user_id, home_id, away_id = await committed_two_court_user(db, factory)

    async def switch_elsewhere():
        async with sessionmaker() as other:
            await switch_active_organization(other, user_id, away_id)

    async with sessionmaker() as session:
        ctx = await SwitchAfterPointerRead(session, on_pointer_read=switch_elsewhere).resolve(user_id)
        await session.commit()

    # the request that read first answers with what it saw
    assert ctx.organization_id == home_id
    async with sessionmaker() as fresh:
        assert await pointer_of(fresh, user_id) == away_id
        assert (await TenantContextResolver(fresh).resolve(user_id)).organization_id == away_id


@pytest.mark.asyncio
async def test_stale_pointer_repair_never_overwrites_a_later_switch(sessionmaker, db, factory):
    user_id, home_id, away_id = await committed_two_court_user(db, factory, stale_pointer=True)

    async def switch_elsewhere():
        async with sessionmaker() as other:
            await switch_active_organization(other, user_id, away_id)

    async with sessionmaker() as session:
        ctx = await SwitchAfterPointerRead(session, on_pointer_read=switch_elsewhere).resolve(user_id)
        await session.commit()

    assert ctx.organization_id == home_id
    async with sessionmaker() as fresh:
        assert await pointer_of(fresh, user_id) == away_id

