from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from caseflow.core.roles import RoleScope
from caseflow.core.security import create_access_token
from caseflow.crud.catalog import RoleDefinition, ensure_role
from caseflow.db.session import get_db

# Ensure Base + models are registered before create_all
from caseflow.db.base import Base
import caseflow.models  # noqa: F401
from caseflow.models.membership import Membership
from caseflow.models.organization import Organization
from caseflow.models.rbac import Role
from caseflow.models.user import User

BASE_TIME = datetime(2024, 1, 1, 9, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------
# Engine: one private SQLite database per test
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def engine(tmp_path):
    # A file (not :memory:) so the API and the test each get their own connection
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'caseflow.db'}",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture()
def sessionmaker(engine):
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


# ---------------------------------------------------------
# DB session for setup & assertions
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def db(sessionmaker):
    async with sessionmaker() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------
# Test data
# ---------------------------------------------------------
class Factory:
    """Writes rows directly, bypassing the crud rules, so tests can build any state."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self._tick = itertools.count(1)

    def next_time(self) -> datetime:
        # Strictly increasing created_at values keep "earliest membership" deterministic
        return BASE_TIME + timedelta(seconds=next(self._tick))

    async def user(
        self,
        email: str,
        *,
        name: Optional[str] = None,
        is_super_admin: bool = False,
        is_active: bool = True,
    ) -> User:
        user = User(
            email=email.strip().lower(),
            name=name,
            is_super_admin=is_super_admin,
            is_active=is_active,
        )
        self.db.add(user)
        await self.db.flush()
        return user

    async def organization(
        self,
        code: str,
        *,
        name: Optional[str] = None,
        parent: Optional[Organization] = None,
        is_active: bool = True,
        type: str = "court",
    ) -> Organization:
        org = Organization(
            name=name or f"Organization {code}",
            code=code.upper(),
            type=type,
            parent_id=parent.id if parent is not None else None,
            is_active=is_active,
        )
        self.db.add(org)
        await self.db.flush()
        return org

    async def role(
        self,
        slug: str,
        permissions: Iterable[str] = (),
        *,
        inherits: bool = False,
        scope: RoleScope = RoleScope.ORGANIZATION,
    ) -> Role:
        return await ensure_role(
            self.db,
            RoleDefinition(
                slug=slug,
                name=slug.replace("-", " ").title(),
                permissions=frozenset(permissions),
                scope=scope,
                inherits_to_descendants=inherits,
            ),
        )

    async def membership(
        self,
        user: User,
        org: Organization,
        role: Role,
        *,
        is_primary: bool = False,
    ) -> Membership:
        m = Membership(
            user_id=user.id,
            organization_id=org.id,
            role_id=role.id,
            is_primary=is_primary,
            created_at=self.next_time(),
        )
        self.db.add(m)
        await self.db.flush()
        return m


@pytest.fixture()
def factory(db) -> Factory:
    return Factory(db)


def auth_headers(user: User, organization_id: Optional[str] = None) -> dict[str, str]:
    headers = {"Authorization": f"Bearer {create_access_token(user.id, user.email)}"}
    if organization_id:
        headers["X-Organization-Id"] = organization_id
    return headers


@pytest.fixture()
def headers_for():
    return auth_headers


# ---------------------------------------------------------
# FastAPI app + dependency override
# ---------------------------------------------------------
@pytest.fixture()
def app(sessionmaker):
    from caseflow.main import app as fastapi_app

    async def _override_get_db():
        async with sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    fastapi_app.dependency_overrides[get_db] = _override_get_db
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


# ---------------------------------------------------------
# HTTP client
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
    ) as ac:
        yield ac
