# caseflow/crud/users.py
from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.core.exceptions import ConflictError
from caseflow.models.user import User


async def get_user(db: AsyncSession, user_id: str) -> Optional[User]:
    # Always re-read: the super admin flag is changed by bulk UPDATEs elsewhere
    return await db.get(User, user_id, populate_existing=True)


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    stmt = (
        select(User)
        .where(User.email == User.normalize_email(email))
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def create_user(db: AsyncSession, *, email: str, name: Optional[str] = None) -> User:
    """Provisioning helper; the auth collaborator normally creates users on first login."""
    email = User.normalize_email(email)
    if await get_user_by_email(db, email) is not None:
        raise ConflictError(f"A user with email {email!r} already exists.")

    user = User(email=email, name=User.normalize_name(name), is_active=True)
    db.add(user)
    await db.flush()
    return user


async def list_super_admin_users(db: AsyncSession) -> list[User]:
    stmt = select(User).where(User.is_super_admin.is_(True)).order_by(User.email)
    return list((await db.execute(stmt)).scalars().all())
