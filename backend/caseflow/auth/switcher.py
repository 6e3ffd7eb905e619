from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.core.exceptions import AccessDeniedError, InternalResolutionError, OrganizationInactiveError
from caseflow.crud.memberships import get_membership
from caseflow.crud.organizations import get_organization
from caseflow.db.base import utcnow
from caseflow.db.upsert import dialect_insert
from caseflow.models.active_organization import ActiveOrganizationPointer

logger = structlog.get_logger(__name__)


async def upsert_active_organization(db: AsyncSession, user_id: str, organization_id: str) -> None:
    """
    INSERT ... ON CONFLICT (user_id) DO UPDATE.

    One statement, no read-modify-write: concurrent writers for the same user
    end with whichever ran last. Does not commit.
    """
    now = utcnow()
    stmt = dialect_insert(db, ActiveOrganizationPointer).values(
        user_id=user_id,
        organization_id=organization_id,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[ActiveOrganizationPointer.user_id],
        set_={
            "organization_id": stmt.excluded.organization_id,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    await db.execute(stmt)


async def repair_active_organization(
    db: AsyncSession,
    user_id: str,
    organization_id: str,
    expected_organization_id: Optional[str],
) -> bool:
    """
    Point the user at `organization_id`, but only if the pointer still holds
    what the caller read (`expected_organization_id`, None for "no row").

    A switch committed since that read wins: the insert becomes a no-op on
    conflict and the update matches no row. Returns True when a row changed.
    Does not commit.
    """
    now = utcnow()
    if expected_organization_id is None:
        stmt = (
            dialect_insert(db, ActiveOrganizationPointer)
            .values(user_id=user_id, organization_id=organization_id, updated_at=now)
            .on_conflict_do_nothing(index_elements=[ActiveOrganizationPointer.user_id])
        )
    else:
        stmt = (
            update(ActiveOrganizationPointer)
            .where(ActiveOrganizationPointer.user_id == user_id)
            .where(ActiveOrganizationPointer.organization_id == expected_organization_id)
            .values(organization_id=organization_id, updated_at=now)
            .execution_options(synchronize_session=False)
        )
    res = await db.execute(stmt)
    return res.rowcount == 1


async def switch_active_organization(db: AsyncSession, user_id: str, organization_id: str) -> str:
    """
    Make `organization_id` the user's active organization.

    Non-members are refused with AccessDeniedError whether or not the
    organization exists, so the answer never reveals which ids are real.
    """
    try:
        membership = await get_membership(db, user_id, organization_id)
        if membership is None:
            logger.info("organization_switch_denied", user_id=user_id, organization_id=organization_id)
            raise AccessDeniedError("You are not a member of this organization.")

        org = await get_organization(db, organization_id)
        if org is None or not org.is_active:
            logger.info("organization_switch_inactive", user_id=user_id, organization_id=organization_id)
            raise OrganizationInactiveError(organization_id)

        await upsert_active_organization(db, user_id, organization_id)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise InternalResolutionError(
            "Active organization could not be saved",
            user_id=user_id,
            organization_id=organization_id,
        ) from exc

    logger.info("organization_switched", user_id=user_id, organization_id=organization_id)
    return organization_id
