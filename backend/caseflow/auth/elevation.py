"""
Super admin elevation at login.

After the authentication collaborator has verified an identity, the login
flow calls `run_post_login_hooks`. If the email is on the admin allow-list
the user's global `is_super_admin` flag is switched on with one conditional
UPDATE, so concurrent logins elevate (and audit) exactly once.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.core.security import Identity
from caseflow.crud.system_admins import ACTION_AUTO_ELEVATED, active_admin_emails, record_admin_action
from caseflow.db.base import utcnow
from caseflow.models.system_admin import SystemAdmin
from caseflow.models.user import User

logger = structlog.get_logger(__name__)

AUTO_ELEVATION_NOTE = "Elevated automatically at login (admin allow-list)"


@dataclass(frozen=True)
class AdminAllowList:
    emails: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def of(cls, emails: Iterable[str]) -> "AdminAllowList":
        return cls(frozenset(User.normalize_email(e) for e in emails if e and e.strip()))

    def __contains__(self, email: object) -> bool:
        return isinstance(email, str) and User.normalize_email(email) in self.emails

    def __len__(self) -> int:
        return len(self.emails)


async def load_admin_allow_list(db: AsyncSession) -> AdminAllowList:
    return AdminAllowList(await active_admin_emails(db))


@dataclass(frozen=True)
class ElevationResult:
    """
    Outcome of an elevation check.

    `elevated` is true when the user is a super admin after the call (newly or
    already). A failed check carries the error and is never elevated.
    """

    elevated: bool
    newly_elevated: bool = False
    error: Optional[Exception] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @classmethod
    def failure(cls, error: Exception) -> "ElevationResult":
        return cls(elevated=False, newly_elevated=False, error=error)


class SuperAdminElevationService:
    def __init__(self, db: AsyncSession, allow_list: AdminAllowList) -> None:
        self.db = db
        self.allow_list = allow_list

    async def check_and_elevate(self, email: str, user_id: str) -> ElevationResult:
        # Every error stops here as a failed result: login goes on, nobody is elevated.
        try:
            return await self._check_and_elevate(email, user_id)
        except Exception as exc:
            logger.error("super_admin_elevation_failed", user_id=user_id, exc_info=True)
            await self._rollback_quietly(user_id)
            return ElevationResult.failure(exc)

    async def _rollback_quietly(self, user_id: str) -> None:
        try:
            await self.db.rollback()
        except Exception:
            logger.warning("super_admin_elevation_rollback_failed", user_id=user_id, exc_info=True)

    async def _check_and_elevate(self, email: str, user_id: str) -> ElevationResult:
        email = User.normalize_email(email)
        now = utcnow()
        newly_elevated = False

        if email and email in self.allow_list:
            res = await self.db.execute(
                update(User)
                .where(User.id == user_id)
                .where(User.email == email)
                .where(User.is_super_admin.is_(False))
                .values(
                    is_super_admin=True,
                    super_admin_granted_at=now,
                    super_admin_granted_by=None,
                    super_admin_notes=AUTO_ELEVATION_NOTE,
                    last_login=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            newly_elevated = res.rowcount == 1

            if newly_elevated:
                await record_admin_action(
                    self.db,
                    action=ACTION_AUTO_ELEVATED,
                    entity_type="user",
                    entity_id=user_id,
                    description=f"{email} elevated to super admin at login",
                    details={"email": email, "source": "admin_allow_list"},
                )

            await self.db.execute(
                update(SystemAdmin)
                .where(SystemAdmin.email == email)
                .where(SystemAdmin.is_active.is_(True))
                .values(last_login=now, user_id=user_id)
                .execution_options(synchronize_session=False)
            )

        elevated = newly_elevated
        if not newly_elevated:
            # Already a super admin (or lost the race): observability timestamp only
            res = await self.db.execute(
                update(User)
                .where(User.id == user_id)
                .where(User.is_super_admin.is_(True))
                .values(last_login=now)
                .execution_options(synchronize_session=False)
            )
            elevated = res.rowcount == 1

        await self.db.commit()

        if newly_elevated:
            logger.info("super_admin_elevated", user_id=user_id, email=email)
        return ElevationResult(elevated=elevated, newly_elevated=newly_elevated)


async def run_post_login_hooks(db: AsyncSession, identity: Identity) -> ElevationResult:
    """
    Called once per successful login. Never raises: the error branch of the
    elevation result is logged and dropped, the login carries on.
    """
    try:
        allow_list = await load_admin_allow_list(db)
    except Exception as exc:
        # No allow-list, no elevation
        logger.error("admin_allow_list_unavailable", user_id=identity.user_id, exc_info=True)
        try:
            await db.rollback()
        except Exception:
            logger.warning("admin_allow_list_rollback_failed", user_id=identity.user_id, exc_info=True)
        return ElevationResult.failure(exc)

    result = await SuperAdminElevationService(db, allow_list).check_and_elevate(
        identity.email, identity.user_id
    )
    if result.failed:
        logger.warning("post_login_hook_error_discarded", user_id=identity.user_id)
    return result
