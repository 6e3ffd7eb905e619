"""Administer the super admin allow-list and the permission catalog.

The allow-list (``system_admins`` table) decides who is elevated to super
admin at login. Every change made here is written to the system admin audit
log with no actor (the operator is the machine owner).

Usage:

    caseflow-admins list [--all]
    caseflow-admins add admin@example.org --name "Jane Doe" --notes "IT on-call"
    caseflow-admins remove admin@example.org --reason "left the team"
    caseflow-admins audit --limit 20
    caseflow-admins bootstrap      # adds BOOTSTRAP_SUPER_ADMIN_EMAILS
    caseflow-admins seed-catalog   # default roles and permission codes

Environment:
- Uses DATABASE_URL_ASYNC via caseflow.core.config (same as the API)
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Callable, Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from caseflow.auth.admins import list_super_admins, revoke_super_admin
from caseflow.auth.permissions import seed_default_catalog
from caseflow.core.config import settings
from caseflow.core.exceptions import CaseflowError
from caseflow.core.logging import setup_logging
from caseflow.crud.system_admins import (
    add_allow_list_entry,
    deactivate_allow_list_entry,
    get_allow_list_entry,
    list_allow_list,
    list_audit_log,
)
from caseflow.crud.users import get_user_by_email
from caseflow.db.session import AsyncSessionLocal, engine

logger = structlog.get_logger("caseflow.admins")


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="caseflow-admins",
        description="Manage the super admin allow-list and the permission catalog.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_list = sub.add_parser("list", help="Show allow-list entries and current super admins")
    p_list.add_argument("--all", action="store_true", help="Include deactivated allow-list entries")

    p_add = sub.add_parser("add", help="Add an email to the allow-list")
    p_add.add_argument("email")
    p_add.add_argument("--name", default=None)
    p_add.add_argument("--notes", default=None)

    p_remove = sub.add_parser(
        "remove",
        help="Deactivate an allow-list entry and revoke super admin from the matching user",
    )
    p_remove.add_argument("email")
    p_remove.add_argument("--reason", default=None)

    p_audit = sub.add_parser("audit", help="Show recent system admin audit entries")
    p_audit.add_argument("--limit", type=int, default=20)
    p_audit.add_argument("--action", default=None)

    sub.add_parser("bootstrap", help="Add every BOOTSTRAP_SUPER_ADMIN_EMAILS address to the allow-list")
    sub.add_parser("seed-catalog", help="Install or refresh the default roles and permission codes")

    return parser.parse_args(argv)


async def _cmd_list(db: AsyncSession, args: argparse.Namespace, out) -> int:
    entries = await list_allow_list(db, include_inactive=args.all)
    print(f"Allow-list ({len(entries)}):", file=out)
    for e in entries:
        state = "active" if e.is_active else "inactive"
        last = e.last_login.isoformat() if e.last_login else "never"
        print(f"  {e.email:<40} {state:<9} last login: {last}", file=out)

    admins = await list_super_admins(db)
    print(f"Super admins ({len(admins)}):", file=out)
    for u in admins:
        granted = u.super_admin_granted_at.isoformat() if u.super_admin_granted_at else "-"
        print(f"  {u.email:<40} granted: {granted}", file=out)
    return 0


async def _cmd_add(db: AsyncSession, args: argparse.Namespace, out) -> int:
    entry = await add_allow_list_entry(db, email=args.email, name=args.name, notes=args.notes)
    await db.commit()
    logger.info("allow_list_entry_added", email=entry.email)
    print(f"Added {entry.email}. Elevation happens at their next login.", file=out)
    return 0


async def _cmd_remove(db: AsyncSession, args: argparse.Namespace, out) -> int:
    user = await get_user_by_email(db, args.email)
    if user is not None and user.is_super_admin:
        # Also deactivates the allow-list entry
        await revoke_super_admin(db, user_id=user.id, reason=args.reason)
        print(f"Revoked super admin from {user.email}.", file=out)
        return 0

    await deactivate_allow_list_entry(db, email=args.email, reason=args.reason)
    await db.commit()
    print(f"Removed {args.email.strip().lower()} from the allow-list.", file=out)
    return 0


async def _cmd_audit(db: AsyncSession, args: argparse.Namespace, out) -> int:
    for entry in await list_audit_log(db, limit=args.limit, action=args.action):
        actor = entry.actor_user_id or "system"
        print(f"{entry.created_at.isoformat()}  {entry.action:<28} {actor:<36}  {entry.description}", file=out)
    return 0


async def _cmd_bootstrap(db: AsyncSession, args: argparse.Namespace, out) -> int:
    emails = settings.bootstrap_super_admin_emails
    if not emails:
        print("BOOTSTRAP_SUPER_ADMIN_EMAILS is empty; nothing to do.", file=out)
        return 0

    added = 0
    for email in emails:
        # Deactivated entries stay deactivated: a revoked admin is not restored by a redeploy
        if await get_allow_list_entry(db, email) is not None:
            continue
        await add_allow_list_entry(db, email=email, notes="bootstrap")
        added += 1

    await db.commit()
    logger.info("allow_list_bootstrapped", added=added, configured=len(emails))
    print(f"Bootstrap complete: {added} added, {len(emails) - added} already present.", file=out)
    return 0


async def _cmd_seed_catalog(db: AsyncSession, args: argparse.Namespace, out) -> int:
    roles = await seed_default_catalog(db)
    await db.commit()
    print(f"Catalog seeded: {', '.join(r.slug for r in roles)}", file=out)
    return 0


COMMANDS = {
    "list": _cmd_list,
    "add": _cmd_add,
    "remove": _cmd_remove,
    "audit": _cmd_audit,
    "bootstrap": _cmd_bootstrap,
    "seed-catalog": _cmd_seed_catalog,
}


async def run_command(
    args: argparse.Namespace,
    session_factory: Callable[[], AsyncSession],
    out=None,
) -> int:
    out = out or sys.stdout
    async with session_factory() as db:
        try:
            return await COMMANDS[args.command](db, args, out)
        except (CaseflowError, ValueError) as exc:
            await db.rollback()
            message = exc.message if isinstance(exc, CaseflowError) else str(exc)
            print(f"error: {message}", file=sys.stderr)
            return 1


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = _parse_args(argv)
    setup_logging(settings.LOG_LEVEL, json_output=settings.LOG_JSON)

    async def _run() -> int:
        try:
            return await run_command(args, AsyncSessionLocal)
        finally:
            await engine.dispose()

    sys.exit(asyncio.run(_run()))


if __name__ == "__main__":
    main()
