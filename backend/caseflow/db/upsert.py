# caseflow/db/upsert.py
from __future__ import annotations

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def dialect_insert(db: AsyncSession, table):
    """
    Return an INSERT construct that supports ON CONFLICT for the session's backend.

    PostgreSQL in deployment, SQLite in tests; both expose
    `.on_conflict_do_update()` / `.on_conflict_do_nothing()` and `.excluded`.
    """
    name = db.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert(table)
    if name == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Atomic upsert is not supported on dialect {name!r}")
