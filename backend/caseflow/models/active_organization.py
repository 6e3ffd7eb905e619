from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from caseflow.db.base import Base, utcnow


class ActiveOrganizationPointer(Base):
    """
    One row per user: the currently selected tenant.

    Written only by single statements keyed by user_id: the switcher's upsert
    and the resolver's conditional repair (see auth.switcher).
    """

    __tablename__ = "active_organization_pointers"

    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    organization_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
