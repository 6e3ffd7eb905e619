from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class SessionResponse(BaseModel):
    user_id: str
    email: str
    is_super_admin: bool
    # True only on the login that flipped the flag
    newly_elevated: bool = False


class MeResponse(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    is_active: bool
    is_super_admin: bool
    last_login: Optional[datetime] = None

    model_config = {"from_attributes": True}
