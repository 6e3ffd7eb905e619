from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class MemberOut(BaseModel):
    organization_id: str
    user_id: str
    email: str
    name: Optional[str] = None
    role: str
    is_primary: bool
    created_at: datetime


class MemberCreate(BaseModel):
    email: EmailStr
    role: str = Field(default="viewer", min_length=2, max_length=100)
    is_primary: bool = False


class MemberUpdate(BaseModel):
    role: str = Field(min_length=2, max_length=100)
