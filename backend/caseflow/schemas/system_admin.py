from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field


class SuperAdminOut(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    super_admin_granted_at: Optional[datetime] = None
    super_admin_granted_by: Optional[str] = None
    super_admin_notes: Optional[str] = None
    last_login: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SuperAdminGrant(BaseModel):
    email: EmailStr
    notes: Optional[str] = Field(default=None, max_length=1000)


class AllowListEntryCreate(BaseModel):
    email: EmailStr
    name: Optional[str] = Field(default=None, max_length=200)
    notes: Optional[str] = Field(default=None, max_length=1000)


class AllowListEntryOut(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    is_active: bool
    user_id: Optional[str] = None
    added_by: Optional[str] = None
    added_at: datetime
    last_login: Optional[datetime] = None
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class AuditEntryOut(BaseModel):
    id: str
    actor_user_id: Optional[str] = None
    action: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    description: str
    details: Dict[str, Any] = {}
    created_at: datetime

    model_config = {"from_attributes": True}


class PermissionOut(BaseModel):
    id: str
    code: str
    description: Optional[str] = None

    model_config = {"from_attributes": True}


class RoleOut(BaseModel):
    id: str
    slug: str
    name: str
    description: Optional[str] = None
    scope: str
    inherits_to_descendants: bool
    permissions: List[str] = []


class RoleCreate(BaseModel):
    slug: str = Field(pattern=r"^[a-z0-9][a-z0-9-]{1,49}$")
    name: str = Field(min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    permissions: List[str] = []
    inherits_to_descendants: bool = False


class RoleUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    permissions: Optional[List[str]] = None
    inherits_to_descendants: Optional[bool] = None
