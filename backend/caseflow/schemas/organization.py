from __future__ import annotations

from datetime import datetime
import re
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

CODE_REGEX = re.compile(r"^[A-Z0-9][A-Z0-9_-]{1,19}$")


class OrganizationCreate(BaseModel):
    name: str = Field(min_length=2, max_length=200)
    code: str = Field(min_length=2, max_length=20)
    type: str = Field(min_length=2, max_length=50, description="country | province | district | court")
    parent_id: Optional[str] = None
    description: Optional[str] = None

    @field_validator("code")
    @classmethod
    def validate_code(cls, v: str) -> str:
        v = v.strip().upper()
        if not CODE_REGEX.match(v):
            raise ValueError("Code must be 2-20 uppercase letters, digits, '-' or '_'")
        return v


class OrganizationUpdate(BaseModel):
    # Send only what changes; an explicit "parent_id": null makes the organization a root
    name: Optional[str] = Field(default=None, min_length=2, max_length=200)
    type: Optional[str] = Field(default=None, min_length=2, max_length=50)
    description: Optional[str] = None
    parent_id: Optional[str] = None
    is_active: Optional[bool] = None


class OrganizationOut(BaseModel):
    id: str
    name: str
    code: str
    type: str
    description: Optional[str] = None
    parent_id: Optional[str] = None
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class OrganizationChoiceOut(BaseModel):
    organization_id: str
    name: str
    code: str
    type: str
    role: Optional[str] = None
    is_primary: bool
    is_member: bool
    is_current: bool


class SwitchOrganizationRequest(BaseModel):
    organization_id: str = Field(min_length=1)


class TenantContextOut(BaseModel):
    user_id: str
    organization_id: str
    organization_name: str
    role: Optional[str] = None
    permissions: List[str] = []
    is_super_admin: bool
    inherited: bool
