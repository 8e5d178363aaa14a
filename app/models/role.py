from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime


class Permission(BaseModel):
    id: int
    name: str
    created_at: Optional[datetime] = None


class PermissionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-z0-9\-]+\.[a-z0-9\-]+$")


class Role(BaseModel):
    id: int
    name: str
    is_system: bool = False
    permissions: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RoleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    permissions: List[str] = Field(default_factory=list)


class RoleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    permissions: Optional[List[str]] = None
