from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List
from datetime import datetime
from enum import Enum


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class User(BaseModel):
    id: int
    name: str
    email: str
    phone: Optional[str] = None
    firebase_uid: Optional[str] = None
    photo: Optional[str] = None
    status: UserStatus = UserStatus.ACTIVE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserWithRoles(User):
    roles: List[str] = Field(default_factory=list)
    permissions: List[str] = Field(default_factory=list)


class UserBrief(BaseModel):
    """Minimal user info embedded in tickets and scans"""
    id: int
    name: str
    email: Optional[str] = None


class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=50)
    status: UserStatus = UserStatus.ACTIVE
    roles: List[str] = Field(default_factory=lambda: ["User"])


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=50)
    status: Optional[UserStatus] = None


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    photo: Optional[str] = None


class RoleAssignment(BaseModel):
    role: str = Field(..., min_length=1)


class PermissionAssignment(BaseModel):
    permission: str = Field(..., min_length=1)
