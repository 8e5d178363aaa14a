from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from app.models.user import UserWithRoles


class FirebaseLoginRequest(BaseModel):
    firebase_token: str = Field(..., min_length=1, description="Firebase ID token from the client SDK")


class FirebaseIdentity(BaseModel):
    """Verified claims extracted from a Firebase ID token"""
    uid: str
    email: Optional[str] = None
    name: Optional[str] = None
    picture: Optional[str] = None
    phone_number: Optional[str] = None
    email_verified: bool = False


class AuthResult(BaseModel):
    user: UserWithRoles
    token: str
    token_type: str = "bearer"
    expires_at: datetime
