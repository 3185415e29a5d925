from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class UserInfo(BaseModel):
    id: int
    name: str
    surname: Optional[str] = None
    email: EmailStr
    role: str
    center_id: Optional[int] = None


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserInfo
    issued_at: datetime


class CurrentUser(BaseModel):
    """Authenticated caller resolved from the bearer token."""

    id: int
    center_id: Optional[int] = None
    role: str
