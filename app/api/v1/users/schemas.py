from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from app.core.enums import UserRole

STAFF_ROLE_VALUES = (
    UserRole.CENTER_ADMIN.value,
    UserRole.ASSESSOR.value,
    UserRole.IQA.value,
    UserRole.EQA.value,
)


class StaffCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    surname: Optional[str] = Field(None, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=8)
    role: str = Field(..., description="CENTER_ADMIN, ASSESSOR, IQA or EQA")
    phone_number: Optional[str] = Field(None, max_length=50)
    center_id: Optional[int] = Field(None, description="Required for platform admins only")

    @field_validator("role")
    @classmethod
    def staff_role_only(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in STAFF_ROLE_VALUES:
            raise ValueError(f"role must be one of {', '.join(STAFF_ROLE_VALUES)}")
        return v


class StaffUpdate(BaseModel):
    """Fields left out are unchanged. Role and center are fixed at creation."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    surname: Optional[str] = Field(None, max_length=255)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=8)
    phone_number: Optional[str] = Field(None, max_length=50)
    status: Optional[Literal["ACTIVE", "INACTIVE"]] = None


class UserResponse(BaseModel):
    id: int
    center_id: Optional[int] = None
    name: str
    surname: Optional[str] = None
    email: EmailStr
    role: str
    status: str
    phone_number: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    surname: Optional[str] = Field(None, max_length=255)
    phone_number: Optional[str] = Field(None, max_length=50)


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8)
