from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class CenterCreate(BaseModel):
    center_name: str = Field(..., min_length=1, max_length=255)
    center_address: Optional[str] = None


class CenterUpdate(BaseModel):
    center_name: Optional[str] = Field(None, min_length=1, max_length=255)
    center_address: Optional[str] = None
    is_active: Optional[bool] = None


class CenterResponse(BaseModel):
    id: int
    center_name: str
    center_address: Optional[str] = None
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True
