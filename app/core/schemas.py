from typing import Any, List

from pydantic import BaseModel, Field


class PaginatedResponse(BaseModel):
    """Generic paginated response: items plus total and page info."""

    items: List[Any] = Field(..., description="Page of items")
    total: int = Field(..., ge=0, description="Total number of items matching the query")
    page: int = Field(..., ge=1, description="Current page number")
    page_size: int = Field(..., ge=0, description="Page size used; 0 means everything was returned")
    total_pages: int = Field(..., ge=0, description="Total number of pages")


class MessageResponse(BaseModel):
    message: str
