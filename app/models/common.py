from pydantic import BaseModel, Field
from typing import Any, Optional, Dict, List


class ApiResponse(BaseModel):
    """Response envelope used by every /api endpoint"""
    success: bool = True
    message: Optional[str] = None
    data: Optional[Any] = None


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    errors: Optional[Dict[str, Any]] = None
    data: Optional[Any] = None


class Page(BaseModel):
    """A page of results"""
    items: List[Any]
    total: int
    page: int = Field(1, ge=1)
    per_page: int = Field(20, ge=1)
    last_page: int = 1


def ok(data: Any = None, message: Optional[str] = None) -> ApiResponse:
    return ApiResponse(success=True, message=message, data=data)
