from typing import Any, Generic, List, Optional, TypeVar

from pydantic import BaseModel


T = TypeVar("T")


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None
    errors: Optional[List[str]] = None
    pagination: Optional[Pagination] = None


def ok(data: Any = None, message: Optional[str] = None, pagination: Optional[dict] = None) -> dict:
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    if pagination is not None:
        body["pagination"] = pagination
    return body
