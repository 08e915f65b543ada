import uuid
from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import field_validator
from sqlmodel import SQLModel, Field, Session

from ..database import get_session
from ..models.category import DEFAULT_COLOR, DEFAULT_ICON
from ..models.user import User
from ..core.responses import ApiResponse, ok
from ..core.security import get_current_user
from ..core.validators import hex_color
from ..services.categories import CategoryService


router = APIRouter(
    prefix="/categories",
    tags=["categories"],
)

# ─────────────────────────────
#   SCHEMAS
# ─────────────────────────────


class CategoryBase(SQLModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    color: str = DEFAULT_COLOR
    icon: str = Field(default=DEFAULT_ICON, min_length=1, max_length=50)
    parent_id: Optional[uuid.UUID] = None

    @field_validator("color")
    @classmethod
    def check_color(cls, value):
        return hex_color(value)


class CategoryCreate(CategoryBase):
    pass


class CategoryUpdate(SQLModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    color: Optional[str] = None
    icon: Optional[str] = Field(default=None, min_length=1, max_length=50)
    parent_id: Optional[uuid.UUID] = None
    is_active: Optional[bool] = None

    @field_validator("color")
    @classmethod
    def check_color(cls, value):
        return hex_color(value)


class CategoryBulkCreate(SQLModel):
    categories: List[CategoryCreate]


class CategoryRead(CategoryBase):
    id: uuid.UUID
    user_id: uuid.UUID
    path: List[str]
    full_path: str
    level: int
    is_active: bool
    is_system: bool
    created_at: datetime
    updated_at: datetime


class CategoryPath(SQLModel):
    id: uuid.UUID
    name: str
    path: List[str]
    full_path: str


def _read(category) -> CategoryRead:
    return CategoryRead.model_validate(category)


# ─────────────────────────────
#   ENDPOINTS
# ─────────────────────────────

@router.post(
    "",
    response_model=ApiResponse[CategoryRead],
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
def create_category(
    payload: CategoryCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    category = CategoryService(session).create_category(current_user.id, payload.model_dump())
    return ok(_read(category), message="Category created successfully")


@router.get(
    "",
    response_model=ApiResponse[List[CategoryRead]],
    response_model_exclude_none=True,
)
def list_categories(
    parent_id: Optional[uuid.UUID] = None,
    roots_only: bool = False,
    level: Optional[int] = Query(default=None, ge=0),
    is_active: Optional[bool] = None,
    search: Optional[str] = Query(default=None, max_length=100),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    result = CategoryService(session).list_categories(
        current_user.id,
        parent_id=parent_id,
        roots_only=roots_only,
        level=level,
        is_active=is_active,
        search=search,
        page=page,
        limit=limit,
    )
    return ok(
        [_read(c) for c in result["categories"]],
        pagination={k: result[k] for k in ("page", "limit", "total", "total_pages")},
    )


@router.get(
    "/tree",
    response_model=ApiResponse[List[Any]],
    response_model_exclude_none=True,
)
def category_tree(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """Active categories nested under their parents via ``children``."""
    return ok(CategoryService(session).get_category_tree(current_user.id))


@router.get(
    "/stats",
    response_model=ApiResponse[dict],
    response_model_exclude_none=True,
)
def category_stats(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return ok(CategoryService(session).get_category_stats(current_user.id))


@router.post(
    "/bulk",
    response_model=ApiResponse[List[CategoryRead]],
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
def bulk_create_categories(
    payload: CategoryBulkCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """
    Create several categories at once.

    Items that fail validation (duplicate name, unknown parent) are skipped.
    """
    created = CategoryService(session).bulk_create_categories(
        current_user.id, [c.model_dump() for c in payload.categories]
    )
    return ok(
        [_read(c) for c in created],
        message=f"Created {len(created)} of {len(payload.categories)} categories",
    )


@router.get(
    "/{category_id}",
    response_model=ApiResponse[CategoryRead],
    response_model_exclude_none=True,
)
def get_category(
    category_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return ok(_read(CategoryService(session).get_category(current_user.id, category_id)))


@router.get(
    "/{category_id}/path",
    response_model=ApiResponse[CategoryPath],
    response_model_exclude_none=True,
)
def get_category_path(
    category_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return ok(CategoryPath(**CategoryService(session).get_category_path(current_user.id, category_id)))


@router.put(
    "/{category_id}",
    response_model=ApiResponse[CategoryRead],
    response_model_exclude_none=True,
)
def update_category(
    category_id: uuid.UUID,
    payload: CategoryUpdate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    # exclude_unset keeps an explicit "parent_id": null (move to root) apart from an omitted one
    data = payload.model_dump(exclude_unset=True)
    category = CategoryService(session).update_category(current_user.id, category_id, data)
    return ok(_read(category), message="Category updated successfully")


@router.delete(
    "/{category_id}",
    response_model=ApiResponse[dict],
    response_model_exclude_none=True,
)
def delete_category(
    category_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    CategoryService(session).delete_category(current_user.id, category_id)
    return ok(message="Category deleted successfully")
