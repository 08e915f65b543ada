import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import field_validator, model_validator
from sqlmodel import Field, Session, SQLModel

from ..core.responses import ApiResponse, ok
from ..core.security import get_current_user
from ..core.validators import currency_code
from ..database import get_session
from ..models.budget import BudgetPeriod, BudgetStatus
from ..models.user import User
from ..services.budgets import BudgetService


router = APIRouter(
    prefix="/budgets",
    tags=["budgets"],
)


class CategoryAllocation(SQLModel):
    category_id: uuid.UUID
    allocated_amount: float = Field(gt=0)
    is_flexible: bool = False
    priority: int = Field(default=1, ge=1, le=5)


class BudgetBase(SQLModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    period: BudgetPeriod = BudgetPeriod.MONTHLY
    start_date: datetime
    end_date: datetime
    total_amount: float = Field(gt=0)
    currency: str = "USD"
    category_allocations: List[CategoryAllocation] = Field(default_factory=list)
    alert_threshold: float = Field(default=80, ge=0, le=100)

    @field_validator("currency")
    @classmethod
    def check_currency(cls, value):
        return currency_code(value)


class BudgetCreate(BudgetBase):
    @model_validator(mode="after")
    def _check_dates(self):
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class BudgetUpdate(SQLModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    period: Optional[BudgetPeriod] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    total_amount: Optional[float] = Field(default=None, gt=0)
    category_allocations: Optional[List[CategoryAllocation]] = None
    status: Optional[BudgetStatus] = None
    alert_threshold: Optional[float] = Field(default=None, ge=0, le=100)


class BudgetRead(BudgetBase):
    id: uuid.UUID
    user_id: uuid.UUID
    status: BudgetStatus
    created_at: datetime
    updated_at: datetime


@router.post(
    "",
    response_model=ApiResponse[BudgetRead],
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
def create_budget(
    payload: BudgetCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    budget = BudgetService(session).create_budget(current_user.id, payload.model_dump())
    return ok(BudgetRead.model_validate(budget), message="Budget created successfully")


@router.get(
    "",
    response_model=ApiResponse[List[BudgetRead]],
    response_model_exclude_none=True,
)
def list_budgets(
    status: Optional[BudgetStatus] = None,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    budgets = BudgetService(session).list_budgets(current_user.id, status=status)
    return ok([BudgetRead.model_validate(b) for b in budgets])


@router.get(
    "/summary",
    response_model=ApiResponse[dict],
    response_model_exclude_none=True,
)
def budget_summary(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return ok(BudgetService(session).get_budget_summary(current_user.id))


@router.get(
    "/alerts",
    response_model=ApiResponse[List[dict]],
    response_model_exclude_none=True,
)
def budget_alerts(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """Threshold and over-budget alerts across the user's active budgets."""
    return ok(BudgetService(session).check_budget_alerts(current_user.id))


@router.get(
    "/{budget_id}",
    response_model=ApiResponse[BudgetRead],
    response_model_exclude_none=True,
)
def get_budget(
    budget_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return ok(BudgetRead.model_validate(BudgetService(session).get_budget(current_user.id, budget_id)))


@router.get(
    "/{budget_id}/progress",
    response_model=ApiResponse[dict],
    response_model_exclude_none=True,
)
def budget_progress(
    budget_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return ok(BudgetService(session).get_budget_progress(current_user.id, budget_id))


@router.put(
    "/{budget_id}",
    response_model=ApiResponse[BudgetRead],
    response_model_exclude_none=True,
)
def update_budget(
    budget_id: uuid.UUID,
    payload: BudgetUpdate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    data = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    budget = BudgetService(session).update_budget(current_user.id, budget_id, data)
    return ok(BudgetRead.model_validate(budget), message="Budget updated successfully")


@router.delete(
    "/{budget_id}",
    response_model=ApiResponse[dict],
    response_model_exclude_none=True,
)
def delete_budget(
    budget_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    BudgetService(session).delete_budget(current_user.id, budget_id)
    return ok(message="Budget deleted successfully")
