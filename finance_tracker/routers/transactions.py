import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import field_validator
from sqlmodel import SQLModel, Field, Session

from ..database import get_session
from ..models.transaction import (
    PaymentMethod,
    RecurrencePattern,
    TransactionSource,
    TransactionStatus,
    TransactionType,
)
from ..models.user import User
from ..core.responses import ApiResponse, ok
from ..core.security import get_current_user
from ..core.validators import currency_code
from ..services.transactions import TransactionService


router = APIRouter(
    prefix="/transactions",
    tags=["transactions"],
)

# ─────────────────────────────
#   SCHEMAS
# ─────────────────────────────


class TransactionBase(SQLModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    amount: float = Field(gt=0)
    currency: str = "USD"
    type: TransactionType
    status: TransactionStatus = TransactionStatus.COMPLETED
    category_id: uuid.UUID
    subcategory_id: Optional[uuid.UUID] = None
    account_id: Optional[uuid.UUID] = None
    tags: List[str] = Field(default_factory=list)
    date: Optional[datetime] = None
    payment_method: PaymentMethod
    payment_reference: Optional[str] = Field(default=None, max_length=100)
    merchant_name: Optional[str] = Field(default=None, max_length=200)
    fees: Optional[float] = Field(default=None, ge=0)
    tax: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=2000)
    source: TransactionSource = TransactionSource.MANUAL
    is_recurring: bool = False
    recurrence_pattern: RecurrencePattern = RecurrencePattern.NONE
    recurrence_interval: int = Field(default=1, ge=1, le=365)
    recurrence_end_date: Optional[datetime] = None

    @field_validator("currency")
    @classmethod
    def check_currency(cls, value):
        return currency_code(value)


class TransactionCreate(TransactionBase):
    pass


class TransactionUpdate(SQLModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    amount: Optional[float] = Field(default=None, gt=0)
    currency: Optional[str] = None
    type: Optional[TransactionType] = None
    status: Optional[TransactionStatus] = None
    category_id: Optional[uuid.UUID] = None
    subcategory_id: Optional[uuid.UUID] = None
    tags: Optional[List[str]] = None
    date: Optional[datetime] = None
    payment_method: Optional[PaymentMethod] = None
    payment_reference: Optional[str] = Field(default=None, max_length=100)
    merchant_name: Optional[str] = Field(default=None, max_length=200)
    fees: Optional[float] = Field(default=None, ge=0)
    tax: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("currency")
    @classmethod
    def check_currency(cls, value):
        return currency_code(value)


class TransactionBulkCreate(SQLModel):
    transactions: List[TransactionCreate]


class TransactionRead(TransactionBase):
    id: uuid.UUID
    user_id: uuid.UUID
    date: datetime
    total_amount: float
    next_occurrence: Optional[datetime] = None
    parent_transaction_id: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: datetime


def _read(t) -> TransactionRead:
    return TransactionRead.model_validate(t)


# ─────────────────────────────
#   ENDPOINTS
# ─────────────────────────────

@router.post(
    "",
    response_model=ApiResponse[TransactionRead],
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
def create_transaction(
    payload: TransactionCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """
    Record a transaction for the authenticated user.

    - Recurring transactions need ``recurrence_end_date``; their future
      occurrences are created up front and linked through ``parent_transaction_id``.
    """
    t = TransactionService(session).create_transaction(current_user.id, payload.model_dump())
    return ok(_read(t), message="Transaction created successfully")


@router.get(
    "",
    response_model=ApiResponse[List[TransactionRead]],
    response_model_exclude_none=True,
)
def list_transactions(
    type: Optional[TransactionType] = None,
    status: Optional[TransactionStatus] = None,
    category_id: Optional[uuid.UUID] = None,
    account_id: Optional[uuid.UUID] = None,
    payment_method: Optional[PaymentMethod] = None,
    is_recurring: Optional[bool] = None,
    source: Optional[TransactionSource] = None,
    currency: Optional[str] = Query(default=None, min_length=3, max_length=3),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    min_amount: Optional[float] = Query(default=None, ge=0),
    max_amount: Optional[float] = Query(default=None, ge=0),
    search: Optional[str] = Query(default=None, max_length=100),
    tags: Optional[List[str]] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    sort_by: str = "date",
    sort_order: str = "desc",
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    result = TransactionService(session).list_transactions(
        current_user.id,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        tags=tags,
        type=type,
        status=status,
        category_id=category_id,
        account_id=account_id,
        payment_method=payment_method,
        is_recurring=is_recurring,
        source=source,
        currency=currency,
        start_date=start_date,
        end_date=end_date,
        min_amount=min_amount,
        max_amount=max_amount,
        search=search,
    )
    return ok(
        [_read(t) for t in result["transactions"]],
        pagination={k: result[k] for k in ("page", "limit", "total", "total_pages")},
    )


@router.get(
    "/stats",
    response_model=ApiResponse[dict],
    response_model_exclude_none=True,
)
def transaction_stats(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return ok(TransactionService(session).get_transaction_stats(current_user.id, start_date, end_date))


@router.get(
    "/recurring",
    response_model=ApiResponse[List[TransactionRead]],
    response_model_exclude_none=True,
)
def recurring_transactions(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return ok([_read(t) for t in TransactionService(session).get_recurring_transactions(current_user.id)])


@router.post(
    "/bulk",
    response_model=ApiResponse[List[TransactionRead]],
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
def bulk_create_transactions(
    payload: TransactionBulkCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    created = TransactionService(session).bulk_create_transactions(
        current_user.id, [t.model_dump() for t in payload.transactions]
    )
    return ok(
        [_read(t) for t in created],
        message=f"Created {len(created)} of {len(payload.transactions)} transactions",
    )


@router.get(
    "/{transaction_id}",
    response_model=ApiResponse[TransactionRead],
    response_model_exclude_none=True,
)
def get_transaction(
    transaction_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return ok(_read(TransactionService(session).get_transaction(current_user.id, transaction_id)))


@router.put(
    "/{transaction_id}",
    response_model=ApiResponse[TransactionRead],
    response_model_exclude_none=True,
)
def update_transaction(
    transaction_id: uuid.UUID,
    payload: TransactionUpdate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    t = TransactionService(session).update_transaction(
        current_user.id, transaction_id, payload.model_dump(exclude_unset=True)
    )
    return ok(_read(t), message="Transaction updated successfully")


@router.delete(
    "/{transaction_id}",
    response_model=ApiResponse[dict],
    response_model_exclude_none=True,
)
def delete_transaction(
    transaction_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    TransactionService(session).delete_transaction(current_user.id, transaction_id)
    return ok(message="Transaction deleted successfully")
