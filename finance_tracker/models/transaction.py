import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    ADJUSTMENT = "adjustment"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    CASH = "cash"
    DEBIT_CARD = "debit_card"
    CREDIT_CARD = "credit_card"
    BANK_TRANSFER = "bank_transfer"
    CHECK = "check"
    DIGITAL_WALLET = "digital_wallet"
    CRYPTO = "crypto"
    OTHER = "other"


class RecurrencePattern(str, Enum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class TransactionSource(str, Enum):
    MANUAL = "manual"
    IMPORT = "import"
    API = "api"
    BANK_SYNC = "bank_sync"


class Transaction(SQLModel, table=True):
    __tablename__ = "transactions"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True)

    user_id: uuid.UUID = Field(foreign_key="users.id", index=True)
    account_id: Optional[uuid.UUID] = Field(default=None, index=True)

    title: str = Field(max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    amount: float = Field(gt=0)
    currency: str = Field(default="USD", max_length=3, index=True)
    type: TransactionType = Field(index=True)
    status: TransactionStatus = Field(default=TransactionStatus.COMPLETED, index=True)

    category_id: uuid.UUID = Field(foreign_key="categories.id", index=True)
    subcategory_id: Optional[uuid.UUID] = Field(default=None, foreign_key="categories.id")
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))

    date: datetime = Field(default_factory=datetime.utcnow, index=True)

    payment_method: PaymentMethod
    payment_reference: Optional[str] = Field(default=None, max_length=100)
    merchant_name: Optional[str] = Field(default=None, max_length=200)
    fees: Optional[float] = Field(default=None, ge=0)
    tax: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=2000)
    source: TransactionSource = Field(default=TransactionSource.MANUAL)

    is_recurring: bool = Field(default=False, index=True)
    recurrence_pattern: RecurrencePattern = Field(default=RecurrencePattern.NONE)
    recurrence_interval: int = Field(default=1, ge=1)
    recurrence_end_date: Optional[datetime] = Field(default=None)
    next_occurrence: Optional[datetime] = Field(default=None, index=True)
    parent_transaction_id: Optional[uuid.UUID] = Field(default=None, foreign_key="transactions.id")

    is_deleted: bool = Field(default=False, index=True)
    deleted_at: Optional[datetime] = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def total_amount(self) -> float:
        return round(self.amount + (self.fees or 0) + (self.tax or 0), 2)
