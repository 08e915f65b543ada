import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field


class BudgetPeriod(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"
    CUSTOM = "custom"


class BudgetStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class Budget(SQLModel, table=True):
    __tablename__ = "budgets"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True)

    user_id: uuid.UUID = Field(foreign_key="users.id", index=True)

    name: str = Field(max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    period: BudgetPeriod = Field(default=BudgetPeriod.MONTHLY)

    start_date: datetime = Field(index=True)
    end_date: datetime = Field(index=True)

    total_amount: float = Field(gt=0)
    currency: str = Field(default="USD", max_length=3)

    # [{"category_id": str, "allocated_amount": float, "is_flexible": bool, "priority": int}]
    category_allocations: List[dict] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))

    status: BudgetStatus = Field(default=BudgetStatus.ACTIVE, index=True)
    alert_threshold: float = Field(default=80, ge=0, le=100)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
