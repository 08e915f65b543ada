import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import Column, JSON, UniqueConstraint
from sqlmodel import SQLModel, Field


DEFAULT_COLOR = "#3B82F6"
DEFAULT_ICON = "folder"


class Category(SQLModel, table=True):
    __tablename__ = "categories"
    __table_args__ = (
        UniqueConstraint("user_id", "parent_id", "name", name="uq_categories_user_parent_name"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True)

    user_id: uuid.UUID = Field(foreign_key="users.id", index=True)

    name: str = Field(max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    color: str = Field(default=DEFAULT_COLOR, max_length=7)
    icon: str = Field(default=DEFAULT_ICON, max_length=50)

    parent_id: Optional[uuid.UUID] = Field(default=None, foreign_key="categories.id", index=True)
    # Ancestor names, root first. Does not include this category's own name.
    path: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    level: int = Field(default=0, ge=0, index=True)

    is_active: bool = Field(default=True)
    is_system: bool = Field(default=False)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def full_path(self) -> str:
        return " > ".join([*self.path, self.name])
