from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field


class ItemKind(str, Enum):
    unpaid_course = "unpaid_course"
    paid_course = "paid_course"
    paid_notes = "paid_notes"


class CatalogItem(SQLModel, table=True):
    __tablename__ = "catalog_item"

    id: Optional[int] = Field(default=None, primary_key=True)
    kind: ItemKind = Field(index=True)
    title: str

    price: float = Field(default=0, ge=0)
    currency: str = Field(default="INR")
    is_active: bool = Field(default=True)

    # None means lifetime access
    access_days: Optional[int] = None
    material_key: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_free(self) -> bool:
        return not self.price or self.price <= 0
