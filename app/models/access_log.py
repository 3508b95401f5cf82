from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime


class AccessLog(SQLModel, table=True):
    """One row per material open of a paid item."""

    __tablename__ = "access_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    purchase_id: int = Field(foreign_key="purchase_record.id", index=True)
    student_id: int = Field(foreign_key="user.id", index=True)
    item_id: int = Field(foreign_key="catalog_item.id")

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    accessed_at: datetime = Field(default_factory=datetime.utcnow)
