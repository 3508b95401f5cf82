from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
from typing import Optional
from datetime import datetime


class RosterEntry(SQLModel, table=True):
    __tablename__ = "roster_entry"
    __table_args__ = (
        UniqueConstraint("item_id", "student_id", name="uq_roster_item_student"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    item_id: int = Field(foreign_key="catalog_item.id", index=True)
    student_id: int = Field(foreign_key="user.id", index=True)

    mode: Optional[str] = None       # online | offline | hybrid
    schedule: Optional[str] = None

    enrolled_at: datetime = Field(default_factory=datetime.utcnow)
