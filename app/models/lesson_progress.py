from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
from typing import Optional
from datetime import datetime


class LessonProgress(SQLModel, table=True):
    __tablename__ = "lesson_progress"
    __table_args__ = (
        UniqueConstraint("purchase_id", "lesson_id", name="uq_progress_purchase_lesson"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    purchase_id: int = Field(foreign_key="purchase_record.id", index=True)
    lesson_id: str

    watch_seconds: int = Field(default=0, ge=0)   # furthest point watched
    updated_at: datetime = Field(default_factory=datetime.utcnow)
