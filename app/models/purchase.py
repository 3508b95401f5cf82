from datetime import datetime
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field

from app.constants.purchase_state import (
    PurchaseState,
    payment_status,
    purchase_status,
)
from app.models.catalog_item import ItemKind


class PurchaseRecord(SQLModel, table=True):
    __tablename__ = "purchase_record"
    __table_args__ = (
        UniqueConstraint("student_id", "item_id", name="uq_purchase_student_item"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)

    student_id: int = Field(foreign_key="user.id", index=True)
    item_id: int = Field(foreign_key="catalog_item.id", index=True)
    item_kind: ItemKind

    state: PurchaseState = Field(default=PurchaseState.awaiting_payment, index=True)

    # payment leg
    amount: float = Field(default=0)
    currency: str = Field(default="INR")
    receipt: Optional[str] = None
    gateway_order_id: Optional[str] = Field(default=None, index=True, unique=True)
    gateway_payment_id: Optional[str] = None
    gateway_signature: Optional[str] = None
    payment_method: Optional[str] = None
    paid_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    last_failure_at: Optional[datetime] = None

    # access grant
    access_granted_at: Optional[datetime] = None
    access_expires_at: Optional[datetime] = None
    access_count: int = Field(default=0)
    last_accessed_at: Optional[datetime] = None

    # course enrollment metadata
    mode: Optional[str] = None
    schedule: Optional[str] = None

    is_active: bool = Field(default=True)
    purchased_at: Optional[datetime] = None
    reconciliation_note: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def purchase_status(self) -> str:
        return purchase_status(self.state)

    @property
    def payment_status(self) -> str:
        return payment_status(self.state)

    @property
    def grants_access(self) -> bool:
        if self.state != PurchaseState.completed or not self.is_active:
            return False
        if self.access_expires_at and self.access_expires_at < datetime.utcnow():
            return False
        return True

    def to_public_dict(self) -> dict:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "item_id": self.item_id,
            "item_kind": self.item_kind,
            "purchase_status": self.purchase_status,
            "payment_status": self.payment_status,
            "payment_details": {
                "amount": self.amount,
                "currency": self.currency,
                "razorpay_order_id": self.gateway_order_id,
                "razorpay_payment_id": self.gateway_payment_id,
                "payment_method": self.payment_method,
                "paid_at": self.paid_at,
                "failure_reason": self.failure_reason,
                "last_failure_at": self.last_failure_at,
            },
            "access_details": {
                "granted_at": self.access_granted_at,
                "expires_at": self.access_expires_at,
                "access_count": self.access_count,
                "last_accessed_at": self.last_accessed_at,
            },
            "mode": self.mode,
            "schedule": self.schedule,
            "is_active": self.is_active,
            "purchased_at": self.purchased_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
