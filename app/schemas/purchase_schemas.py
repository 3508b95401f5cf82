# app/schemas/purchase_schemas.py
from pydantic import BaseModel, Field
from typing import Literal, Optional


class PurchaseCreate(BaseModel):
    item_id: int
    mode: Optional[Literal["online", "offline", "hybrid"]] = None
    schedule: Optional[str] = None


class PaymentVerify(BaseModel):
    # either the local purchase id or the gateway order id locates the record
    purchase_id: Optional[int] = None
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None


class RazorpayOrderOut(BaseModel):
    id: str
    amount: int          # paise
    currency: str
    receipt: str


class ProgressUpdate(BaseModel):
    lesson_id: str = Field(min_length=1)
    watch_seconds: int = Field(ge=0)
